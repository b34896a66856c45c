"""Curated classical excerpts and passphrase extraction."""

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from redpacket.cipher import char_to_phonetic

logger = logging.getLogger(__name__)

DEFAULT_CORPUS_PATH = Path(__file__).parent / "data" / "books.json"


@dataclass(frozen=True)
class Excerpt:
    book_name: str
    author: str
    text: str


@dataclass(frozen=True)
class Book:
    name: str
    author: str
    excerpts: Tuple[str, ...]


@dataclass(frozen=True)
class ExtractedChars:
    """Passphrase characters in source order, with their offsets in the excerpt."""

    chars: str
    positions: Tuple[int, ...]


def load_corpus(path: Path = DEFAULT_CORPUS_PATH) -> List[Book]:
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)

    books = []
    for entry in raw:
        excerpts = tuple(e for e in entry.get("excerpts", []) if e)
        if not excerpts:
            logger.warning(f"Skipping book without excerpts: {entry.get('name')!r}")
            continue
        books.append(Book(name=entry["name"], author=entry.get("author", ""), excerpts=excerpts))

    if not books:
        raise ValueError(f"Excerpt corpus {path} contains no usable books")
    return books


class ExcerptProvider:
    """Random access to the excerpt corpus."""

    def __init__(self, books: Optional[List[Book]] = None, rng: Optional[random.Random] = None):
        self.books = books if books is not None else load_corpus()
        self.rng = rng or random.Random()

    def pick_excerpt(self) -> Excerpt:
        """Pick a book uniformly, then one of its excerpts uniformly."""
        book = self.rng.choice(self.books)
        return Excerpt(book_name=book.name, author=book.author, text=self.rng.choice(book.excerpts))

    def book_names(self) -> List[str]:
        return [book.name for book in self.books]

    def excerpt_by_book(self, book_name: str) -> Optional[Excerpt]:
        for book in self.books:
            if book.name == book_name:
                return Excerpt(book_name=book.name, author=book.author, text=self.rng.choice(book.excerpts))
        return None


def extract_chars(text: str, count: int, rng: Optional[random.Random] = None) -> ExtractedChars:
    """
    Choose ``count`` Chinese characters of ``text`` to form a passphrase.

    Candidates are shuffled, then a first pass takes characters whose pinyin
    has not been used yet and a second pass fills any remaining slots from
    the leftovers. The result is put back into reading order. A passage with
    fewer usable characters yields all of them.
    """
    rng = rng or random.Random()

    candidates = []
    for index, char in enumerate(text):
        token = char_to_phonetic(char)
        if token:
            candidates.append((index, char, token))

    count = max(0, min(count, len(candidates)))
    rng.shuffle(candidates)

    selected = []
    used_tokens = set()
    for candidate in candidates:
        if len(selected) >= count:
            break
        if candidate[2] not in used_tokens:
            selected.append(candidate)
            used_tokens.add(candidate[2])

    if len(selected) < count:
        for candidate in candidates:
            if len(selected) >= count:
                break
            if candidate not in selected:
                selected.append(candidate)

    selected.sort(key=lambda c: c[0])
    return ExtractedChars(
        chars="".join(c[1] for c in selected),
        positions=tuple(c[0] for c in selected),
    )
