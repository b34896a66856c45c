"""
Unit tests for the excerpt corpus and passphrase extraction.
"""

import json
import random

import pytest

from redpacket.cipher import text_to_phonetic
from redpacket.excerpts import Book, ExcerptProvider, extract_chars, load_corpus


class TestCorpus:
    """Test corpus loading and excerpt selection."""

    def test_bundled_corpus_loads(self):
        books = load_corpus()
        assert len(books) >= 5
        assert all(book.excerpts for book in books)
        assert "道德经" in [book.name for book in books]

    def test_books_without_excerpts_are_skipped(self, tmp_path):
        path = tmp_path / "books.json"
        path.write_text(
            json.dumps([{"name": "空", "author": "", "excerpts": []}, {"name": "论语", "author": "孔子", "excerpts": ["学而时习之"]}]),
            encoding="utf-8",
        )
        books = load_corpus(path)
        assert [book.name for book in books] == ["论语"]

    def test_empty_corpus_rejected(self, tmp_path):
        path = tmp_path / "books.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_corpus(path)

    def test_pick_excerpt_comes_from_corpus(self):
        books = [Book("甲", "a", ("一二三",)), Book("乙", "b", ("四五六", "七八九"))]
        provider = ExcerptProvider(books=books, rng=random.Random(1))
        for _ in range(20):
            excerpt = provider.pick_excerpt()
            book = next(b for b in books if b.name == excerpt.book_name)
            assert excerpt.text in book.excerpts
            assert excerpt.author == book.author

    def test_book_lookup(self):
        provider = ExcerptProvider(books=[Book("甲", "a", ("一二三",))])
        assert provider.book_names() == ["甲"]
        assert provider.excerpt_by_book("甲").text == "一二三"
        assert provider.excerpt_by_book("丙") is None


class TestExtractChars:
    """Test passphrase character extraction."""

    def test_preserves_source_order(self):
        text = "天下大事必作于细"
        for seed in range(20):
            result = extract_chars(text, 4, random.Random(seed))
            assert len(result.chars) == 4
            assert list(result.positions) == sorted(result.positions)
            assert all(text[pos] == char for pos, char in zip(result.positions, result.chars))

    def test_prefers_distinct_pinyin(self):
        # 道 appears three times with one reading; 可 非 常 are distinct
        text = "道可道非常道"
        for seed in range(20):
            chars = extract_chars(text, 4, random.Random(seed)).chars
            assert len(set(text_to_phonetic(chars))) == 4

    def test_fills_with_repeats_when_pinyin_runs_out(self):
        result = extract_chars("道道道", 2, random.Random(3))
        assert result.chars == "道道"

    def test_short_passage_yields_all_characters(self):
        result = extract_chars("天，下", 4, random.Random(0))
        assert result.chars == "天下"
        assert result.positions == (0, 2)

    def test_no_chinese_characters(self):
        result = extract_chars("hello, world", 4)
        assert result.chars == ""
        assert result.positions == ()

    def test_seeded_rng_is_reproducible(self):
        text = "学而时习之不亦说乎"
        assert extract_chars(text, 4, random.Random(9)) == extract_chars(text, 4, random.Random(9))
