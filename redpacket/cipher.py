"""
Transliteration and Morse cipher codec.

Chinese characters become tone-free pinyin tokens, tokens become groups of
International Morse letters, and a Morse string expands into a timeline of
tone events for audio rendering::

    "天下" -> ["tian", "xia"] -> "- .. .- -. / -..- .. .-"

The timeline is a pure function of the Morse string, so the creation path
and the read path can regenerate it independently and always agree.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from pypinyin import Style, lazy_pinyin

# CJK Unified Ideographs (basic block)
CHINESE_CHAR = re.compile(r"[\u4e00-\u9fa5]")

MORSE_CODE_MAP = {
    "a": ".-", "b": "-...", "c": "-.-.", "d": "-..",
    "e": ".", "f": "..-.", "g": "--.", "h": "....",
    "i": "..", "j": ".---", "k": "-.-", "l": ".-..",
    "m": "--", "n": "-.", "o": "---", "p": ".--.",
    "q": "--.-", "r": ".-.", "s": "...", "t": "-",
    "u": "..-", "v": "...-", "w": ".--", "x": "-..-",
    "y": "-.--", "z": "--..",
    "0": "-----", "1": ".----", "2": "..---", "3": "...--",
    "4": "....-", "5": ".....", "6": "-....", "7": "--...",
    "8": "---..", "9": "----.",
}

REVERSE_MORSE_MAP = {code: char for char, code in MORSE_CODE_MAP.items()}

TOKEN_SEPARATOR = " / "
LETTER_SEPARATOR = " "

# Timing model in milliseconds
DOT_DURATION = 200
DASH_DURATION = 600
SYMBOL_GAP = 200
LETTER_GAP = 600
TOKEN_GAP = 1400

_SYMBOL_DURATIONS = {".": DOT_DURATION, "-": DASH_DURATION}


@dataclass(frozen=True)
class MorseEvent:
    """A tone starting ``start`` ms after playback begins."""

    start: int
    duration: int
    type: str = "tone"

    @property
    def end(self) -> int:
        return self.start + self.duration

    def to_dict(self) -> dict:
        return {"type": self.type, "start": self.start, "duration": self.duration}


@dataclass(frozen=True)
class MorseTimeline:
    events: Tuple[MorseEvent, ...] = field(default_factory=tuple)
    total_duration: int = 0
    morse_string: str = ""

    def to_dict(self) -> dict:
        return {
            "events": [event.to_dict() for event in self.events],
            "totalDuration": self.total_duration,
            "morseString": self.morse_string,
        }


def char_to_phonetic(char: str) -> Optional[str]:
    """Return the tone-free pinyin of a single Chinese character, or None."""
    if not CHINESE_CHAR.fullmatch(char):
        return None
    readings = lazy_pinyin(char, style=Style.NORMAL)
    if not readings:
        return None
    return readings[0].lower()


def text_to_phonetic(text: str) -> List[str]:
    """
    Transliterate text into one pinyin token per recognized character.

    Characters are read one at a time, so each token is the character's
    standalone reading. Punctuation, Latin letters and other scripts are
    skipped.
    """
    tokens = []
    for char in text:
        token = char_to_phonetic(char)
        if token:
            tokens.append(token)
    return tokens


def phonetic_to_cipher(tokens: Iterable[str]) -> str:
    """Encode pinyin tokens as Morse: letters joined by a space, tokens by " / "."""
    groups = []
    for token in tokens:
        codes = [MORSE_CODE_MAP[ch] for ch in token.lower() if ch in MORSE_CODE_MAP]
        groups.append(LETTER_SEPARATOR.join(codes))
    return TOKEN_SEPARATOR.join(groups)


def text_to_cipher(text: str) -> str:
    return phonetic_to_cipher(text_to_phonetic(text))


def decode_cipher(cipher: str) -> List[str]:
    """Decode a Morse string back into pinyin tokens. Unknown groups are dropped."""
    if not cipher.strip():
        return []
    tokens = []
    for group in cipher.split(TOKEN_SEPARATOR.strip()):
        letters = [REVERSE_MORSE_MAP.get(code, "") for code in group.split()]
        tokens.append("".join(letters))
    return tokens


def _letters(cipher: str) -> List[List[str]]:
    """Split a cipher into tokens of letters, keeping only dot/dash symbols."""
    tokens = []
    for group in cipher.split(TOKEN_SEPARATOR.strip()):
        letters = []
        for code in group.split():
            symbols = "".join(s for s in code if s in _SYMBOL_DURATIONS)
            if symbols:
                letters.append(symbols)
        if letters:
            tokens.append(letters)
    return tokens


def cipher_to_timeline(cipher: str) -> MorseTimeline:
    """
    Expand a Morse string into absolutely timed tone events.

    Gaps advance the clock without producing events; the total duration is
    the clock after the last symbol. Characters other than "." and "-" are
    ignored, and letters or tokens left empty by that are skipped entirely.
    """
    events = []
    clock = 0

    tokens = _letters(cipher)
    for token_index, letters in enumerate(tokens):
        for letter_index, letter in enumerate(letters):
            for symbol_index, symbol in enumerate(letter):
                duration = _SYMBOL_DURATIONS[symbol]
                events.append(MorseEvent(start=clock, duration=duration))
                clock += duration
                if symbol_index < len(letter) - 1:
                    clock += SYMBOL_GAP
            if letter_index < len(letters) - 1:
                clock += LETTER_GAP
        if token_index < len(tokens) - 1:
            clock += TOKEN_GAP

    return MorseTimeline(events=tuple(events), total_duration=clock, morse_string=cipher)
