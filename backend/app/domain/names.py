"""Player-name canonicalisation.

The same normalisation feeds both the stored names and the duplicate-person
guard, so two spellings of one name (full-width vs half-width letters,
hiragana vs katakana, stray spaces) compare equal.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence

from backend.app.core.errors import InvalidName

DEFAULT_MAX_NAME_LENGTH = 20

# Placeholder for "looking for players"; not a person, so never guarded.
LOOKING_TOKEN = "looking"
COACH_TOKEN = "コーチ"
CHOONPU = "ー"

_WHITESPACE = re.compile(r"\s+")
# Dash and tilde look-alikes that follow a kana are long-vowel marks.
_CHOONPU_VARIANTS = re.compile(
    r"(?<=[ぁ-ゖァ-ヺー])[-~‐-―−〜〰～]"
)

_HIRAGANA_START = 0x3041
_HIRAGANA_END = 0x3096
_KANA_OFFSET = 0x60


def normalize_name(raw: str) -> str:
    """NFKC-fold, turn ideographic spaces into ASCII ones, collapse runs and trim."""
    text = unicodedata.normalize("NFKC", raw)
    text = text.replace("　", " ")
    return _WHITESPACE.sub(" ", text).strip()


def compact_name(raw: str) -> str:
    text = _WHITESPACE.sub("", normalize_name(raw))
    return _CHOONPU_VARIANTS.sub(CHOONPU, text)


def fold_kana(text: str) -> str:
    """Map hiragana to the matching katakana."""
    return "".join(
        chr(ord(ch) + _KANA_OFFSET) if _HIRAGANA_START <= ord(ch) <= _HIRAGANA_END else ch
        for ch in text
    )


def _is_han(cp: int) -> bool:
    return (
        0x3005 <= cp <= 0x3007
        or 0x3400 <= cp <= 0x4DBF
        or 0x4E00 <= cp <= 0x9FFF
        or 0xF900 <= cp <= 0xFAFF
        or 0x20000 <= cp <= 0x3134F
    )


def _is_kana(cp: int) -> bool:
    return (
        _HIRAGANA_START <= cp <= _HIRAGANA_END
        or 0x309D <= cp <= 0x309F
        or 0x30A1 <= cp <= 0x30FA
        or 0x30FC <= cp <= 0x30FF
        or 0x31F0 <= cp <= 0x31FF
    )


def is_allowed_char(ch: str) -> bool:
    cp = ord(ch)
    if _is_han(cp) or _is_kana(cp):
        return True
    return ch.isalpha() and unicodedata.name(ch, "").startswith("LATIN")


def is_placeholder(raw: str) -> bool:
    return compact_name(raw).casefold() == LOOKING_TOKEN


def is_coach_token(raw: str) -> bool:
    return fold_kana(compact_name(raw)) == COACH_TOKEN


def guard_key(raw: str) -> str:
    """Comparison key used to decide whether two names are the same person."""
    return fold_kana(compact_name(raw)).casefold()


def clean_player_names(raw_names: Iterable[object]) -> list[str]:
    """Drop non-string and blank entries, keeping order."""
    cleaned = []
    for value in raw_names:
        if isinstance(value, str) and normalize_name(value):
            cleaned.append(value)
    return cleaned


def validate_player_name(raw: str, index: int, max_length: int = DEFAULT_MAX_NAME_LENGTH) -> str:
    name = compact_name(raw)
    if not name:
        raise InvalidName(index, "empty")
    if name.casefold() == LOOKING_TOKEN:
        return LOOKING_TOKEN
    if len(name) > max_length:
        raise InvalidName(index, "too_long", f"Player name at position {index + 1} exceeds {max_length} characters")
    for ch in name:
        if not is_allowed_char(ch):
            raise InvalidName(index, "disallowed_character")
    if fold_kana(name) == COACH_TOKEN:
        raise InvalidName(index, "reserved", f"Player name at position {index + 1} cannot be used")
    return name


def normalize_player_names(
    raw_names: Sequence[str],
    max_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> tuple[str, ...]:
    return tuple(validate_player_name(raw, i, max_length) for i, raw in enumerate(raw_names))
