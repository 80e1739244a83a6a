from __future__ import annotations

import re
import unicodedata

# Languages written in Latin script, counted by words rather than characters.
LATIN_SCRIPT_LANGUAGES = frozenset(
    {"en", "de", "es", "fr", "it", "nl", "pl", "pt", "sv", "da", "no", "fi", "cs", "tr", "id", "vi"}
)

_WORD = re.compile(r"\S+")
_ZWNJ = "\u200c"
_ZWJ = "\u200d"
_JOINERS = {_ZWNJ, _ZWJ}


def is_latin_script(language: str | None) -> bool:
    if not language:
        return False
    return language.lower().split("-")[0] in LATIN_SCRIPT_LANGUAGES


def _is_extending(char: str) -> bool:
    if char in _JOINERS:
        return True
    if "\ufe00" <= char <= "\ufe0f":
        return True
    return unicodedata.combining(char) != 0 or unicodedata.category(char) in ("Mn", "Me")


def count_graphemes(text: str) -> int:
    """Approximate user-perceived characters: code points minus combining marks, line breaks and joiners."""

    count = 0
    joined = False
    for char in text:
        if char in "\r\n":
            continue
        if _is_extending(char):
            joined = char == _ZWJ
            continue
        if joined:
            joined = False
            continue
        count += 1
    return count


def count_words(text: str) -> int:
    return len(_WORD.findall(text))


def count_units(text: str, language: str | None) -> int:
    """Locale-aware size of `text`: words for Latin scripts, graphemes otherwise."""

    if is_latin_script(language):
        return count_words(text)
    return count_graphemes(text)
