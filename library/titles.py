"""Title normalization and similarity scoring for duplicate detection.

``normalize_title`` turns a raw store title into a comparison key by removing
the noise that differs between platforms (edition suffixes, platform names,
release years, punctuation) and by canonicalising abbreviations and Roman
numerals.  ``title_similarity`` compares two titles and returns the strongest
of several independent signals, so a single convincing heuristic is enough for
a match.
"""

from __future__ import annotations

import re
import unicodedata
from re import Pattern

from rapidfuzz.distance import Levenshtein


__all__ = [
    "confidence_percent",
    "fuzzy_threshold",
    "normalize_title",
    "normalized_similarity",
    "super_normalize_title",
    "title_similarity",
]


_INVISIBLE_CODEPOINTS = (0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF)
_UNICODE_SPACE_CODEPOINTS = (0x00A0, *range(0x2000, 0x200B), 0x202F, 0x205F, 0x3000)
_TRADEMARK_CODEPOINTS = (0x2122, 0x00AE, 0x00A9)
_DASH_CODEPOINTS = (0x2013, 0x2014)
_QUOTE_CODEPOINTS = (0x2018, 0x2019, 0x201C, 0x201D, 0x0022, 0x0060, 0x00B4)


def _char_class(codepoints: tuple[int, ...], extra: str = "") -> Pattern[str]:
    return re.compile("[" + extra + re.escape("".join(map(chr, codepoints))) + "]")


_INVISIBLE_RE = _char_class(_INVISIBLE_CODEPOINTS)
_UNICODE_SPACE_RE = _char_class(_UNICODE_SPACE_CODEPOINTS)
_TRADEMARK_RE = _char_class(_TRADEMARK_CODEPOINTS)
_LEADING_ARTICLE_RE = re.compile(r"^the\s+")
_PUNCTUATION_RE = _char_class(_DASH_CODEPOINTS, extra=r":\-_.,'!?&+")
_QUOTE_RE = _char_class(_QUOTE_CODEPOINTS)
_PARENTHETICAL_RE = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_EDITION_RE = re.compile(
    r"\b("
    r"edition|remaster|remastered|remake|goty|game\s*of\s*the\s*year|definitive|"
    r"ultimate|complete|deluxe|enhanced|hd|4k|anniversary|special|collectors?|"
    r"premium|standard|gold|silver|platinum|digital|physical|bundle|pack|"
    r"collection|trilogy|anthology|directors?\s*cut|extended|expanded|legendary|"
    r"classic|original|new|super|ultra|mega|hyper|pro|plus|ex|dx|gt|vr|ar|xe|"
    r"se|le|ce|episodes?\s*from\s*liberty\s*city|lost\s*and\s*damned|"
    r"ballad\s*of\s*gay\s*tony"
    r")\b"
)
_PLATFORM_RE = re.compile(
    r"\b("
    r"pc|ps[1-5]|playstation\s*[1-5]?|xbox\s*(one|series\s*[xs]|360)?|"
    r"switch|nintendo|steam|epic|gog|origin|uplay|battlenet"
    r")\b"
)
_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
_WHITESPACE_RE = re.compile(r"\s+")
_DIGITS_RE = re.compile(r"\d+")

# "the last of us" is expanded without its article: a spelled-out title has
# already lost the leading "the" by the time abbreviations are expanded.
_ABBREVIATIONS: tuple[tuple[Pattern[str], str], ...] = tuple(
    (re.compile(pattern), expansion)
    for pattern, expansion in (
        (r"\bgta\b", "grand theft auto"),
        (r"\bcod\b", "call of duty"),
        (r"\bmw\b", "modern warfare"),
        (r"\bbo\b", "black ops"),
        (r"\brdr\b", "red dead redemption"),
        (r"\bnfs\b", "need for speed"),
        (r"\bff\b", "final fantasy"),
        (r"\bmgs\b", "metal gear solid"),
        (r"\bdmc\b", "devil may cry"),
        (r"\bre\b", "resident evil"),
        (r"\bac\b", "assassins creed"),
        (r"\bfar cry\b", "farcry"),
        (r"\bfarcry\b", "far cry"),
        (r"\bbiohazard\b", "resident evil"),
        (r"\bmk\b", "mortal kombat"),
        (r"\bsf\b", "street fighter"),
        (r"\btlou\b", "last of us"),
        (r"\bkh\b", "kingdom hearts"),
        (r"\bdq\b", "dragon quest"),
        (r"\bsmt\b", "shin megami tensei"),
        (r"\bnba2k", "nba 2k"),
        (r"\bwwe2k", "wwe 2k"),
    )
)

# Unicode Roman numeral code points: U+2160-U+216B upper case, U+2170-U+217B
# lower case, both counting one to twelve.
_UNICODE_ROMAN_TABLE = {
    base + offset: f" {offset + 1} "
    for base in (0x2160, 0x2170)
    for offset in range(12)
}

# A lone "i" is left alone; it is far more often a word than a numeral.
_ROMAN_NUMERALS: dict[str, str] = {
    "ii": "2", "iii": "3", "iv": "4", "v": "5", "vi": "6", "vii": "7",
    "viii": "8", "ix": "9", "x": "10", "xi": "11", "xii": "12", "xiii": "13",
    "xiv": "14", "xv": "15",
}
_ROMAN_RE = re.compile(
    r"\b("
    + "|".join(sorted(_ROMAN_NUMERALS, key=len, reverse=True))
    + r")\b"
)


def _expand_abbreviations(text: str) -> str:
    for pattern, expansion in _ABBREVIATIONS:
        text = pattern.sub(expansion, text)
    return text


def _roman_to_arabic(text: str) -> str:
    text = text.translate(_UNICODE_ROMAN_TABLE)
    return _ROMAN_RE.sub(lambda match: _ROMAN_NUMERALS[match.group(1)], text)


def _normalize_once(text: str) -> str:
    text = unicodedata.normalize("NFC", text.lower())
    text = _INVISIBLE_RE.sub("", text)
    text = _UNICODE_SPACE_RE.sub(" ", text)
    text = _TRADEMARK_RE.sub("", text)
    text = _LEADING_ARTICLE_RE.sub("", text.lstrip())
    text = _PUNCTUATION_RE.sub(" ", text)
    text = _QUOTE_RE.sub("", text)
    text = _PARENTHETICAL_RE.sub(" ", text)
    text = _EDITION_RE.sub(" ", text)
    text = _PLATFORM_RE.sub(" ", text)
    text = _YEAR_RE.sub(" ", text)
    text = _expand_abbreviations(text)
    text = _roman_to_arabic(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_title(title: str | None) -> str:
    """Return the comparison key for ``title``.

    Removing an edition or platform token can expose a new leading article
    ("Deluxe The Game"), so the pipeline is repeated until the key is stable.
    """

    if not title:
        return ""
    current = _normalize_once(str(title))
    following = _normalize_once(current)
    while following != current:
        current = following
        following = _normalize_once(current)
    return current


def super_normalize_title(title: str | None, *, normalized: str | None = None) -> str:
    """Return the normalized title with every digit removed.

    Falls back to the plain normalized title when fewer than four characters
    would remain.
    """

    base = normalized if normalized is not None else normalize_title(title)
    stripped = _WHITESPACE_RE.sub(" ", _DIGITS_RE.sub("", base)).strip()
    return stripped if len(stripped) > 3 else base


def _word_set(text: str) -> set[str]:
    return {word for word in text.split(" ") if len(word) > 1}


def normalized_similarity(a: str, b: str) -> float:
    """Score two already-normalized titles; see :func:`title_similarity`."""

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    max_len = max(len(a), len(b))
    scores = [1 - Levenshtein.distance(a, b) / max_len]

    if b in a:
        scores.append(len(b) / len(a) + 0.2)
    elif a in b:
        scores.append(len(a) / len(b) + 0.2)

    words_a = _word_set(a)
    words_b = _word_set(b)
    if words_a and words_b:
        jaccard = len(words_a & words_b) / len(words_a | words_b)
        scores.append(jaccard * (1 + min(len(words_a), len(words_b)) * 0.1))

    first_a = a.split(" ")[0]
    first_b = b.split(" ")[0]
    if first_a == first_b and len(first_a) > 2:
        scores.append(0.5 + (len(first_a) / max_len) * 0.3)

    super_a = super_normalize_title(None, normalized=a)
    super_b = super_normalize_title(None, normalized=b)
    if super_a == super_b and len(super_a) > 3:
        scores.append(0.85)

    return max(scores)


def title_similarity(title_a: str | None, title_b: str | None) -> float:
    """Return how likely two raw titles name the same game.

    The value is the maximum of several signals and may exceed ``1.0``; use
    :func:`confidence_percent` before showing it to users.
    """

    return normalized_similarity(normalize_title(title_a), normalize_title(title_b))


def fuzzy_threshold(normalized_a: str, normalized_b: str) -> float:
    """Return the acceptance threshold for a pair of normalized titles.

    Short titles need a much stronger signal before they are grouped.
    """

    shortest = min(len(normalized_a), len(normalized_b))
    if shortest < 5:
        return 0.85
    if shortest < 10:
        return 0.70
    return 0.60


def confidence_percent(score: float) -> int:
    return max(0, min(100, int(round(score * 100))))
