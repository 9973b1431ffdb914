"""Confusable-character folding for domain labels."""

from __future__ import annotations

import unicodedata

import idna

# Latin target -> look-alike characters (Cyrillic, Greek, Armenian, accented Latin).
CONFUSABLES: dict[str, str] = {
    "a": "àáâãäåāăąαаɑ",
    "b": "ḃḅḇьвƅ",
    "c": "ćĉċçčϲсⅽ",
    "d": "ďḋḍḏḑḓԁժⅾ",
    "e": "èéêëēĕėęěеεҽ",
    "g": "ĝğġģցǥɡ",
    "h": "ĥḣḥḧḩḫһհ",
    "i": "ìíîïĩīĭįıіιⅰ",
    "j": "ĵјϳ",
    "k": "ķḱḳḵκк",
    "l": "ĺļľḷḹḻḽӏℓⅼ",
    "m": "ḿṁṃмⅿ",
    "n": "ñńņňṅṇṉṋпո",
    "o": "òóôõöøōŏőοоօ",
    "p": "ṕṗрρ",
    "q": "ԛ",
    "r": "ŕŗřṙṛṝṟг",
    "s": "śŝşšṡṣṥṧṩѕ",
    "t": "ţťṫṭṯṱтτ",
    "u": "ùúûüũūŭůűųυս",
    "v": "ṽṿνѵⅴ",
    "w": "ŵẁẃẅẇẉẘԝ",
    "x": "ẋẍхχⅹ",
    "y": "ýÿŷẏẙỳỵуү",
    "z": "źżžẑẓẕᴢ",
    "3": "зʒȝ",
    "5": "ƽ",
    "6": "б",
}

HOMOGLYPHS: dict[str, str] = {
    variant: latin for latin, variants in CONFUSABLES.items() for variant in variants
}


def decode_punycode(label: str) -> str:
    """Decode ``xn--`` labels to Unicode so look-alikes can be folded."""
    if "xn--" not in label:
        return label
    try:
        decoded = idna.decode(label)
    except (idna.IDNAError, UnicodeError):
        return label
    return decoded or label


def _fold_char(char: str) -> str:
    if char.isascii():
        return char
    mapped = HOMOGLYPHS.get(char)
    if mapped:
        return mapped
    # Mathematical, full-width and circled variants fold under NFKC.
    folded = unicodedata.normalize("NFKC", char).lower()
    if folded.isascii():
        return folded
    if len(folded) == 1 and folded in HOMOGLYPHS:
        return HOMOGLYPHS[folded]
    stripped = "".join(
        ch for ch in unicodedata.normalize("NFKD", folded) if not unicodedata.combining(ch)
    )
    if stripped and stripped.isascii():
        return stripped
    return char


def normalize_homoglyphs(text: str) -> str:
    """Replace confusable characters with their Latin equivalents.

    Pure ASCII input is returned unchanged, so normalization is idempotent.
    """
    if not text or text.isascii():
        return text
    return "".join(_fold_char(char) for char in text)


def has_confusables(text: str) -> bool:
    return bool(text) and normalize_homoglyphs(text) != text
