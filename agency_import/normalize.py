"""
Text normalization for matching spreadsheet values against stored records.

Every comparison between free text coming from an import file and a
canonical reference name (insurance company, policy number, header name)
goes through normalize_text(). Two values that normalize to the same string
denote the same entity for matching purposes. Stored values always keep the
operator's original casing.

Examples:
    "Türkiye Sigorta"      → "turkiye sigorta"
    "TURKIYE SIGORTA."     → "turkiye sigorta"
    "Anadolu  Sigorta A.Ş." → "anadolu sigorta as"
"""

import re
import math
from typing import Any


# Turkish letters folded to ASCII. Upper-case forms are listed explicitly
# because str.lower() maps "İ" to "i" + U+0307 and leaves dotless "ı" alone.
TURKISH_FOLD = {
    "Ç": "c", "ç": "c",
    "Ğ": "g", "ğ": "g",
    "İ": "i", "I": "i", "ı": "i",
    "Ö": "o", "ö": "o",
    "Ş": "s", "ş": "s",
    "Ü": "u", "ü": "u",
    "Â": "a", "â": "a",
    "Î": "i", "î": "i",
    "Û": "u", "û": "u",
    "\u0307": "",  # combining dot above
}

_FOLD_TABLE = str.maketrans(TURKISH_FOLD)
_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCT = re.compile(r"[,;:]+$")


def to_text(value: Any) -> str:
    """
    Render a spreadsheet cell as text.

    None and NaN become "", integral floats lose their ".0" (Excel hands
    policy numbers back as 123456789.0).
    """
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def normalize_text(value: Any) -> str:
    """
    Canonicalize free text for comparison.

    Folds Turkish letters, lower-cases, drops abbreviation periods and
    trailing separators, collapses whitespace runs and trims.
    """
    text = to_text(value)
    if not text:
        return ""

    text = text.translate(_FOLD_TABLE).lower().translate(_FOLD_TABLE)
    text = text.replace(".", "")
    text = _WHITESPACE.sub(" ", text).strip()
    return _TRAILING_PUNCT.sub("", text).strip()


def normalize_header(value: Any) -> str:
    """Normalize a column header; underscores count as spaces."""
    return normalize_text(to_text(value).replace("_", " "))


def normalize_plate(value: Any) -> str:
    """Vehicle plates are compared without spaces, upper-case."""
    return _WHITESPACE.sub("", to_text(value)).upper()


def mask_id(value: Any) -> str:
    """Mask a national ID for logs, keeping the last four digits."""
    text = to_text(value)
    if len(text) <= 4:
        return "****"
    return "*" * (len(text) - 4) + text[-4:]
