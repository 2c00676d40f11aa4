# salesrecon/core/normalizers.py

"""
Text and amount normalization for sales lines.

Ensures descriptions and catalog names compare on the same footing
regardless of accents, punctuation or case.
"""

from decimal import Decimal, InvalidOperation
from typing import Any
import re
import unicodedata

MIN_TOKEN_LENGTH = 2


def strip_diacritics(s: str) -> str:
    """Remove combining marks ("Açúcar" -> "Acucar")."""
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize(text: str | None) -> list[str]:
    """
    Tokenize a description for matching.

    - Lowercase
    - Remove diacritics
    - Collapse punctuation and whitespace
    - Drop tokens shorter than 2 characters, unless the whole string is
    """
    if not text:
        return []

    s = strip_diacritics(text).lower()
    s = re.sub(r"[^a-z0-9]+", " ", s).strip()
    if not s:
        return []

    tokens = s.split(" ")
    if len(s) < MIN_TOKEN_LENGTH:
        return tokens

    return [t for t in tokens if len(t) >= MIN_TOKEN_LENGTH]


def normalize_string(s: str | None) -> str:
    """Normalized tokens joined by single spaces, for substring checks and keys."""
    return " ".join(normalize(s))


def normalize_amount(amount: Any) -> Decimal | None:
    """
    Normalize an amount to Decimal.

    Handles:
    - Integers, floats and Decimals
    - Strings with currency symbols ("€ 8,50", "8.50 EUR")
    - European grouping ("1.234,50")
    """
    if amount is None or isinstance(amount, bool):
        return None

    if isinstance(amount, Decimal):
        return amount

    if isinstance(amount, (int, float)):
        return Decimal(str(amount))

    if isinstance(amount, str):
        cleaned = re.sub(r"[^\d,.\-]", "", amount)
        if not cleaned:
            return None

        if "," in cleaned and "." in cleaned:
            # Whichever separator comes last is the decimal one
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            cleaned = cleaned.replace(",", ".")

        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None

    return None
