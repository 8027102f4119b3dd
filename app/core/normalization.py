import re
import unicodedata
from decimal import Decimal, InvalidOperation

# Dígitos arábigo-índicos que llegan desde teclados en árabe
_ARABIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩", "0123456789")


def _strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize_cin(value: str) -> str:
    """Keep only alphanumeric chars for national identity numbers."""
    return re.sub(r"[^A-Za-z0-9]", "", (value or "").translate(_ARABIC_DIGITS).strip()).upper()


def normalize_client_name(value: str) -> str:
    """Collapse repeated spaces. Arabic and Latin letters are both kept."""
    raw = unicodedata.normalize("NFKC", (value or "").strip())
    return re.sub(r"\s+", " ", raw).strip()


def normalize_phone(value: str) -> str:
    """Keep only digits."""
    return re.sub(r"\D", "", (value or "").translate(_ARABIC_DIGITS).strip())


def parse_amount(value):
    """
    Parse a typed money amount ("12,500.50", "12 500", "١٢٥٠٠").
    Thousands separators and currency suffixes are dropped.
    Returns None when nothing numeric is left.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    raw = _strip_accents(str(value)).translate(_ARABIC_DIGITS)
    cleaned = re.sub(r"[^0-9.\-]", "", raw.replace(",", ""))
    if not cleaned or cleaned in {"-", ".", "-."}:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
