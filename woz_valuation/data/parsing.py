"""
Text extraction rules shared by every tier that sees raw register content.

The register renders amounts Dutch-style (``€ 412.000``) but proxies and
extract APIs sometimes hand back US formatting, so separators are
disambiguated by which one appears last.
"""
import re
from typing import Optional, Tuple

MIN_PLAUSIBLE_VALUE = 50_000
MAX_PLAUSIBLE_VALUE = 5_000_000

_AMOUNT = r"\d{1,3}(?:[.,]\d{3})*(?:[.,]\d{2})?"

VALUE_PATTERNS = [
    re.compile(rf"€\s*({_AMOUNT})"),
    re.compile(rf"({_AMOUNT})\s*(?:euro|€)", re.IGNORECASE),
    re.compile(r"woz[^€\d]*€?\s*(\d{1,3}(?:[.,]\d{3})*)", re.IGNORECASE),
    re.compile(r"waarde[^€\d]*€?\s*(\d{1,3}(?:[.,]\d{3})*)", re.IGNORECASE),
]

_YEAR_RE = re.compile(r"(?:19|20)\d{2}")
_AREA_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*m[²2]?")
_STREET_FIRST_RE = re.compile(r"([A-Za-zÀ-ÿ'\-. ]+?)\s*(\d+)\s*([A-Za-z]?)\b")
_NUMBER_FIRST_RE = re.compile(r"(\d+)\s*([A-Za-z]?)\s+([A-Za-zÀ-ÿ'\-. ]+)")


def normalize_number(text: str) -> Optional[int]:
    """
    '412.000' -> 412000, '1.234,56' -> 1235, '1,234.56' -> 1235,
    '123,45' -> 123. Returns None when nothing numeric is left.
    """
    s = (text or "").strip()
    if not s:
        return None
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        parts = s.split(",")
        s = s.replace(",", ".") if len(parts) == 2 and len(parts[1]) <= 2 else s.replace(",", "")
    elif "." in s:
        parts = s.split(".")
        if not (len(parts) == 2 and len(parts[1]) <= 2):
            s = s.replace(".", "")
    try:
        return round(float(s))
    except ValueError:
        return None


def is_plausible_value(value: Optional[int]) -> bool:
    return value is not None and MIN_PLAUSIBLE_VALUE <= value <= MAX_PLAUSIBLE_VALUE


def parse_assessed_value(text: str) -> Optional[int]:
    """
    Pick the assessed value out of a block of text. Every plausible amount
    is collected and the largest wins: the headline figure is the biggest
    distinct number on the page.
    """
    if not text:
        return None
    candidates = []
    for pattern in VALUE_PATTERNS:
        for match in pattern.finditer(text):
            value = normalize_number(match.group(1))
            if is_plausible_value(value):
                candidates.append(value)
    if candidates:
        return max(candidates)

    # Bare number, e.g. an extract API that already stripped the currency
    bare = re.search(_AMOUNT, re.sub(r"[^\d.,]", "", text))
    if bare:
        value = normalize_number(bare.group(0))
        if is_plausible_value(value):
            return value
    return None


def parse_year(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    m = _YEAR_RE.search(text)
    return int(m.group(0)) if m else None


def parse_surface_area(text: Optional[str]) -> Optional[float]:
    if not text:
        return None
    m = _AREA_RE.search(text)
    if not m:
        return None
    return float(m.group(1).replace(",", "."))


def parse_dutch_address(address: str) -> Tuple[str, str]:
    """
    Split free text into (street, house_number). Accepts "Kampweg 10",
    "Kampweg 10a" and "10 Kampweg". The house number keeps its letter suffix.
    Returns ("<address>", "") when no number is present.
    """
    text = (address or "").strip()
    m = _STREET_FIRST_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1).strip(), f"{m.group(2)}{m.group(3)}"
    m = _NUMBER_FIRST_RE.search(text)
    if m:
        return m.group(3).strip(), f"{m.group(1)}{m.group(2)}"
    return text, ""
