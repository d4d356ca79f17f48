import hashlib
import re

POSTAL_CODE_RE = re.compile(r"^\d{4}\s?[A-Za-z]{2}$")

def normalize_address(addr: str) -> str:
    """
    Minimal normalization so cache keys & seeds are stable:
    - trim whitespace
    - collapse multiple spaces
    Case is kept; upstream registries echo the address back verbatim.
    """
    return " ".join(addr.strip().split())

def normalize_postal_code(postal_code: str) -> str:
    """'3769 dg' -> '3769DG'."""
    return re.sub(r"\s", "", postal_code or "").upper()

def postal_area(postal_code: str) -> str:
    """First four characters of the normalized postal code."""
    return normalize_postal_code(postal_code)[:4]

def is_valid_postal_code(postal_code: str) -> bool:
    return bool(POSTAL_CODE_RE.match((postal_code or "").strip()))

def fnv1a_32(s: str) -> int:
    """Deterministic, fast hash for seed generation."""
    h = 0x811c9dc5
    for c in s.encode("utf-8"):
        h ^= c
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h

def seeded_rand(seed: int, n: int = 1) -> list[float]:
    """
    Stateless pseudo-random generator (Mulberry32-like) so
    same seed → same outputs without storing PRNG state.
    """
    out = []
    t = (seed + 0x6D2B79F5) & 0xFFFFFFFF
    for _ in range(n):
        t = (t ^ (t >> 15)) * (t | 1) & 0xFFFFFFFF
        t ^= t + ((t ^ (t >> 7)) * (t | 61) & 0xFFFFFFFF)
        r = ((t ^ (t >> 14)) & 0xFFFFFFFF) / 4294967296.0
        out.append(r)
    return out

def query_digest(query: str) -> str:
    """Stable cache key for free-text search queries."""
    return hashlib.sha256(query.encode("utf-8")).hexdigest()[:32]

def weak_etag(payload_bytes: bytes) -> str:
    """Weak ETag for client-side conditional requests."""
    h = hashlib.sha256(payload_bytes).hexdigest()[:24]
    return f'W/"{h}"'
