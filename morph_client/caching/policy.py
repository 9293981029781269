"""
Cache-write policy: TTL presets, stampede jitter and cache keys.
"""

import hashlib
import random
from enum import Enum
from typing import Optional, Union


DEFAULT_JITTER_CAP = 120


class CacheTtl(str, Enum):
    """Named TTL presets."""
    NONE = "none"
    SHORT = "short"
    NORMAL = "normal"
    MEDIUM = "medium"
    LONG = "long"
    X_LONG = "xlong"
    INDEFINITE = "indefinite"


TTL_SECONDS = {
    CacheTtl.NONE: 0,
    CacheTtl.SHORT: 60,
    CacheTtl.NORMAL: 300,
    CacheTtl.MEDIUM: 1200,
    CacheTtl.LONG: 7200,
    CacheTtl.X_LONG: 86400,
}


def resolve_ttl(ttl: Union[int, str, CacheTtl]) -> Optional[int]:
    """Seconds for a TTL spec; ``None`` means no expiry, ``0`` means do not cache."""
    if isinstance(ttl, bool):
        raise ValueError(f"Invalid TTL: {ttl!r}")
    if isinstance(ttl, int):
        if ttl < 0:
            raise ValueError(f"TTL must not be negative: {ttl}")
        return ttl
    if isinstance(ttl, str) and ttl.strip().isdigit():
        # Seconds read from the environment arrive as text
        return int(ttl)

    preset = CacheTtl(ttl.lower() if isinstance(ttl, str) else ttl)
    if preset is CacheTtl.INDEFINITE:
        return None
    return TTL_SECONDS[preset]


def jittered_ttl(
    ttl: Optional[int],
    rng: Optional[random.Random] = None,
    cap: int = DEFAULT_JITTER_CAP,
) -> Optional[int]:
    """Spread expiries: ``ttl + min(randint(0, ttl // 10), cap)``."""
    if not ttl:
        return ttl
    extra = (rng or random).randint(0, ttl // 10)
    return ttl + min(extra, cap)


def build_cache_key(prefix: str, url: str, id: str) -> str:
    """Key for a view; the id is part of the key because bodies embed it."""
    url_hash = hashlib.md5(url.encode()).hexdigest()
    id_hash = hashlib.md5(id.encode()).hexdigest()
    return f"{prefix}:view:{url_hash}:{id_hash}"
