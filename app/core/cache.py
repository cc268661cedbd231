"""In-memory cache for promo reporting (no Redis)."""
import json
import time
from typing import Any, Optional, Dict, Tuple

CACHE_PREFIX_PROMO_STATS = "promo_stats"
CACHE_TTL_SHORT = 120

_memory: Dict[str, Tuple[float, str]] = {}  # key -> (expires_at, json_value)


def cache_get(key: str) -> Optional[Any]:
    now = time.time()
    if key not in _memory:
        return None
    expires_at, raw = _memory[key]
    if now > expires_at:
        _memory.pop(key, None)
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def cache_set(key: str, value: Any, ttl_seconds: int = CACHE_TTL_SHORT) -> bool:
    try:
        _memory[key] = (time.time() + ttl_seconds, json.dumps(value, default=str))
        return True
    except (TypeError, ValueError):
        return False


def cache_delete_pattern(prefix: str) -> bool:
    to_del = [k for k in _memory if k.startswith(prefix)]
    for k in to_del:
        _memory.pop(k, None)
    return True


def promo_stats_cache_key(top_limit: int) -> str:
    return f"{CACHE_PREFIX_PROMO_STATS}:top{top_limit}"


def invalidate_promo_stats() -> bool:
    return cache_delete_pattern(CACHE_PREFIX_PROMO_STATS)
