"""Feature flags with environment overrides and percentage rollouts.

Resolution order for ``FeatureFlagService.is_enabled(name, context)``:

1.  Environment override ``FF_<NAME>`` (``true``/``1`` or ``false``/``0``).
2.  The flag rule, from the process-local cache (TTL) or the store.
3.  Rule evaluation: ``enabled`` gate, rollout bucket, user allow-list,
    role allow-list.

A missing store, a missing flag and a store error all resolve to
``False`` (fail-closed).  Store errors are logged and never cached.

Rollout buckets come from ``hash_context``, a 32-bit rolling hash over
the UTF-16 code units of the caller key.  It matches the hash browser
clients compute, so a user lands in the same bucket on every surface
and across restarts.
"""

from __future__ import annotations

import logging
import os
import re
import struct
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from marketplace_core.core.clock import IClock, WallClock
from marketplace_core.core.errors import ValidationError
from marketplace_core.observability.metrics import record_flag_evaluation

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "FF_"
DEFAULT_CACHE_TTL_SECONDS = 300
ANONYMOUS_KEY = "anonymous"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FlagContext:
    """Who is asking.  Any field may be unknown."""

    user_id: str | None = None
    session_id: str | None = None
    role: str | None = None

    @property
    def key(self) -> str:
        """Bucketing key: user id, else session id, else ``"anonymous"``."""
        if self.user_id is not None:
            return self.user_id
        if self.session_id is not None:
            return self.session_id
        return ANONYMOUS_KEY


@dataclass(frozen=True)
class FeatureFlag:
    name: str
    enabled: bool = False
    rollout_percentage: int = 100
    target_users: frozenset[str] = field(default_factory=frozenset)
    target_roles: frozenset[str] = field(default_factory=frozenset)
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("FeatureFlag.name must not be empty")
        pct = self.rollout_percentage
        if isinstance(pct, bool) or not isinstance(pct, int) or not 0 <= pct <= 100:
            raise ValidationError(
                f"FeatureFlag {self.name}: rollout_percentage must be an int in [0, 100], got {pct!r}"
            )
        object.__setattr__(self, "target_users", frozenset(self.target_users or ()))
        object.__setattr__(self, "target_roles", frozenset(self.target_roles or ()))


# ---------------------------------------------------------------------------
# Hashing and env naming
# ---------------------------------------------------------------------------

def hash_key(key: str) -> int:
    """``abs`` of the signed 32-bit ``h = h * 31 + unit`` hash of *key*.

    Iterates UTF-16 code units, so characters outside the BMP contribute
    two units (a surrogate pair), as in JavaScript strings.
    """
    h = 0
    for (unit,) in struct.iter_unpack("<H", key.encode("utf-16-le", "surrogatepass")):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h)


def hash_context(context: FlagContext | None) -> int:
    return hash_key((context or FlagContext()).key)


def rollout_bucket(context: FlagContext | None) -> int:
    """Bucket in ``[0, 100)`` for percentage rollouts."""
    return hash_context(context) % 100


def env_var_name(flag_name: str, prefix: str = DEFAULT_ENV_PREFIX) -> str:
    """``"identity.new_module"`` -> ``"FF_IDENTITY_NEW_MODULE"``."""
    return prefix + _NON_ALNUM.sub("_", flag_name.upper())


def parse_env_override(value: str | None) -> bool | None:
    """Parse an override value; ``None`` means "no decision"."""
    if value is None:
        return None
    text = value.strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


# ---------------------------------------------------------------------------
# Store protocol and in-memory implementation
# ---------------------------------------------------------------------------

@runtime_checkable
class IFeatureFlagStore(Protocol):
    async def get_flag(self, name: str) -> FeatureFlag | None:
        """Return the flag rule, or ``None`` if no such flag exists."""
        ...

    async def list_flags(self) -> list[FeatureFlag]:
        ...

    async def upsert(self, flag: FeatureFlag) -> None:
        ...


class InMemoryFeatureFlagStore:
    def __init__(self, flags: Iterable[FeatureFlag] = ()) -> None:
        self._flags: dict[str, FeatureFlag] = {f.name: f for f in flags}
        self.fetch_count = 0

    async def get_flag(self, name: str) -> FeatureFlag | None:
        self.fetch_count += 1
        return self._flags.get(name)

    async def list_flags(self) -> list[FeatureFlag]:
        return sorted(self._flags.values(), key=lambda f: f.name)

    async def upsert(self, flag: FeatureFlag) -> None:
        self._flags[flag.name] = flag

    def remove(self, name: str) -> None:
        self._flags.pop(name, None)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@dataclass
class _CacheEntry:
    flag: FeatureFlag | None
    expires_at: datetime


class FeatureFlagService:
    """Resolve named flags for a caller context.

    The cache holds flag *rules* (including "no such flag") per name for
    ``cache_ttl_seconds``; the rule is evaluated against each caller's
    context, so rollouts stay sticky per user while sharing one fetch.
    ``clear_cache()`` is the only invalidation path besides expiry.
    """

    def __init__(
        self,
        store: IFeatureFlagStore | None = None,
        *,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        env_prefix: str = DEFAULT_ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=cache_ttl_seconds)
        self._env_prefix = env_prefix
        self._environ = environ if environ is not None else os.environ
        self._clock: IClock = clock or WallClock()
        self._cache: dict[str, _CacheEntry] = {}

    async def is_enabled(self, name: str, context: FlagContext | None = None) -> bool:
        override = parse_env_override(self._environ.get(env_var_name(name, self._env_prefix)))
        if override is not None:
            record_flag_evaluation(name, "env", override)
            return override

        if self._store is None:
            record_flag_evaluation(name, "default", False)
            return False

        try:
            flag, source = await self._resolve(name)
            result = self.evaluate(flag, context) if flag is not None else False
        except Exception:
            logger.exception("Feature flag resolution failed for %s; defaulting to off", name)
            record_flag_evaluation(name, "error", False)
            return False

        record_flag_evaluation(name, source, result)
        return result

    @staticmethod
    def evaluate(flag: FeatureFlag, context: FlagContext | None = None) -> bool:
        """Apply *flag*'s rule to *context*.  Pure."""
        if not flag.enabled:
            return False
        ctx = context or FlagContext()
        if flag.rollout_percentage < 100 and rollout_bucket(ctx) >= flag.rollout_percentage:
            return False
        if flag.target_users and ctx.user_id not in flag.target_users:
            return False
        if flag.target_roles and ctx.role not in flag.target_roles:
            return False
        return True

    async def get_enabled_flags(
        self,
        names: Iterable[str],
        context: FlagContext | None = None,
    ) -> list[str]:
        """The subset of *names* enabled for *context*, in input order."""
        return [name for name in names if await self.is_enabled(name, context)]

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def _resolve(self, name: str) -> tuple[FeatureFlag | None, str]:
        now = self._clock.now()
        entry = self._cache.get(name)
        if entry is not None and now < entry.expires_at:
            return entry.flag, "cache"
        flag = await self._store.get_flag(name)
        self._cache[name] = _CacheEntry(flag=flag, expires_at=now + self._ttl)
        return flag, "store"
