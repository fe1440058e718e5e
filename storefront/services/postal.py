from __future__ import annotations

import asyncio
import logging
import re
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Final, Protocol

import httpx

from storefront.core.config import Settings, settings as default_settings


logger = logging.getLogger("storefront.postal")

VIACEP_SOURCE: Final[str] = "viacep"
TABLE_SOURCE: Final[str] = "table"

_NON_DIGITS = re.compile(r"\D")

# First five CEP digits -> state (UF). Ranges are inclusive and sorted.
_CEP_RANGES: Final[tuple[tuple[int, int, str], ...]] = (
    (1000, 19999, "SP"),
    (20000, 28999, "RJ"),
    (29000, 29999, "ES"),
    (30000, 39999, "MG"),
    (40000, 48999, "BA"),
    (49000, 49999, "SE"),
    (50000, 56999, "PE"),
    (57000, 57999, "AL"),
    (58000, 58999, "PB"),
    (59000, 59999, "RN"),
    (60000, 63999, "CE"),
    (64000, 64999, "PI"),
    (65000, 65999, "MA"),
    (66000, 68899, "PA"),
    (68900, 68999, "AP"),
    (69000, 69299, "AM"),
    (69300, 69399, "RR"),
    (69400, 69899, "AM"),
    (69900, 69999, "AC"),
    (70000, 72799, "DF"),
    (72800, 72999, "GO"),
    (73000, 73699, "DF"),
    (73700, 76799, "GO"),
    (76800, 76999, "RO"),
    (77000, 77999, "TO"),
    (78000, 78899, "MT"),
    (78900, 78999, "RO"),
    (79000, 79999, "MS"),
    (80000, 87999, "PR"),
    (88000, 89999, "SC"),
    (90000, 99999, "RS"),
)
_RANGE_STARTS: Final[list[int]] = [start for start, _, _ in _CEP_RANGES]


def normalize_postal_code(raw: str | None) -> str:
    return _NON_DIGITS.sub("", raw or "")


def is_valid_postal_code(raw: str | None) -> bool:
    return len(normalize_postal_code(raw)) == 8


def format_postal_code(raw: str | None) -> str:
    digits = normalize_postal_code(raw)
    if len(digits) == 8:
        return f"{digits[:5]}-{digits[5:]}"
    return digits


def approximate_region(postal_code: str) -> str | None:
    digits = normalize_postal_code(postal_code)
    if len(digits) != 8:
        return None
    prefix = int(digits[:5])
    idx = bisect_right(_RANGE_STARTS, prefix) - 1
    if idx < 0:
        return None
    start, end, region = _CEP_RANGES[idx]
    return region if start <= prefix <= end else None


@dataclass(frozen=True)
class ResolvedRegion:
    postal_code: str
    region_code: str | None
    city: str | None = None
    approximate: bool = False
    source: str = TABLE_SOURCE


class PostalCodeResolver(Protocol):
    async def resolve(self, postal_code: str) -> ResolvedRegion: ...


class TableResolver:
    """Offline resolver backed by the CEP range table only."""

    async def resolve(self, postal_code: str) -> ResolvedRegion:
        digits = normalize_postal_code(postal_code)
        return ResolvedRegion(postal_code=digits, region_code=approximate_region(digits), source=TABLE_SOURCE)


@dataclass(frozen=True)
class _CacheEntry:
    expires_at: datetime
    region: ResolvedRegion


_CACHE: dict[str, _CacheEntry] = {}
_LOCKS: dict[str, asyncio.Lock] = {}


async def _fetch_viacep(base_url: str, postal_code: str, *, timeout: float) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.get(f"{base_url.rstrip('/')}/{postal_code}/json/")
        resp.raise_for_status()
        return resp.json()


def _get_cached(postal_code: str, now: datetime) -> ResolvedRegion | None:
    entry = _CACHE.get(postal_code)
    if entry is None or entry.expires_at <= now:
        return None
    return entry.region


def _store(postal_code: str, region: ResolvedRegion, ttl_seconds: int) -> ResolvedRegion:
    if ttl_seconds > 0:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        _CACHE[postal_code] = _CacheEntry(expires_at=expires_at, region=region)
    return region


def _fallback(postal_code: str) -> ResolvedRegion:
    return ResolvedRegion(
        postal_code=postal_code,
        region_code=approximate_region(postal_code),
        approximate=True,
        source=TABLE_SOURCE,
    )


class ViaCepResolver:
    """Resolves a CEP to its state through ViaCEP.

    Any lookup failure (timeout, HTTP error, unknown CEP, malformed payload)
    degrades to the range table and marks the result approximate. Successes
    are cached for the configured TTL and fallbacks for a short one, so an
    outage costs each CEP one timeout rather than one per checkout.

    Concurrent lookups of the same CEP share one request; different CEPs
    never wait on each other.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings

    async def resolve(self, postal_code: str) -> ResolvedRegion:
        digits = normalize_postal_code(postal_code)
        cached = _get_cached(digits, datetime.now(timezone.utc))
        if cached is not None:
            return cached

        async with _LOCKS.setdefault(digits, asyncio.Lock()):
            cached = _get_cached(digits, datetime.now(timezone.utc))
            if cached is not None:
                return cached
            return await self._lookup(digits)

    async def _lookup(self, digits: str) -> ResolvedRegion:
        failure_ttl = int(self.config.postal_lookup_failure_ttl_seconds)
        try:
            payload = await _fetch_viacep(
                self.config.postal_lookup_url,
                digits,
                timeout=float(self.config.postal_lookup_timeout_seconds),
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("postal_lookup_failed", extra={"postal_code": digits, "error": str(exc)})
            return _store(digits, _fallback(digits), failure_ttl)

        region_code = (payload.get("uf") or "").strip().upper() if isinstance(payload, dict) else ""
        if not region_code or payload.get("erro"):
            logger.info("postal_lookup_unknown", extra={"postal_code": digits})
            return _store(digits, _fallback(digits), failure_ttl)

        region = ResolvedRegion(
            postal_code=digits,
            region_code=region_code,
            city=(payload.get("localidade") or None),
            source=VIACEP_SOURCE,
        )
        return _store(digits, region, max(60, int(self.config.postal_lookup_cache_ttl_seconds)))


def get_resolver(config: Settings | None = None) -> PostalCodeResolver:
    config = config or default_settings
    if config.postal_lookup_enabled:
        return ViaCepResolver(config)
    return TableResolver()


def _reset_cache_for_tests() -> None:
    _CACHE.clear()
    _LOCKS.clear()
