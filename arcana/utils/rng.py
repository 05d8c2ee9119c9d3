"""Entropy feeds for card drawing.

Every source exposes ``async request(n) -> list[int]`` and raises
``EntropyUnavailable`` when it cannot deliver exactly ``n`` non-negative
integers.
"""

from __future__ import annotations

import hashlib
import logging
import random
import secrets
from typing import Iterable, List, Optional, Protocol

import httpx

from arcana.errors import EntropyUnavailable

logger = logging.getLogger(__name__)

QRNG_URL = "https://qrng.anu.edu.au/API/jsonI.php"
UINT8_MAX = 255


class EntropySource(Protocol):
    async def request(self, n: int) -> List[int]:
        ...


def seeded_random(seed: str, salt: str = "") -> random.Random:
    """Create a deterministic random.Random instance from seed and optional salt.

    Args:
        seed: Base seed string
        salt: Optional salt to modify the seed (e.g., session id)

    Returns:
        random.Random instance that will produce deterministic sequences
    """
    combined = f"{seed}{salt}"
    hash_obj = hashlib.sha256(combined.encode("utf-8"))
    int_seed = int(hash_obj.hexdigest(), 16)

    # Mask to fit within Python's random seed range
    int_seed = int_seed & ((1 << 31) - 1)

    return random.Random(int_seed)


class SeededEntropySource:
    """Reproducible uint8 feed; the same seed and salt replay the same draws."""

    def __init__(self, seed: str, salt: str = ""):
        self._rng = seeded_random(seed, salt)

    async def request(self, n: int) -> List[int]:
        return [self._rng.randint(0, UINT8_MAX) for _ in range(n)]


class SequenceEntropySource:
    """Replays a fixed list of integers, then runs dry."""

    def __init__(self, values: Iterable[int]):
        self._values = list(values)
        self._pos = 0

    async def request(self, n: int) -> List[int]:
        if self._pos + n > len(self._values):
            raise EntropyUnavailable(
                f"Sequence exhausted: {n} requested, {len(self._values) - self._pos} left"
            )
        out = self._values[self._pos:self._pos + n]
        self._pos += n
        return out


class SystemEntropySource:
    """OS entropy via the secrets module."""

    async def request(self, n: int) -> List[int]:
        return [secrets.randbelow(UINT8_MAX + 1) for _ in range(n)]


class QuantumEntropySource:
    """ANU quantum random number feed (uint8)."""

    def __init__(self, api_key: Optional[str] = None, timeout: float = 5.0, url: str = QRNG_URL,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.url = url
        self._transport = transport

    async def request(self, n: int) -> List[int]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.url, params={"length": n, "type": "uint8"}, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EntropyUnavailable(f"Quantum feed request failed: {e}") from e

        if not isinstance(data, dict) or not data.get("success"):
            raise EntropyUnavailable("Quantum feed reported failure")
        values = data.get("data")
        if not isinstance(values, list) or len(values) != n:
            raise EntropyUnavailable("Invalid quantum feed response format")
        return values


class FallbackEntropySource:
    """Use ``primary``; on EntropyUnavailable fall back to ``secondary``."""

    def __init__(self, primary: EntropySource, secondary: EntropySource):
        self.primary = primary
        self.secondary = secondary

    async def request(self, n: int) -> List[int]:
        try:
            return await self.primary.request(n)
        except EntropyUnavailable as e:
            logger.warning("Primary entropy source unavailable, using fallback: %s", e)
            return await self.secondary.request(n)


def default_entropy_source(kind: str = "quantum", api_key: Optional[str] = None,
                           timeout: float = 5.0) -> EntropySource:
    if kind == "system":
        return SystemEntropySource()
    return FallbackEntropySource(QuantumEntropySource(api_key=api_key, timeout=timeout), SystemEntropySource())
