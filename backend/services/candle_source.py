"""
Candle Source
=============
Fetches OHLC candles per asset/timeframe from the market-data service, with
an in-memory TTL cache so repeated cycles and optimizer runs reuse the same
window instead of refetching.

Failures never raise: `fetch` logs and returns an empty list, which callers
treat as "timeframe skipped".
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp
import numpy as np

from config import CANDLE_CACHE_TTL, DEFAULT_CANDLE_CACHE_TTL, MARKET_DATA_URL, REQUEST_TIMEOUT
from logging_config import log
from models.trade_models import AssetSpec, Candle, candles_from_dicts

_UNIT_SECONDS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400, 'w': 604800}


def timeframe_seconds(timeframe: str) -> int:
    """'15m' -> 900. Unknown formats count as one hour."""
    try:
        return int(timeframe[:-1]) * _UNIT_SECONDS[timeframe[-1]]
    except (KeyError, ValueError, IndexError):
        return 3600


def generate_synthetic_candles(asset: str, n: int = 100, seed: Optional[int] = None,
                               timeframe: str = '1h', end_time: Optional[int] = None) -> List[Candle]:
    """
    Random-walk candles around the asset's base price.

    Used as an offline fallback when the market-data service is unreachable.
    Same seed and end_time give the same series.
    """
    spec = AssetSpec.for_asset(asset)
    rng = np.random.default_rng(seed)
    step = timeframe_seconds(timeframe)
    end_time = int(time.time()) if end_time is None else int(end_time)

    candles = []
    price = spec.base_price
    vol = spec.volatility
    for i in range(n, 0, -1):
        change = (rng.random() - 0.5) * 2 * vol * price
        open_price = price
        close = max(price + change, spec.base_price * 0.01)
        high = max(open_price, close) + rng.random() * vol * price * 0.5
        low = max(min(open_price, close) - rng.random() * vol * price * 0.5, spec.base_price * 0.005)
        candles.append(Candle(
            time=end_time - (i - 1) * step,
            open=round(open_price, 4),
            high=round(high, 4),
            low=round(low, 4),
            close=round(close, 4),
        ))
        price = close
    return candles


@dataclass
class CacheEntry:
    """Single candle-window cache entry."""
    candles: List[Candle]
    created_at: float
    hits: int = 0


class CandleCache:
    """
    Thread-safe in-memory cache of candle windows.

    Key format: {asset}_{timeframe}, e.g. silver_1h.
    Entry lifetime depends on the timeframe (one bar's duration).
    """

    def __init__(self, ttls: Optional[Dict[str, float]] = None,
                 default_ttl: float = DEFAULT_CANDLE_CACHE_TTL):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._ttls = ttls if ttls is not None else CANDLE_CACHE_TTL
        self._default_ttl = default_ttl
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0}

    @staticmethod
    def _make_key(asset: str, timeframe: str) -> str:
        return f"{asset.lower()}_{timeframe}"

    def ttl_for(self, timeframe: str) -> float:
        return self._ttls.get(timeframe, self._default_ttl)

    def get(self, asset: str, timeframe: str) -> Optional[List[Candle]]:
        """Cached candles if present and fresh, else None."""
        key = self._make_key(asset, timeframe)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            age = time.time() - entry.created_at
            if age > self.ttl_for(timeframe):
                del self._cache[key]
                self._stats["misses"] += 1
                log(f"[Candle Cache] Expired: {key} (age: {age:.0f}s)", level='DEBUG')
                return None

            entry.hits += 1
            self._stats["hits"] += 1
            return list(entry.candles)

    def set(self, asset: str, timeframe: str, candles: List[Candle]) -> None:
        if not candles:
            return
        key = self._make_key(asset, timeframe)
        with self._lock:
            self._cache[key] = CacheEntry(candles=list(candles), created_at=time.time())
        log(f"[Candle Cache] SET: {key} ({len(candles):,} candles)", level='DEBUG')

    def invalidate(self, asset: str, timeframe: str) -> None:
        key = self._make_key(asset, timeframe)
        with self._lock:
            if self._cache.pop(key, None) is not None:
                self._stats["invalidations"] += 1

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "entries": len(self._cache),
                "hit_rate": round(self._stats["hits"] / total * 100, 1) if total else 0.0,
            }


class CandleSource:
    """
    Market-data client: GET {base_url}/api/market-data/{asset}/{timeframe}
    returning {"candles": [...]}.
    """

    def __init__(self, base_url: str = MARKET_DATA_URL, cache: Optional[CandleCache] = None,
                 timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.cache = cache if cache is not None else CandleCache()
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Reuse aiohttp session with timeout configuration"""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def close(self):
        """Close session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, asset: str, timeframe: str, force_refresh: bool = False) -> List[Candle]:
        """
        Candles for asset/timeframe, ascending by time.

        Returns:
            Candle list, or [] on any failure
        """
        if force_refresh:
            self.cache.invalidate(asset, timeframe)
        else:
            cached = self.cache.get(asset, timeframe)
            if cached is not None:
                return cached

        url = f"{self.base_url}/api/market-data/{asset}/{timeframe}"
        params = {"refresh": "true"} if force_refresh else None

        try:
            session = await self._get_session()
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    log(f"[Data] {asset} {timeframe}: HTTP {response.status} - {error_text[:200]}",
                        level='WARNING')
                    return []
                data = await response.json()
        except asyncio.TimeoutError:
            log(f"[Data] {asset} {timeframe}: request timed out", level='WARNING')
            return []
        except aiohttp.ClientError as e:
            log(f"[Data] {asset} {timeframe}: {e}", level='WARNING')
            return []
        except Exception as e:
            log(f"[Data] {asset} {timeframe}: unexpected error {e}", level='ERROR')
            return []

        if not isinstance(data, dict) or data.get("error"):
            log(f"[Data] {asset} {timeframe}: service error {data.get('error') if isinstance(data, dict) else data!r}",
                level='WARNING')
            return []

        candles = candles_from_dicts(data.get("candles"))
        self.cache.set(asset, timeframe, candles)
        return candles

    async def fetch_or_synthetic(self, asset: str, timeframe: str, n: int = 100,
                                 force_refresh: bool = False) -> List[Candle]:
        """Like fetch, but falls back to a synthetic series instead of []."""
        candles = await self.fetch(asset, timeframe, force_refresh=force_refresh)
        if candles:
            return candles
        log(f"[Data] Using synthetic candles for {asset} {timeframe}")
        return generate_synthetic_candles(asset, n, timeframe=timeframe)
