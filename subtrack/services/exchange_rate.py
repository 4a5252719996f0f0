from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import requests

from subtrack import config
from subtrack.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CachedRate:
    rate: float
    fetched_at: datetime


class RateFetchError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def convert(amount: float, rate: float) -> float:
    """amount * rate（丸めは表示側で）"""
    return amount * rate


class ExchangeRateCache:
    """
    USD→JPY レートを1件だけ持つ TTL キャッシュ。

    - TTL 内ならネットワークに行かずにキャッシュを返す
    - 取得失敗時は古いキャッシュ（あれば）か fallback_rate を返す
    - get_rate() は例外を投げない
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        ttl: timedelta | None = None,
        fallback_rate: float | None = None,
        timeout: tuple[float, float] | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        # 未指定なら生成時点の config を読む
        self.url = url or config.EXCHANGE_RATE_URL
        self.ttl = ttl if ttl is not None else timedelta(seconds=config.EXCHANGE_RATE_TTL_SECONDS)
        self.fallback_rate = float(config.FALLBACK_USD_JPY_RATE if fallback_rate is None else fallback_rate)
        self.timeout = timeout or (config.EXCHANGE_RATE_TIMEOUT_SECONDS, config.EXCHANGE_RATE_TIMEOUT_SECONDS)
        self._session = session or requests.Session()
        self._clock = clock
        self._entry: CachedRate | None = None
        self._lock = threading.Lock()

    # ── state ─────────────────────────────────────────────

    def snapshot(self) -> CachedRate | None:
        with self._lock:
            return self._entry

    def _is_fresh(self, entry: CachedRate | None, now: datetime) -> bool:
        return entry is not None and (now - entry.fetched_at) < self.ttl

    def is_fresh(self) -> bool:
        return self._is_fresh(self.snapshot(), self._clock())

    def _store(self, new: CachedRate) -> CachedRate:
        # compare-and-set: 古い fetched_at で新しい値を上書きしない
        with self._lock:
            cur = self._entry
            if cur is None or new.fetched_at >= cur.fetched_at:
                self._entry = new
            return self._entry

    # ── fetch ─────────────────────────────────────────────

    def _fetch(self) -> float:
        r = self._session.get(self.url, timeout=self.timeout)
        r.raise_for_status()
        try:
            payload = r.json()
        except ValueError as e:
            raise RateFetchError(f"invalid JSON: {e}") from e

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateFetchError("'rates' is missing")

        jpy = rates.get("JPY")
        # bool は int のサブクラスなので弾く
        if isinstance(jpy, bool) or not isinstance(jpy, (int, float)):
            raise RateFetchError(f"JPY rate is not a number: {jpy!r}")
        jpy = float(jpy)
        if not math.isfinite(jpy) or jpy <= 0:
            raise RateFetchError(f"JPY rate out of range: {jpy}")
        return jpy

    def get_rate(self) -> float:
        entry = self.snapshot()
        if self._is_fresh(entry, self._clock()):
            return entry.rate

        # ネットワークはロックの外で
        try:
            rate = self._fetch()
        except Exception as e:
            # fetched_at は更新しない（次回また取りに行く）
            latest = self.snapshot()
            if latest is not None:
                logger.warning(
                    "USD/JPY fetch failed (%s: %s); serving cached rate %s from %s",
                    type(e).__name__, e, latest.rate, latest.fetched_at.isoformat(),
                )
                return latest.rate
            logger.warning(
                "USD/JPY fetch failed (%s: %s); using fallback rate %s",
                type(e).__name__, e, self.fallback_rate,
            )
            return self.fallback_rate

        stored = self._store(CachedRate(rate=rate, fetched_at=self._clock()))
        logger.info("USD/JPY rate fetched: %s", rate)
        return stored.rate
