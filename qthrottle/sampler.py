#!/usr/bin/env python3
"""
qBit Throttler - 采样模块
本地时钟 + 可选外部信号 (Jellyfin 播放会话)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import requests

from .errors import SignalUnavailable
from .utils import C, get_logger, now_local


@dataclass(frozen=True)
class Observation:
    timestamp: datetime
    external_signal: Optional[str] = None


# ════════════════════════════════════════════════════════════════════════════════
# Jellyfin 信号源
# ════════════════════════════════════════════════════════════════════════════════
class JellyfinSignal:
    """有活跃会话时返回 streaming，否则 idle"""

    def __init__(self, address: str, api_token: str, active_within: int = C.JELLYFIN_ACTIVE_WITHIN,
                 playing_only: bool = False, timeout: float = C.JELLYFIN_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.address = address.rstrip('/')
        self.active_within = active_within
        self.playing_only = playing_only
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"MediaBrowser Token={api_token}"})

    def query(self) -> str:
        try:
            resp = self._session.get(
                f"{self.address}/Sessions",
                params={"activeWithinSeconds": self.active_within},
                timeout=self.timeout
            )
            resp.raise_for_status()
            sessions = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise SignalUnavailable(f"Jellyfin 不可达: {e}", cause=e)

        if not isinstance(sessions, list):
            raise SignalUnavailable(f"Jellyfin 返回了意外的数据: {type(sessions).__name__}")

        if self.playing_only:
            sessions = [s for s in sessions if isinstance(s, dict) and s.get('NowPlayingItem')]
        get_logger().debug(f"Jellyfin 活跃会话: {len(sessions)}")
        return C.SIGNAL_STREAMING if sessions else C.SIGNAL_IDLE

    def close(self):
        self._session.close()


# ════════════════════════════════════════════════════════════════════════════════
# 采样器
# ════════════════════════════════════════════════════════════════════════════════
class Sampler:
    def __init__(self, signal_source=None, clock: Callable[[], datetime] = now_local):
        self.signal_source = signal_source
        self._clock = clock
        self._signal_ok = True

    def sample(self) -> Observation:
        ts = self._clock()
        if self.signal_source is None:
            return Observation(ts)

        try:
            signal = self.signal_source.query()
        except SignalUnavailable as e:
            if self._signal_ok:
                get_logger().warning(f"⚠️ 外部信号不可用，按无信号处理: {e.message}")
            self._signal_ok = False
            return Observation(ts)

        if not self._signal_ok:
            get_logger().info("📡 外部信号已恢复")
        self._signal_ok = True
        return Observation(ts, signal)
