#!/usr/bin/env python3
"""
qBit Throttler - 会话管理模块

状态: LOGGED_OUT → LOGGING_IN → ACTIVE → (EXPIRED | INVALIDATED) → LOGGING_IN
同一时间只有一个登录请求，其他调用者等待其结果。
"""

import enum
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import AuthFailure, CredentialsRejected, RemoteApiError, Unauthorized
from .utils import fmt_duration, get_logger


class SessionState(enum.Enum):
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    ACTIVE = "active"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


@dataclass(frozen=True)
class Session:
    generation: int
    created_at: float
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class SessionManager:
    def __init__(self, api, ttl: float = 0, clock: Callable[[], float] = time.monotonic):
        self._api = api
        self._ttl = ttl
        self._clock = clock
        self._cond = threading.Condition()
        self._state = SessionState.LOGGED_OUT
        self._session: Optional[Session] = None
        self._generation = 0
        self._logins = 0
        self._last_error: Optional[AuthFailure] = None

    @property
    def state(self) -> SessionState:
        with self._cond: return self._state

    @property
    def login_count(self) -> int:
        with self._cond: return self._logins

    def get_valid_session(self) -> Session:
        with self._cond:
            while True:
                if self._state is SessionState.ACTIVE:
                    if not self._session.expired(self._clock()):
                        return self._session
                    get_logger().info("⌛ 会话已到期，重新登录")
                    self._state = SessionState.EXPIRED
                    self._session = None

                if self._state is not SessionState.LOGGING_IN:
                    break

                # 搭上正在进行的登录
                attempt = self._logins
                self._cond.wait_for(lambda: self._state is not SessionState.LOGGING_IN)
                if self._state is not SessionState.ACTIVE and self._logins == attempt and self._last_error:
                    raise self._last_error

            self._state = SessionState.LOGGING_IN
            self._logins += 1

        try:
            expires_in = self._api.authenticate()
        except Unauthorized as e:
            self._finish_failed(CredentialsRejected(f"登录被拒绝: {e.message}", cause=e))
        except RemoteApiError as e:
            self._finish_failed(AuthFailure(f"登录失败: {e.message}", cause=e))
        except BaseException:
            self._finish_failed(None)
            raise

        now = self._clock()
        if expires_in is None and self._ttl > 0:
            expires_in = self._ttl
        with self._cond:
            self._generation += 1
            self._session = Session(self._generation, now, now + expires_in if expires_in else None)
            self._state = SessionState.ACTIVE
            self._last_error = None
            self._cond.notify_all()
            session = self._session

        ttl_info = f"，有效期 {fmt_duration(expires_in)}" if expires_in else ""
        get_logger().info(f"🔑 已登录 qBittorrent (会话 #{session.generation}{ttl_info})")
        return session

    def _finish_failed(self, error: Optional[AuthFailure]):
        with self._cond:
            self._state = SessionState.LOGGED_OUT
            self._session = None
            self._last_error = error
            self._cond.notify_all()
        if error is not None:
            raise error

    def invalidate(self, reason: str = "", generation: Optional[int] = None):
        """generation 不是当前会话时忽略 (旧会话的迟到 401/403)"""
        with self._cond:
            if self._state is not SessionState.ACTIVE:
                return
            if generation is not None and generation != self._session.generation:
                return
            self._state = SessionState.INVALIDATED
            gen = self._session.generation
            self._session = None
        get_logger().warning(f"🔒 会话 #{gen} 已失效{': ' + reason if reason else ''}")

    def logout(self):
        with self._cond:
            was_active = self._state is SessionState.ACTIVE
            self._state = SessionState.LOGGED_OUT
            self._session = None
        if not was_active:
            return
        try:
            self._api.logout()
            get_logger().info("👋 已登出 qBittorrent")
        except RemoteApiError as e:
            get_logger().debug(f"登出失败: {e.message}")
