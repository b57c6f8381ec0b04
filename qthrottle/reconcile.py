#!/usr/bin/env python3
"""
qBit Throttler - 限速同步模块
对比目标与 qBittorrent 当前限速，仅在不一致时写入
"""

import enum
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import AuthFailure, CredentialsRejected, RemoteApiError, Unauthorized
from .retry import RetryPolicy, wait
from .schedule import Targets
from .session import SessionManager
from .utils import get_logger


class OutcomeKind(enum.Enum):
    APPLIED = "applied"
    ALREADY_CONVERGED = "already_converged"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    reason: str = ""

    @classmethod
    def applied(cls) -> 'Outcome':
        return cls(OutcomeKind.APPLIED)

    @classmethod
    def converged(cls) -> 'Outcome':
        return cls(OutcomeKind.ALREADY_CONVERGED)

    @classmethod
    def deferred(cls, reason: str) -> 'Outcome':
        return cls(OutcomeKind.DEFERRED, reason)

    @property
    def is_deferred(self) -> bool:
        return self.kind is OutcomeKind.DEFERRED


class _Cancelled(Exception):
    pass


class Reconciler:
    def __init__(self, api, sessions: SessionManager, policy: Optional[RetryPolicy] = None,
                 wait_fn: Callable[[float, Optional[threading.Event]], bool] = wait):
        self.api = api
        self.sessions = sessions
        self.policy = policy or RetryPolicy()
        self._wait = wait_fn
        self.writes = 0
        self._generation: Optional[int] = None

    def reconcile(self, targets: Targets, cancel: Optional[threading.Event] = None) -> Outcome:
        logger = get_logger()
        reauthed = False
        attempt = 0
        last_error = ""

        while attempt < self.policy.max_attempts:
            if cancel is not None and cancel.is_set():
                return Outcome.deferred("已请求停止")
            attempt += 1
            try:
                return self._attempt(targets, cancel)
            except _Cancelled:
                return Outcome.deferred("已请求停止")
            except Unauthorized as e:
                self.sessions.invalidate(e.message, generation=self._generation)
                if reauthed:
                    return Outcome.deferred(f"重新登录后仍未授权: {e.message}")
                # 重新登录后立即重试一次，不占用重试次数
                reauthed = True
                attempt -= 1
                continue
            except CredentialsRejected as e:
                return Outcome.deferred(e.message)
            except (AuthFailure, RemoteApiError) as e:
                last_error = e.message

            if attempt >= self.policy.max_attempts:
                break
            delay = self.policy.delay(attempt)
            logger.warning(f"⚠️ 同步失败 ({attempt}/{self.policy.max_attempts})，{delay:.1f}s 后重试: {last_error}")
            if self._wait(delay, cancel):
                return Outcome.deferred("已请求停止")

        return Outcome.deferred(last_error)

    def _attempt(self, targets: Targets, cancel: Optional[threading.Event]) -> Outcome:
        self._generation = self.sessions.get_valid_session().generation
        current = self.api.get_limits()
        if current.matches(targets):
            get_logger().debug(f"✔️ 限速已一致: {current}")
            return Outcome.converged()

        if cancel is not None and cancel.is_set():
            raise _Cancelled()
        self.api.set_limits(targets.upload_bytes, targets.download_bytes)
        self.writes += 1
        get_logger().info(f"✅ 限速已更新: {current} → {targets}")
        return Outcome.applied()
