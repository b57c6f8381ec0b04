#!/usr/bin/env python3
"""
qBit Throttler - 控制循环
采样 → 决策 → 同步，固定间隔执行，支持平滑停止与热加载
"""

import enum
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .decision import DecisionEngine, DecisionState
from .reconcile import Outcome, OutcomeKind, Reconciler
from .sampler import Sampler
from .schedule import ThrottleProfile
from .session import SessionManager
from .utils import C, fmt_duration, get_logger, wall_time


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class Stats:
    start: float = field(default_factory=wall_time)
    ticks: int = 0
    applied: int = 0
    converged: int = 0
    deferred: int = 0
    consecutive_deferred: int = 0
    errors: int = 0

    def record(self, outcome: Outcome):
        if outcome.kind is OutcomeKind.APPLIED:
            self.applied += 1
        elif outcome.kind is OutcomeKind.ALREADY_CONVERGED:
            self.converged += 1
        else:
            self.deferred += 1
            self.consecutive_deferred += 1
            return
        self.consecutive_deferred = 0


class ControlLoop:
    def __init__(self, sampler: Sampler, engine: DecisionEngine, reconciler: Reconciler,
                 sessions: SessionManager, profile: ThrottleProfile,
                 interval: float = C.TICK_INTERVAL, resync_interval: float = C.RESYNC_INTERVAL,
                 clock: Callable[[], float] = wall_time):
        self.sampler = sampler
        self.engine = engine
        self.reconciler = reconciler
        self.sessions = sessions
        self.profile = profile
        self.interval = interval
        self.resync_interval = resync_interval
        self._clock = clock

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = LoopState.IDLE
        self._pending_profile: Optional[ThrottleProfile] = None

        self.decision: Optional[DecisionState] = None
        self.last_outcome: Optional[Outcome] = None
        self._last_sync = 0.0
        self._last_summary = clock()
        self.stats = Stats()

    @property
    def state(self) -> LoopState:
        with self._lock: return self._state

    def _set_state(self, state: LoopState):
        with self._lock: self._state = state

    def reload(self, profile: ThrottleProfile):
        """新的限速计划在下一次 tick 开始时生效"""
        with self._lock:
            self._pending_profile = profile

    def _swap_profile(self):
        with self._lock:
            pending, self._pending_profile = self._pending_profile, None
        if pending is not None:
            self.profile = pending
            get_logger().info(f"📝 限速计划已更新 ({len(pending.rules)} 条规则)")

    def tick(self) -> Optional[Outcome]:
        self._swap_profile()
        self.stats.ticks += 1

        observation = self.sampler.sample()
        previous = self.decision
        targets, self.decision = self.engine.decide(observation, previous, self.profile)

        changed = previous is None or targets != previous.targets
        retry = self.last_outcome is None or self.last_outcome.is_deferred
        now = self._clock()
        resync = self.resync_interval > 0 and now - self._last_sync >= self.resync_interval
        if not (changed or retry or resync):
            return None
        if self._stop.is_set():
            return None

        # 同步中途抛出未知异常时，下一次 tick 仍需重新同步
        self.last_outcome = None
        outcome = self.reconciler.reconcile(targets, self._stop)
        self.last_outcome = outcome
        self.stats.record(outcome)
        if outcome.is_deferred:
            get_logger().warning(f"⏸️ 同步推迟 (连续 {self.stats.consecutive_deferred} 次): {outcome.reason}")
        else:
            self._last_sync = now
        return outcome

    def _log_summary(self):
        now = self._clock()
        if now - self._last_summary < C.LOG_INTERVAL:
            return
        self._last_summary = now
        s = self.stats
        current = self.decision.targets if self.decision else "-"
        get_logger().info(f"📊 运行 {fmt_duration(now - s.start)} | tick {s.ticks} | "
                          f"写入 {s.applied} 一致 {s.converged} 推迟 {s.deferred} 异常 {s.errors} | 当前 {current}")

    def run(self):
        """在当前线程运行，直到 stop()"""
        with self._lock:
            if self._state is not LoopState.IDLE:
                raise RuntimeError(f"控制循环无法从 {self._state.value} 状态启动")
            self._state = LoopState.RUNNING
        logger = get_logger()
        logger.info(f"▶️ 控制循环启动，间隔 {self.interval}s")

        try:
            while not self._stop.is_set():
                start = self._clock()
                try:
                    self.tick()
                    self._log_summary()
                except Exception as e:
                    self.stats.errors += 1
                    logger.error(f"❌ 异常: {e}")
                elapsed = self._clock() - start
                self._stop.wait(max(0.0, self.interval - elapsed))
        finally:
            self._set_state(LoopState.STOPPING)
            self.sessions.logout()
            self._set_state(LoopState.STOPPED)
            logger.info("⏹️ 控制循环已停止")

    def start(self):
        """在后台线程运行"""
        self._thread = threading.Thread(target=self.run, name="ControlLoop")
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """请求停止；进行中的同步会在下一个检查点结束，不再发起新的写入"""
        with self._lock:
            if self._state is LoopState.RUNNING:
                self._state = LoopState.STOPPING
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)
