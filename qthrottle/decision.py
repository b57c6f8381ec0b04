#!/usr/bin/env python3
"""
qBit Throttler - 决策模块
根据采样结果选择目标上限，带驻留时间防抖
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from .sampler import Observation
from .schedule import Targets, ThrottleProfile
from .utils import C, fmt_duration, get_logger


@dataclass(frozen=True)
class DecisionState:
    targets: Targets
    rule_name: str
    last_change: datetime


class DecisionEngine:
    def __init__(self, min_dwell: float = C.MIN_DWELL):
        self.min_dwell = min_dwell

    def decide(self, observation: Observation, previous: Optional[DecisionState],
               profile: ThrottleProfile) -> Tuple[Targets, DecisionState]:
        rule = profile.lookup(observation)
        wanted = rule.targets

        if previous is None:
            return wanted, DecisionState(wanted, rule.name, observation.timestamp)
        if wanted == previous.targets:
            return previous.targets, previous

        held = (observation.timestamp - previous.last_change).total_seconds()
        if held < 0:
            # 时钟回拨 (夏令时结束等) 按已驻留处理
            reason = "时钟回拨"
        elif held >= self.min_dwell:
            reason = f"驻留 {fmt_duration(held)}"
        elif rule.emergency and wanted.is_tighter_than(previous.targets):
            reason = "紧急收紧"
        else:
            get_logger().debug(f"⏳ [{rule.name}] {wanted} 暂缓，当前规则仅保持 {fmt_duration(held)}")
            return previous.targets, previous

        get_logger().info(f"🔀 规则 {previous.rule_name} → {rule.name}: {previous.targets} → {wanted} ({reason})")
        return wanted, DecisionState(wanted, rule.name, observation.timestamp)
