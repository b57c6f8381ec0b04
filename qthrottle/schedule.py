#!/usr/bin/env python3
"""
qBit Throttler - 限速计划模块
时间窗口 / 外部状态 -> 目标上传下载上限

规则按声明顺序匹配，第一条命中的规则生效；全部未命中时使用默认规则。
"""

from dataclasses import dataclass, field
from datetime import datetime, time as dtime
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .errors import ConfigInvalid
from .utils import C, fmt_cap, parse_hhmm, parse_speed_str


# ════════════════════════════════════════════════════════════════════════════════
# 目标上限
# ════════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Targets:
    upload_kib: int = 0
    download_kib: int = 0

    @staticmethod
    def _tighter(new: int, old: int) -> int:
        """比较单个方向: -1 更宽松, 0 相同, 1 更严格 (0 = 不限速)"""
        if new == old: return 0
        if old <= 0: return 1
        if new <= 0: return -1
        return 1 if new < old else -1

    def is_tighter_than(self, other: 'Targets') -> bool:
        """任何方向都不放宽，且至少一个方向收紧"""
        cmp = (self._tighter(self.upload_kib, other.upload_kib),
               self._tighter(self.download_kib, other.download_kib))
        return -1 not in cmp and 1 in cmp

    @property
    def upload_bytes(self) -> int:
        return max(0, self.upload_kib) * 1024

    @property
    def download_bytes(self) -> int:
        return max(0, self.download_kib) * 1024

    def __str__(self) -> str:
        return f"↑{fmt_cap(self.upload_kib)} ↓{fmt_cap(self.download_kib)}"


# ════════════════════════════════════════════════════════════════════════════════
# 条件
# ════════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class TimeWindow:
    start: dtime
    end: dtime
    days: Optional[FrozenSet[int]] = None  # 0=周一 ... 6=周日

    def matches(self, ts: datetime) -> bool:
        t = ts.time()
        weekday = ts.weekday()
        if self.start == self.end:
            inside = True
        elif self.start < self.end:
            inside = self.start <= t < self.end
        elif t >= self.start:
            inside = True
        elif t < self.end:
            # 跨午夜窗口的后半段属于前一天
            inside = True
            weekday = (weekday - 1) % 7
        else:
            inside = False
        if not inside: return False
        return self.days is None or weekday in self.days

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class ThrottleRule:
    name: str
    upload_kib: int = 0
    download_kib: int = 0
    window: Optional[TimeWindow] = None
    state: Optional[str] = None
    emergency: bool = False

    @property
    def targets(self) -> Targets:
        return Targets(self.upload_kib, self.download_kib)

    def matches(self, observation: 'Observation') -> bool:
        if self.window is None and self.state is None:
            return False
        if self.window is not None and not self.window.matches(observation.timestamp):
            return False
        if self.state is not None and observation.external_signal != self.state:
            return False
        return True


UNLIMITED = ThrottleRule(name="default")


@dataclass(frozen=True)
class ThrottleProfile:
    rules: Tuple[ThrottleRule, ...] = ()
    default: ThrottleRule = field(default=UNLIMITED)

    def lookup(self, observation: 'Observation') -> ThrottleRule:
        for rule in self.rules:
            if rule.matches(observation):
                return rule
        return self.default


# ════════════════════════════════════════════════════════════════════════════════
# 配置解析
# ════════════════════════════════════════════════════════════════════════════════
def _parse_cap(value: Any, where: str) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ConfigInvalid(f"{where}: 无效的速度 {value!r}")
    if isinstance(value, (int, float)):
        kib = int(value)
    else:
        kib = parse_speed_str(str(value))
        if kib is None:
            raise ConfigInvalid(f"{where}: 无效的速度 {value!r}")
    if kib < 0:
        raise ConfigInvalid(f"{where}: 速度不能为负数")
    return kib


def _parse_days(value: Any, where: str) -> Optional[FrozenSet[int]]:
    if value is None: return None
    if not isinstance(value, list) or not value:
        raise ConfigInvalid(f"{where}: days 必须是非空列表")
    days = set()
    for d in value:
        key = str(d).strip().lower()[:3]
        if key not in C.WEEKDAYS:
            raise ConfigInvalid(f"{where}: 无效的星期 {d!r}")
        days.add(C.WEEKDAYS.index(key))
    return frozenset(days)


def parse_rule(d: Dict[str, Any], index: int) -> ThrottleRule:
    where = f"schedule.rules[{index}]"
    if not isinstance(d, dict):
        raise ConfigInvalid(f"{where}: 必须是对象")
    name = str(d.get('name') or f"rule-{index}").strip()

    window = None
    if 'start' in d or 'end' in d:
        start, end = parse_hhmm(d.get('start', '')), parse_hhmm(d.get('end', ''))
        if start is None or end is None:
            raise ConfigInvalid(f"{where}: start/end 必须是 HH:MM")
        window = TimeWindow(start, end, _parse_days(d.get('days'), where))
    elif 'days' in d:
        raise ConfigInvalid(f"{where}: days 需要同时指定 start/end")

    state = d.get('state')
    state = str(state).strip() if state not in (None, "") else None
    if window is None and state is None:
        raise ConfigInvalid(f"{where}: 至少需要时间窗口或 state 条件")

    return ThrottleRule(
        name=name,
        upload_kib=_parse_cap(d.get('upload_kib'), where),
        download_kib=_parse_cap(d.get('download_kib'), where),
        window=window,
        state=state,
        emergency=bool(d.get('emergency', False)),
    )


def parse_profile(d: Optional[Dict[str, Any]]) -> ThrottleProfile:
    """从配置中的 schedule 对象构建限速计划"""
    if d is None:
        return ThrottleProfile()
    if not isinstance(d, dict):
        raise ConfigInvalid("schedule: 必须是对象")

    default = d.get('default') or {}
    if not isinstance(default, dict):
        raise ConfigInvalid("schedule.default: 必须是对象")
    default_rule = ThrottleRule(
        name=str(default.get('name') or "default"),
        upload_kib=_parse_cap(default.get('upload_kib'), "schedule.default"),
        download_kib=_parse_cap(default.get('download_kib'), "schedule.default"),
    )

    rules = d.get('rules') or []
    if not isinstance(rules, list):
        raise ConfigInvalid("schedule.rules: 必须是列表")
    return ThrottleProfile(tuple(parse_rule(r, i) for i, r in enumerate(rules)), default_rule)
