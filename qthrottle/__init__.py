#!/usr/bin/env python3
"""
qBit Throttler
qBittorrent 全局限速自适应控制器

模块:
- utils: 工具函数、常量、日志
- errors: 异常定义
- config: 配置管理
- schedule: 限速计划 (时间窗口 / 外部状态)
- sampler: 采样与 Jellyfin 信号
- decision: 决策与防抖
- remote: qBittorrent WebUI API 适配
- session: 登录会话管理
- retry: 重试退避策略
- reconcile: 限速同步
- loop: 控制循环
"""

from .utils import C, get_logger, reinit_logger, fmt_speed, fmt_duration
from .errors import (
    ThrottlerError, RemoteApiError, TransientApiError, MalformedResponse, Unauthorized,
    AuthFailure, CredentialsRejected, SignalUnavailable, ConfigInvalid
)
from .config import Config
from .schedule import Targets, TimeWindow, ThrottleRule, ThrottleProfile, parse_profile
from .sampler import Observation, Sampler, JellyfinSignal
from .decision import DecisionState, DecisionEngine
from .remote import RemoteLimits, QBittorrentApi
from .session import Session, SessionState, SessionManager
from .retry import RetryPolicy
from .reconcile import Outcome, OutcomeKind, Reconciler
from .loop import LoopState, Stats, ControlLoop

__version__ = C.VERSION
__all__ = [
    'C', 'Config', 'get_logger', 'reinit_logger', 'fmt_speed', 'fmt_duration',
    'ThrottlerError', 'RemoteApiError', 'TransientApiError', 'MalformedResponse', 'Unauthorized',
    'AuthFailure', 'CredentialsRejected', 'SignalUnavailable', 'ConfigInvalid',
    'Targets', 'TimeWindow', 'ThrottleRule', 'ThrottleProfile', 'parse_profile',
    'Observation', 'Sampler', 'JellyfinSignal',
    'DecisionState', 'DecisionEngine',
    'RemoteLimits', 'QBittorrentApi',
    'Session', 'SessionState', 'SessionManager',
    'RetryPolicy', 'Outcome', 'OutcomeKind', 'Reconciler',
    'LoopState', 'Stats', 'ControlLoop',
]
