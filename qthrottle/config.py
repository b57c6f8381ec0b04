#!/usr/bin/env python3
"""
qBit Throttler - 配置模块
"""

import os
import json
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .errors import ConfigInvalid
from .retry import RetryPolicy
from .schedule import ThrottleProfile, parse_profile
from .utils import C


@dataclass
class Config:
    host: str = "http://127.0.0.1:8080"
    username: str = "admin"
    password: str = ""
    log_level: str = "INFO"
    log_file: str = C.LOG_FILE

    # 控制循环
    tick_interval: float = C.TICK_INTERVAL
    min_dwell_seconds: float = C.MIN_DWELL
    resync_interval: float = C.RESYNC_INTERVAL

    # 重试与超时
    retry_max_attempts: int = C.RETRY_MAX_ATTEMPTS
    retry_base_delay: float = C.RETRY_BASE_DELAY
    retry_max_delay: float = C.RETRY_MAX_DELAY
    api_connect_timeout: float = C.API_CONNECT_TIMEOUT
    api_read_timeout: float = C.API_READ_TIMEOUT
    session_ttl: float = 0

    # Jellyfin 外部信号
    jellyfin_address: str = ""
    jellyfin_api_token: str = ""
    jellyfin_active_within_secs: int = C.JELLYFIN_ACTIVE_WITHIN
    jellyfin_playing_only: bool = False
    jellyfin_timeout: float = C.JELLYFIN_TIMEOUT

    schedule: ThrottleProfile = field(default_factory=ThrottleProfile)

    _mtime: float = 0

    @property
    def jellyfin_enabled(self) -> bool:
        return bool(self.jellyfin_address and self.jellyfin_api_token)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(self.retry_max_attempts, self.retry_base_delay, self.retry_max_delay)

    def validate(self):
        if not self.host:
            raise ConfigInvalid("host 不能为空")
        if self.tick_interval <= 0:
            raise ConfigInvalid("tick_interval 必须大于 0")
        if self.min_dwell_seconds < 0 or self.resync_interval < 0 or self.session_ttl < 0:
            raise ConfigInvalid("时间参数不能为负数")
        if self.api_connect_timeout <= 0 or self.api_read_timeout <= 0:
            raise ConfigInvalid("API 超时必须大于 0")
        if self.retry_max_attempts < 1:
            raise ConfigInvalid("retry_max_attempts 必须 >= 1")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ConfigInvalid("重试延迟不能为负数")

    @staticmethod
    def load(path: str) -> Tuple[Optional['Config'], Optional[str]]:
        try:
            if not os.path.exists(path):
                return None, f"配置文件不存在: {path}"

            mtime = os.path.getmtime(path)

            with open(path, 'r', encoding='utf-8') as f:
                d = json.load(f)
            if not isinstance(d, dict):
                raise ConfigInvalid("配置文件顶层必须是对象")

            # 支持嵌套 jellyfin.* 和扁平 jellyfin_* 两种写法
            jf = d.get('jellyfin', {}) if isinstance(d.get('jellyfin'), dict) else {}

            cfg = Config(
                host=str(d.get('host', 'http://127.0.0.1:8080')).strip(),
                username=str(d.get('username', 'admin')).strip(),
                password=str(d.get('password', '')),
                log_level=str(d.get('log_level', 'INFO')).upper(),
                log_file=str(d.get('log_file', C.LOG_FILE)).strip(),
                tick_interval=float(d.get('tick_interval', C.TICK_INTERVAL)),
                min_dwell_seconds=float(d.get('min_dwell_seconds', C.MIN_DWELL)),
                resync_interval=float(d.get('resync_interval', C.RESYNC_INTERVAL)),
                retry_max_attempts=int(d.get('retry_max_attempts', C.RETRY_MAX_ATTEMPTS)),
                retry_base_delay=float(d.get('retry_base_delay', C.RETRY_BASE_DELAY)),
                retry_max_delay=float(d.get('retry_max_delay', C.RETRY_MAX_DELAY)),
                api_connect_timeout=float(d.get('api_connect_timeout', C.API_CONNECT_TIMEOUT)),
                api_read_timeout=float(d.get('api_read_timeout', C.API_READ_TIMEOUT)),
                session_ttl=float(d.get('session_ttl', 0) or 0),
                jellyfin_address=str(jf.get('address', d.get('jellyfin_address', ''))).strip(),
                jellyfin_api_token=str(jf.get('api_token', d.get('jellyfin_api_token', ''))).strip(),
                jellyfin_active_within_secs=int(jf.get('active_within_secs', d.get('jellyfin_active_within_secs', C.JELLYFIN_ACTIVE_WITHIN))),
                jellyfin_playing_only=bool(jf.get('playing_only', d.get('jellyfin_playing_only', False))),
                jellyfin_timeout=float(jf.get('timeout', d.get('jellyfin_timeout', C.JELLYFIN_TIMEOUT))),
                schedule=parse_profile(d.get('schedule')),
                _mtime=mtime
            )
            cfg.validate()
            return cfg, None
        except Exception as e:
            return None, str(e)
