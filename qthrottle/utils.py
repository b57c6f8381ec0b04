#!/usr/bin/env python3
"""
qBit Throttler - 工具函数模块
"""

import os
import re
import time
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional
from datetime import datetime, time as dtime


# ════════════════════════════════════════════════════════════════════════════════
# 常量配置
# ════════════════════════════════════════════════════════════════════════════════
class C:
    VERSION = "1.2.0"

    # 控制循环
    TICK_INTERVAL = 5
    MIN_DWELL = 60
    RESYNC_INTERVAL = 300
    LOG_INTERVAL = 600
    CONFIG_CHECK = 30

    # 重试退避
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 1.0
    RETRY_MAX_DELAY = 8.0

    # API 超时 (连接, 读取)
    API_CONNECT_TIMEOUT = 5
    API_READ_TIMEOUT = 15

    # 启动连接
    CONNECT_ATTEMPTS = 5

    # 外部信号
    SIGNAL_STREAMING = "streaming"
    SIGNAL_IDLE = "idle"
    JELLYFIN_ACTIVE_WITHIN = 60
    JELLYFIN_TIMEOUT = 10

    # 日志
    LOG_FILE = "/var/log/qbit-throttler.log"
    LOG_MAX_BYTES = 10 * 1024 * 1024
    LOG_BACKUPS = 3

    WEEKDAYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')


# ════════════════════════════════════════════════════════════════════════════════
# 工具函数
# ════════════════════════════════════════════════════════════════════════════════
def fmt_speed(b: float, precision: int = 1) -> str:
    if b == 0: return "0 B/s"
    for u in ['B/s', 'KiB/s', 'MiB/s', 'GiB/s']:
        if abs(b) < 1024: return f"{b:.{precision}f} {u}"
        b /= 1024
    return f"{b:.{precision}f} TiB/s"


def fmt_cap(kib: int) -> str:
    """KiB/s 上限的显示，0 表示不限速"""
    return "∞" if kib <= 0 else fmt_speed(kib * 1024, 0)


def fmt_duration(s: float) -> str:
    s = max(0, int(s))
    if s < 60: return f"{s}s"
    if s < 3600: return f"{s//60}m{s%60}s"
    return f"{s//3600}h{(s%3600)//60}m"


def wall_time() -> float:
    return time.time()


def now_local() -> datetime:
    return datetime.now()


def parse_speed_str(s: str) -> Optional[int]:
    """解析速度字符串，如 '100M' -> 102400 (KiB)"""
    s = s.strip().upper()
    match = re.match(r'^(\d+(?:\.\d+)?)\s*(K|M|G|KB|MB|GB|KIB|MIB|GIB)?$', s)
    if not match: return None
    num = float(match.group(1))
    unit = match.group(2) or 'K'
    multipliers = {'K': 1, 'KB': 1, 'KIB': 1, 'M': 1024, 'MB': 1024, 'MIB': 1024, 'G': 1048576, 'GB': 1048576, 'GIB': 1048576}
    return int(num * multipliers.get(unit, 1))


def parse_hhmm(s: str) -> Optional[dtime]:
    """解析 'HH:MM' 格式，'24:00' 视为 00:00"""
    match = re.match(r'^\s*(\d{1,2}):(\d{2})\s*$', str(s))
    if not match: return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour == 24 and minute == 0: return dtime(0, 0)
    if hour > 23 or minute > 59: return None
    return dtime(hour, minute)


# ════════════════════════════════════════════════════════════════════════════════
# 日志系统
# ════════════════════════════════════════════════════════════════════════════════
def setup_logging(level: str = "INFO", log_file: str = "") -> logging.Logger:
    log = logging.getLogger("qthrottle")
    log.setLevel(logging.DEBUG)
    log.propagate = False
    for h in list(log.handlers):
        h.close()
    log.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', datefmt='%H:%M:%S'))
    log.addHandler(console)

    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            fh = RotatingFileHandler(log_file, maxBytes=C.LOG_MAX_BYTES, backupCount=C.LOG_BACKUPS)
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s'))
            log.addHandler(fh)
        except OSError as e:
            log.warning(f"⚠️ 无法写入日志文件 {log_file}: {e}")
    return log


# 全局日志实例
logger = setup_logging()


def get_logger() -> logging.Logger:
    return logger


def reinit_logger(level: str = "INFO", log_file: str = "") -> logging.Logger:
    global logger
    logger = setup_logging(level, log_file)
    return logger
