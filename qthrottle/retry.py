#!/usr/bin/env python3
"""
qBit Throttler - 重试退避策略
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigInvalid
from .utils import C


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    base_delay: float = C.RETRY_BASE_DELAY
    max_delay: float = C.RETRY_MAX_DELAY

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigInvalid("retry_max_attempts 必须 >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigInvalid("重试延迟不能为负数")

    def delay(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间 (attempt 从 1 开始)"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def wait(delay: float, cancel: Optional[threading.Event] = None) -> bool:
    """等待 delay 秒，返回 True 表示期间收到了取消请求"""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)
