#!/usr/bin/env python3
"""
qBit Throttler - qBittorrent WebUI API 适配
全局上传/下载限速的读取与设置，异常统一映射到 errors 模块
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

import qbittorrentapi
from qbittorrentapi.exceptions import (
    APIConnectionError, APIError, Forbidden403Error, HTTP4XXError, HTTP5XXError,
    LoginFailed, Unauthorized401Error
)

from .errors import MalformedResponse, TransientApiError, Unauthorized
from .schedule import Targets
from .utils import C, fmt_speed, wall_time


@dataclass(frozen=True)
class RemoteLimits:
    """qBittorrent 报告的全局限速，单位 bytes/s，0 表示不限速"""
    upload: int
    download: int
    fetched_at: float = field(default_factory=wall_time, compare=False)

    def matches(self, targets: Targets) -> bool:
        return (max(0, self.upload), max(0, self.download)) == (targets.upload_bytes, targets.download_bytes)

    def __str__(self) -> str:
        up = fmt_speed(self.upload) if self.upload > 0 else "∞"
        down = fmt_speed(self.download) if self.download > 0 else "∞"
        return f"↑{up} ↓{down}"


@contextmanager
def _translate(op: str):
    try:
        yield
    except (LoginFailed, Unauthorized401Error, Forbidden403Error) as e:
        raise Unauthorized(f"{op}: 未授权 ({e})", cause=e)
    except HTTP5XXError as e:
        raise TransientApiError(f"{op}: 服务端错误 ({e})", cause=e)
    except HTTP4XXError as e:
        raise MalformedResponse(f"{op}: 请求被拒绝 ({e})", cause=e)
    except APIConnectionError as e:
        raise TransientApiError(f"{op}: 连接失败 ({e})", cause=e)
    except APIError as e:
        raise MalformedResponse(f"{op}: {e}", cause=e)


def _as_int(value, op: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponse(f"{op}: 无法解析的限速值 {value!r}", cause=e)


class _Client(qbittorrentapi.Client):
    """403 不自动重新登录，交给 SessionManager 处理"""

    def _auth_request(self, http_method, api_namespace, api_method, _retry_backoff_factor=0.3, **kwargs):
        return self._request_manager(
            http_method=http_method,
            api_namespace=api_namespace,
            api_method=api_method,
            **kwargs
        )


class QBittorrentApi:
    def __init__(self, host: str, username: str, password: str,
                 connect_timeout: float = C.API_CONNECT_TIMEOUT,
                 read_timeout: float = C.API_READ_TIMEOUT):
        self.host = host
        self.client = _Client(
            host=host,
            username=username,
            password=password,
            VERIFY_WEBUI_CERTIFICATE=False,
            REQUESTS_ARGS={'timeout': (connect_timeout, read_timeout)}
        )

    def authenticate(self) -> Optional[float]:
        """登录，返回会话剩余秒数 (qBittorrent 不提供则为 None)"""
        with _translate("登录"):
            self.client.auth_log_in()
        return None

    def logout(self):
        with _translate("登出"):
            self.client.auth_log_out()

    def version(self) -> str:
        with _translate("获取版本"):
            return str(self.client.app.version)

    def get_limits(self) -> RemoteLimits:
        with _translate("获取限速"):
            up = self.client.transfer_upload_limit()
            down = self.client.transfer_download_limit()
        return RemoteLimits(_as_int(up, "获取上传限速"), _as_int(down, "获取下载限速"))

    def set_limits(self, upload_bytes: int, download_bytes: int):
        with _translate("设置限速"):
            self.client.transfer_set_upload_limit(limit=upload_bytes)
            self.client.transfer_set_download_limit(limit=download_bytes)
