#!/usr/bin/env python3
"""
qBit Throttler - 异常定义

ThrottlerError
├── RemoteApiError          远程 API 调用失败
│   ├── TransientApiError   网络错误 / 超时 / 5xx，可重试
│   ├── MalformedResponse   响应无法解析或请求被拒绝 (4xx)
│   └── Unauthorized        401/403，会话失效
├── AuthFailure             登录失败
│   └── CredentialsRejected 用户名或密码错误，重试无意义
├── SignalUnavailable       外部信号源不可达，不致命
└── ConfigInvalid           配置错误，仅在加载时致命
"""

from typing import Optional


class ThrottlerError(Exception):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class RemoteApiError(ThrottlerError):
    pass


class TransientApiError(RemoteApiError):
    pass


class MalformedResponse(RemoteApiError):
    pass


class Unauthorized(RemoteApiError):
    pass


class AuthFailure(ThrottlerError):
    pass


class CredentialsRejected(AuthFailure):
    pass


class SignalUnavailable(ThrottlerError):
    pass


class ConfigInvalid(ThrottlerError):
    pass
