# -*- coding: utf-8 -*-

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Optional

METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
CONFIG_MISSING = "CONFIG_MISSING"
SERVER_ERROR = "SERVER_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"
INVALID_REQUEST = "INVALID_REQUEST"
MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
INVALID_PARAMETER = "INVALID_PARAMETER"
UNAUTHORIZED = "UNAUTHORIZED"
PERMISSION_DENIED = "PERMISSION_DENIED"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
OPERATION_FAILED = "OPERATION_FAILED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
THIRD_PARTY_SERVICE_ERROR = "THIRD_PARTY_SERVICE_ERROR"
EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
MODEL_TIMEOUT = "MODEL_TIMEOUT"
MODEL_ERROR = "MODEL_ERROR"
COLLABORATION_ERROR = "COLLABORATION_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
TIMEOUT_ERROR = "TIMEOUT_ERROR"

# Route-level validation codes kept verbatim for existing frontends.
MESSAGES_REQUIRED = "MESSAGES_REQUIRED"
PROMPT_REQUIRED = "PROMPT_REQUIRED"
CONTENT_REQUIRED = "CONTENT_REQUIRED"
ID_REQUIRED = "ID_REQUIRED"
URL_NOT_PROVIDED = "URL_NOT_PROVIDED"
URL_NOT_ALLOWED = "URL_NOT_ALLOWED"
VIDEO_PROXY_ERROR = "VIDEO_PROXY_ERROR"
UNSPLASH_PROXY_ERROR = "UNSPLASH_PROXY_ERROR"
TASK_NOT_FOUND = "TASK_NOT_FOUND"

STATUS_CODES: Dict[str, int] = {
    METHOD_NOT_ALLOWED: 405,
    INVALID_REQUEST: 400,
    MISSING_REQUIRED_FIELDS: 400,
    INVALID_PARAMETER: 400,
    MESSAGES_REQUIRED: 400,
    PROMPT_REQUIRED: 400,
    CONTENT_REQUIRED: 400,
    ID_REQUIRED: 400,
    URL_NOT_PROVIDED: 400,
    URL_NOT_ALLOWED: 400,
    UNAUTHORIZED: 401,
    PERMISSION_DENIED: 403,
    RESOURCE_NOT_FOUND: 404,
    TASK_NOT_FOUND: 404,
    VALIDATION_ERROR: 422,
    RATE_LIMIT_EXCEEDED: 429,
    QUOTA_EXCEEDED: 429,
    SERVER_ERROR: 500,
    UNKNOWN_ERROR: 500,
    CONFIG_MISSING: 500,
    OPERATION_FAILED: 500,
    MODEL_ERROR: 500,
    COLLABORATION_ERROR: 500,
    VIDEO_PROXY_ERROR: 500,
    UNSPLASH_PROXY_ERROR: 500,
    THIRD_PARTY_SERVICE_ERROR: 502,
    EXTERNAL_API_ERROR: 502,
    NETWORK_ERROR: 503,
    TIMEOUT_ERROR: 504,
    MODEL_TIMEOUT: 504,
}

MESSAGES: Dict[str, str] = {
    METHOD_NOT_ALLOWED: "不允许的请求方法",
    CONFIG_MISSING: "配置缺失",
    SERVER_ERROR: "服务器内部错误",
    UNKNOWN_ERROR: "未知错误",
    INVALID_REQUEST: "无效的请求",
    MISSING_REQUIRED_FIELDS: "缺少必填字段",
    INVALID_PARAMETER: "无效的参数",
    UNAUTHORIZED: "未授权访问",
    PERMISSION_DENIED: "没有权限执行此操作",
    RESOURCE_NOT_FOUND: "找不到请求的资源",
    VALIDATION_ERROR: "验证失败",
    OPERATION_FAILED: "操作失败",
    RATE_LIMIT_EXCEEDED: "请求频率过高，请稍后再试",
    QUOTA_EXCEEDED: "API免费额度已用完",
    THIRD_PARTY_SERVICE_ERROR: "第三方服务错误",
    EXTERNAL_API_ERROR: "外部API错误",
    MODEL_TIMEOUT: "AI模型响应超时",
    MODEL_ERROR: "AI模型处理失败",
    COLLABORATION_ERROR: "协作功能暂时不可用",
    NETWORK_ERROR: "网络连接失败",
    TIMEOUT_ERROR: "请求超时",
    MESSAGES_REQUIRED: "messages 必须是数组",
    PROMPT_REQUIRED: "prompt 不能为空",
    CONTENT_REQUIRED: "content 必须是数组",
    ID_REQUIRED: "缺少任务ID",
    URL_NOT_PROVIDED: "Video URL is required",
    URL_NOT_ALLOWED: "Video URL is not from an allowed domain",
    VIDEO_PROXY_ERROR: "Failed to proxy video",
    UNSPLASH_PROXY_ERROR: "Failed to proxy Unsplash image",
    TASK_NOT_FOUND: "任务不存在",
}


def new_request_id() -> str:
    return format(int(time.time() * 1000), "x") + secrets.token_hex(4)


def status_for(code: str) -> int:
    return int(STATUS_CODES.get(code, 500))


def message_for(code: str) -> str:
    return MESSAGES.get(code) or MESSAGES[UNKNOWN_ERROR]


class ApiError(Exception):
    """Request-level failure carrying a stable error code for the client."""

    def __init__(self, code: str, message: str = "", *, status: Optional[int] = None, data: Any = None):
        self.code = (code or UNKNOWN_ERROR).strip()
        self.message = (message or "").strip() or message_for(self.code)
        self.status = int(status) if status else status_for(self.code)
        self.data = data
        super().__init__(f"{self.code}: {self.message}")


def error_body(code: str, message: str = "", *, data: Any = None, request_id: str = "") -> dict:
    body: Dict[str, Any] = {
        "ok": False,
        "error": code,
        "message": (message or "").strip() or message_for(code),
    }
    if data is not None:
        body["data"] = data
    body["requestId"] = request_id or new_request_id()
    return body


def success_body(data: Any = None, *, message: str = "") -> dict:
    body: Dict[str, Any] = {"ok": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
