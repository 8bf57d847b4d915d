# -*- coding: utf-8 -*-
"""
Baidu Qianfan (Wenxin / ERNIE) chat adapter.

Authorization is resolved in this order:
  - a static ``bce-v3/...`` authorization string
  - a cached OAuth access token still valid for more than 60 seconds
  - a statically configured access token
  - an OAuth client_credentials exchange with AK/SK (token cached with expiry)
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from . import api_errors
from .ark import sanitize_text
from .upstream import http_json, join_url

log = logging.getLogger("jinmai.qianfan")

DEFAULT_BASE_URL = "https://qianfan.baidubce.com"
DEFAULT_MODEL = "ERNIE-Speed-8K"
TOKEN_URL = "https://aip.baidubce.com/oauth/2.0/token"
QUOTA_ERROR_CODES = ("4001",)


@dataclass(frozen=True)
class QianfanConfig:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    auth: str = ""
    access_token: str = ""
    ak: str = ""
    sk: str = ""
    timeout_s: float = 60.0

    @property
    def configured(self) -> bool:
        return bool(self.auth or self.access_token or self.ak)


class QianfanClient:
    def __init__(self, cfg: QianfanConfig, *, clock=time.time):
        self.cfg = cfg
        self._clock = clock
        self._lock = threading.Lock()
        self._token = ""
        self._expire_at = 0.0

    def _fetch_token(self) -> Tuple[str, float]:
        qs = urllib.parse.urlencode(
            {"grant_type": "client_credentials", "client_id": self.cfg.ak, "client_secret": self.cfg.sk}
        )
        status, data = http_json("GET", f"{TOKEN_URL}?{qs}", timeout_s=self.cfg.timeout_s)
        token = str(data.get("access_token", "") or "").strip() if int(status or 0) == 200 else ""
        try:
            expires_in = float(data.get("expires_in", 0) or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        if not token:
            log.warning("qianfan token exchange failed: http %s", status)
        return token, expires_in

    def auth_header(self) -> str:
        auth = (self.cfg.auth or "").strip()
        if auth.startswith("bce-v3"):
            return auth
        now = float(self._clock())
        with self._lock:
            if self._token and self._expire_at > now + 60:
                return f"Bearer {self._token}"
        if self.cfg.access_token:
            return f"Bearer {self.cfg.access_token}"
        if not (self.cfg.ak and self.cfg.sk):
            return ""
        token, expires_in = self._fetch_token()
        if not token:
            return ""
        with self._lock:
            self._token = token
            self._expire_at = now + expires_in
        return f"Bearer {token}"

    def build_payload(self, body: dict) -> dict:
        body = body or {}
        messages = body.get("messages")
        msgs: List[Dict[str, str]] = []
        if isinstance(messages, list):
            for m in messages:
                m = m if isinstance(m, dict) else {}
                msgs.append({"role": m.get("role") or "user", "content": sanitize_text(m.get("content", ""))})
        payload: Dict[str, Any] = {
            "model": body.get("model") or self.cfg.model or DEFAULT_MODEL,
            "messages": msgs,
            "stream": False,
        }
        for key in ("max_tokens", "temperature", "top_p"):
            if body.get(key) is not None:
                payload[key] = body[key]
        return payload

    def chat_completions(self, body: dict) -> Tuple[int, dict]:
        payload = self.build_payload(body)
        auth = self.auth_header()
        headers: Optional[dict] = {"Authorization": auth} if auth else None
        url = join_url(self.cfg.base_url or DEFAULT_BASE_URL, "/v2/chat/completions")
        return http_json("POST", url, payload=payload, headers=headers, timeout_s=self.cfg.timeout_s)


def map_qianfan_error(status: int, data: Any) -> Tuple[int, dict]:
    """Map a failed Qianfan response to (http_status, body)."""
    data = data if isinstance(data, dict) else {}
    msg = str(data.get("error_msg", "") or "").strip() or api_errors.SERVER_ERROR
    code = str(data.get("error_code", "") or "").strip()
    if "quota exceeded" in msg.lower() or "配额" in msg or code in QUOTA_ERROR_CODES:
        return 429, {"error": api_errors.QUOTA_EXCEEDED, "message": "百度千帆API免费额度已用完"}
    return int(status or 502) or 502, {"error": msg, "data": data}
