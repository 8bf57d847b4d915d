# -*- coding: utf-8 -*-

from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

log = logging.getLogger("jinmai.upstream")


def mask_secret(value: str, *, show_last: int = 4) -> str:
    value = (value or "").strip()
    if not value:
        return ""
    if len(value) <= int(show_last):
        return "*" * len(value)
    return "*" * (len(value) - int(show_last)) + value[-int(show_last) :]


def join_url(base: str, path: str) -> str:
    base = (base or "").strip().rstrip("/")
    path = (path or "").strip()
    if not base:
        return ""
    if not path:
        return base
    return base + "/" + path.lstrip("/")


def _clip(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "…"
    return text


def _decode_json_body(body: bytes) -> dict:
    raw = (body or b"").decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except ValueError:
        raw = raw.strip()
        return {"_raw": _clip(raw, 2000)} if raw else {}
    if isinstance(data, dict):
        return data
    return {"_data": data}


def http_json(
    method: str,
    url: str,
    *,
    payload: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout_s: float = 30.0,
) -> Tuple[int, dict]:
    data = None
    req_headers = {"Content-Type": "application/json"}
    if headers:
        req_headers.update({str(k): str(v) for k, v in headers.items() if v is not None})
    if payload is not None:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers=req_headers, method=method.upper())
    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            status = int(getattr(resp, "status", 200))
            return status, _decode_json_body(resp.read())
    except urllib.error.HTTPError as e:
        try:
            body = e.read() or b""
        except OSError:
            body = b""
        return int(getattr(e, "code", 500) or 500), _decode_json_body(body)
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
        # Network error, DNS, TLS, timeout, truncated body etc.
        msg = (str(e) or "request failed").strip()
        log.warning("%s %s failed: %s", method.upper(), url, msg)
        return 0, {"_error": _clip(msg, 500)}


@dataclass
class BinaryResponse:
    status: int
    content_type: str
    headers: Dict[str, str]
    body: bytes


def http_bytes(url: str, *, headers: Optional[dict] = None, timeout_s: float = 60.0) -> BinaryResponse:
    """
    GET a binary resource (video, image).

    HTTP error statuses are returned as-is; network failures raise OSError so
    the caller can map them to its own error code.
    """
    req_headers = {str(k): str(v) for k, v in (headers or {}).items() if v is not None}
    req = urllib.request.Request(url, headers=req_headers, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            hdrs = {k.lower(): v for k, v in resp.headers.items()}
            return BinaryResponse(
                status=int(getattr(resp, "status", 200)),
                content_type=hdrs.get("content-type", ""),
                headers=hdrs,
                body=resp.read() or b"",
            )
    except urllib.error.HTTPError as e:
        hdrs = {k.lower(): v for k, v in (e.headers or {}).items()}
        try:
            body = e.read() or b""
        except OSError:
            body = b""
        return BinaryResponse(status=int(e.code or 502), content_type=hdrs.get("content-type", ""), headers=hdrs, body=body)
    except http.client.HTTPException as e:
        raise OSError(str(e) or e.__class__.__name__) from e


def is_transient_status(status: int) -> bool:
    s = int(status or 0)
    if s == 0:
        return True
    if s in (408, 429):
        return True
    return 500 <= s <= 599


def upstream_error_code(data: Any, default: str = "SERVER_ERROR") -> str:
    if not isinstance(data, dict):
        return default
    err = data.get("error")
    if isinstance(err, dict):
        code = str(err.get("code", "") or "").strip()
        if code:
            return code
    return default


@dataclass(frozen=True)
class UpstreamConfig:
    api_key: str
    base_url: str
    model: str = ""
    timeout_s: float = 60.0
    max_retries: int = 3
    base_retry_delay_s: float = 0.8
    max_retry_delay_s: float = 6.0

    def auth_headers(self) -> dict:
        k = (self.api_key or "").strip()
        if not k:
            return {}
        return {"Authorization": f"Bearer {k}"}


class UpstreamClient:
    def __init__(self, cfg: UpstreamConfig, *, sleep=time.sleep):
        self.cfg = cfg
        self._sleep = sleep

    def url(self, path: str) -> str:
        return join_url(self.cfg.base_url, path)

    def request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout_s: Optional[float] = None,
        retry: bool = True,
    ) -> Tuple[int, dict]:
        url = self.url(path)
        if not url:
            return 0, {"_error": "missing base_url"}

        max_retries = max(0, min(int(self.cfg.max_retries or 0), 8)) if retry else 0
        base_delay = float(self.cfg.base_retry_delay_s or 0.8)
        max_delay = float(self.cfg.max_retry_delay_s or 6.0)
        timeout = float(timeout_s if timeout_s is not None else (self.cfg.timeout_s or 60.0))

        req_headers = dict(self.cfg.auth_headers())
        if headers:
            req_headers.update(headers)

        last_status = 0
        last_data: dict = {}
        for attempt in range(max_retries + 1):
            status, data = http_json(method, url, payload=payload, headers=req_headers, timeout_s=timeout)
            last_status, last_data = int(status or 0), data if isinstance(data, dict) else {}
            if not is_transient_status(last_status):
                return last_status, last_data

            # Retry with exponential backoff.
            if attempt < max_retries:
                delay = min(max_delay, max(0.0, base_delay * (2**attempt)))
                log.info("transient status %s from %s, retry %d in %.1fs", last_status, path, attempt + 1, delay)
                self._sleep(delay)

        return last_status, last_data


def extract_first_content(resp: dict) -> str:
    if not isinstance(resp, dict):
        return ""
    choices = resp.get("choices", [])
    if isinstance(choices, list) and choices:
        c0 = choices[0] if isinstance(choices[0], dict) else {}
        msg = c0.get("message", {})
        if isinstance(msg, dict):
            content = msg.get("content", "")
            if isinstance(content, str):
                return content.strip()
    return ""
