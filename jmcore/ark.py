# -*- coding: utf-8 -*-
"""
Doubao / Ark (Volcengine) adapter.

Request bodies coming from the frontend are normalized here before being
forwarded; the HTTP route layer only maps results to responses.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
from typing import Any, Dict, List, Optional, Tuple

from . import api_errors
from .api_errors import ApiError
from .upstream import UpstreamClient, UpstreamConfig, upstream_error_code

log = logging.getLogger("jinmai.ark")

DEFAULT_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"
DEFAULT_VIDEO_MODEL = "doubao-seedance-1-0-pro-250528"

VIDEO_TERMINAL_STATUSES = ("succeeded", "failed", "cancelled")


def sanitize_text(s: Any) -> str:
    return str(s or "").replace("`", "").strip()


def sanitize_url(u: Any) -> str:
    return str(u or "").replace("`", "").strip()


def sanitize_content(items: Any) -> List[Any]:
    if not isinstance(items, list):
        return []
    out: List[Any] = []
    for it in items:
        if isinstance(it, dict) and it.get("type") == "text":
            out.append({"type": "text", "text": sanitize_text(it.get("text", ""))})
            continue
        if isinstance(it, dict) and it.get("type") == "image_url":
            img = it.get("image_url") if isinstance(it.get("image_url"), dict) else {}
            out.append({"type": "image_url", "image_url": {"url": sanitize_url(img.get("url", ""))}})
            continue
        out.append(it)
    return out


def sanitize_messages(messages: List[Any]) -> List[dict]:
    out = []
    for m in messages:
        m = m if isinstance(m, dict) else {}
        content = m.get("content")
        if isinstance(content, list):
            content = sanitize_content(content)
        elif isinstance(content, str):
            content = sanitize_text(content)
        else:
            content = []
        out.append({"role": m.get("role") or "user", "content": content})
    return out


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def build_chat_payload(body: dict, *, default_model: str) -> dict:
    body = body or {}
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ApiError(api_errors.MESSAGES_REQUIRED)

    payload: Dict[str, Any] = {
        "model": body.get("model") or default_model,
        "messages": sanitize_messages(messages),
    }
    mt = body.get("max_tokens")
    if not _is_number(mt):
        mt = body.get("max_completion_tokens")
    if _is_number(mt):
        payload["max_tokens"] = mt
    if _is_number(body.get("temperature")):
        payload["temperature"] = body["temperature"]
    if _is_number(body.get("top_p")):
        payload["top_p"] = body["top_p"]
    if isinstance(body.get("stream"), bool):
        payload["stream"] = body["stream"]
    return payload


def build_image_payload(body: dict, *, default_model: str) -> dict:
    body = body or {}
    prompt = body.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ApiError(api_errors.PROMPT_REQUIRED)

    payload: Dict[str, Any] = {
        "model": body.get("model") or default_model,
        "prompt": prompt,
        "size": body.get("size") or "1024x1024",
        "n": body.get("n") or 1,
    }
    if body.get("seed") is not None:
        payload["seed"] = body["seed"]
    if body.get("guidance_scale") is not None:
        payload["guidance_scale"] = body["guidance_scale"]
    payload["response_format"] = body.get("response_format") or "url"
    if isinstance(body.get("watermark"), bool):
        payload["watermark"] = body["watermark"]
    return payload


def build_video_task_payload(body: dict, *, default_model: str) -> dict:
    body = body or {}
    content = body.get("content")
    if not isinstance(content, list) or not content:
        raise ApiError(api_errors.CONTENT_REQUIRED)
    return {"model": body.get("model") or default_model, "content": sanitize_content(content)}


class ArkClient:
    """
    Thin client over the Ark REST API.

    POST endpoints that create billable work (images, video tasks) are sent
    once; chat completions and task status polls go through the upstream
    retry loop.
    """

    def __init__(self, cfg: UpstreamConfig, *, video_model: str = "", sleep=time.sleep):
        self.cfg = cfg
        self.video_model = (video_model or cfg.model or DEFAULT_VIDEO_MODEL).strip()
        self._sleep = sleep
        self._http = UpstreamClient(cfg, sleep=sleep)

    @property
    def configured(self) -> bool:
        return bool((self.cfg.api_key or "").strip())

    @property
    def model(self) -> str:
        return (self.cfg.model or "").strip()

    def chat_completions(self, body: dict) -> Tuple[int, dict]:
        payload = build_chat_payload(body, default_model=self.model)
        return self._http.request("POST", "/chat/completions", payload=payload)

    def generate_images(self, body: dict) -> Tuple[int, dict]:
        payload = build_image_payload(body, default_model=self.model)
        return self._http.request("POST", "/images/generations", payload=payload, retry=False)

    def create_video_task(self, body: dict) -> Tuple[int, dict]:
        payload = build_video_task_payload(body, default_model=self.video_model)
        return self._http.request("POST", "/contents/generations/tasks", payload=payload, retry=False)

    def get_video_task(self, task_id: str) -> Tuple[int, dict]:
        task_id = (task_id or "").strip()
        if not task_id:
            raise ApiError(api_errors.ID_REQUIRED)
        path = "/contents/generations/tasks/" + urllib.parse.quote(task_id, safe="")
        return self._http.request("GET", path)

    def wait_video_task(
        self,
        task_id: str,
        *,
        poll_s: float = 5.0,
        timeout_s: float = 600.0,
        cancel_event: Optional[threading.Event] = None,
        progress_cb=None,
    ) -> dict:
        """Poll a video generation task until it reaches a terminal status."""
        deadline = time.time() + float(timeout_s)
        polls = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RuntimeError(f"video task {task_id} canceled")
            status, data = self.get_video_task(task_id)
            if int(status or 0) != 200:
                raise RuntimeError(f"video task status http {status}: {upstream_error_code(data)}")
            st = str(data.get("status", "") or "").strip().lower()
            polls += 1
            if progress_cb:
                progress_cb(st, polls)
            if st in VIDEO_TERMINAL_STATUSES:
                log.info("video task %s finished: %s (%d polls)", task_id, st, polls)
                return data
            if time.time() >= deadline:
                raise TimeoutError(f"video task {task_id} still {st or 'unknown'} after {timeout_s:.0f}s")
            if cancel_event is not None:
                cancel_event.wait(poll_s)
            else:
                self._sleep(poll_s)
