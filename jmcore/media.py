# -*- coding: utf-8 -*-

from __future__ import annotations

import logging
import urllib.parse
from typing import Dict

from . import api_errors
from .api_errors import ApiError
from .upstream import BinaryResponse, http_bytes

log = logging.getLogger("jinmai.media")

VIDEO_ALLOWED_DOMAINS = ("volces.com", "tos-cn-beijing")
UNSPLASH_BASE = "https://images.unsplash.com"


def video_url_allowed(url: str) -> bool:
    url = (url or "").strip()
    if not url:
        return False
    return any(d in url for d in VIDEO_ALLOWED_DOMAINS)


def relay_video(url: str, *, timeout_s: float = 120.0) -> BinaryResponse:
    url = (url or "").strip()
    if not url:
        raise ApiError(api_errors.URL_NOT_PROVIDED)
    if not video_url_allowed(url):
        raise ApiError(api_errors.URL_NOT_ALLOWED)
    try:
        resp = http_bytes(url, headers={"Accept": "video/*, */*"}, timeout_s=timeout_s)
    except OSError as e:
        log.error("video proxy failed for %s: %s", url, e)
        raise ApiError(api_errors.VIDEO_PROXY_ERROR, str(e) or "") from e
    resp.content_type = resp.content_type or "video/mp4"
    return resp


def relay_unsplash(path: str, query: str = "", *, user_agent: str = "", timeout_s: float = 60.0) -> BinaryResponse:
    path = "/" + (path or "").lstrip("/")
    url = UNSPLASH_BASE + urllib.parse.quote(path, safe="/%")
    if query:
        url += "?" + query.lstrip("?")
    try:
        resp = http_bytes(url, headers={"Accept": "image/*, */*", "User-Agent": user_agent or None}, timeout_s=timeout_s)
    except OSError as e:
        log.error("unsplash proxy failed for %s: %s", url, e)
        raise ApiError(api_errors.UNSPLASH_PROXY_ERROR, str(e) or "") from e
    resp.content_type = resp.content_type or "image/jpeg"
    return resp


def passthrough_headers(resp: BinaryResponse) -> Dict[str, str]:
    out = {}
    for key in ("content-length", "accept-ranges"):
        v = resp.headers.get(key)
        if v:
            out[key] = v
    return out
