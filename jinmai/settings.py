# -*- coding: utf-8 -*-
"""
Gateway settings.

Values are resolved per key in this order:
  - ``<data_dir>/settings.json`` (optional, written by hand or by ops tooling)
  - the first non-empty environment variable among the key's aliases
  - the built-in default

``status()`` reports where each value came from, with secrets masked.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from jmcore.ark import DEFAULT_BASE_URL as ARK_BASE_URL
from jmcore.ark import DEFAULT_VIDEO_MODEL
from jmcore.qianfan import DEFAULT_BASE_URL as QIANFAN_BASE_URL
from jmcore.qianfan import DEFAULT_MODEL as QIANFAN_MODEL
from jmcore.qianfan import QianfanConfig
from jmcore.task_queue import TaskQueueConfig
from jmcore.upstream import UpstreamConfig, mask_secret

log = logging.getLogger("jinmai.settings")

# key -> (env aliases, default, secret)
KEYS: Dict[str, Tuple[Tuple[str, ...], str, bool]] = {
    "ark_api_key": (("DOUBAO_API_KEY", "ARK_API_KEY"), "", True),
    "ark_base_url": (("DOUBAO_BASE_URL", "ARK_BASE_URL"), ARK_BASE_URL, False),
    "ark_model": (("DOUBAO_MODEL_ID", "ARK_MODEL_ID"), "", False),
    "ark_video_model": (("DOUBAO_VIDEO_MODEL_ID",), DEFAULT_VIDEO_MODEL, False),
    "qianfan_base_url": (("QIANFAN_BASE_URL",), QIANFAN_BASE_URL, False),
    "qianfan_model": (("QIANFAN_MODEL_ID",), QIANFAN_MODEL, False),
    "qianfan_auth": (("QIANFAN_AUTH",), "", True),
    "qianfan_access_token": (("QIANFAN_ACCESS_TOKEN",), "", True),
    "qianfan_ak": (("QIANFAN_AK", "BAIDU_AK"), "", True),
    "qianfan_sk": (("QIANFAN_SK", "BAIDU_SK"), "", True),
    "cors_origin": (("CORS_ALLOW_ORIGIN",), "*", False),
    "upstream_timeout_s": (("JINMAI_UPSTREAM_TIMEOUT_S",), "60", False),
    "upstream_retries": (("JINMAI_UPSTREAM_RETRIES",), "2", False),
    "max_concurrent": (("JINMAI_MAX_CONCURRENT",), "3", False),
    "retry_attempts": (("JINMAI_RETRY_ATTEMPTS",), "2", False),
    "retry_delay_s": (("JINMAI_RETRY_DELAY_S",), "1.0", False),
    "host": (("JINMAI_HOST",), "127.0.0.1", False),
    "port": (("JINMAI_PORT",), "3001", False),
    "log_level": (("JINMAI_LOG_LEVEL",), "info", False),
    "debug": (("JINMAI_DEBUG",), "", False),
}


def resolve_data_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    raw = (env.get("JINMAI_DATA_DIR", "") or "").strip()
    if raw:
        return Path(raw)
    return Path(__file__).resolve().parent.parent / "jinmai_data"


def _load_file(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning("ignoring unreadable settings file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _to_int(v: str, default: int) -> int:
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return default


def _to_float(v: str, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    data_dir: Path
    values: Dict[str, str] = field(default_factory=dict)
    sources: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def load(environ: Optional[Mapping[str, str]] = None, *, data_dir: Optional[Path] = None) -> "Settings":
        env = os.environ if environ is None else environ
        ddir = Path(data_dir) if data_dir else resolve_data_dir(env)
        file_values = _load_file(ddir / "settings.json")

        values: Dict[str, str] = {}
        sources: Dict[str, str] = {}
        for key, (aliases, default, _secret) in KEYS.items():
            v0 = str(file_values.get(key, "") or "").strip()
            if v0:
                values[key], sources[key] = v0, "settings"
                continue
            for name in aliases:
                v1 = (env.get(name, "") or "").strip()
                if v1:
                    values[key], sources[key] = v1, f"env:{name}"
                    break
            else:
                values[key], sources[key] = default, "default"
        return Settings(data_dir=ddir, values=values, sources=sources)

    def get(self, key: str) -> str:
        return self.values.get(key, KEYS[key][1] if key in KEYS else "")

    @property
    def debug(self) -> bool:
        return self.get("debug").lower() in ("1", "true", "yes", "on")

    @property
    def cors_origin(self) -> str:
        return self.get("cors_origin") or "*"

    @property
    def host(self) -> str:
        return self.get("host") or "127.0.0.1"

    @property
    def port(self) -> int:
        return _to_int(self.get("port"), 3001)

    @property
    def log_level(self) -> str:
        return (self.get("log_level") or "info").lower()

    def ark_config(self) -> UpstreamConfig:
        return UpstreamConfig(
            api_key=self.get("ark_api_key"),
            base_url=self.get("ark_base_url") or ARK_BASE_URL,
            model=self.get("ark_model"),
            timeout_s=_to_float(self.get("upstream_timeout_s"), 60.0),
            max_retries=_to_int(self.get("upstream_retries"), 2),
        )

    def qianfan_config(self) -> QianfanConfig:
        return QianfanConfig(
            base_url=self.get("qianfan_base_url") or QIANFAN_BASE_URL,
            model=self.get("qianfan_model") or QIANFAN_MODEL,
            auth=self.get("qianfan_auth"),
            access_token=self.get("qianfan_access_token"),
            ak=self.get("qianfan_ak"),
            sk=self.get("qianfan_sk"),
            timeout_s=_to_float(self.get("upstream_timeout_s"), 60.0),
        )

    def queue_config(self) -> TaskQueueConfig:
        return TaskQueueConfig(
            max_concurrent_tasks=max(1, _to_int(self.get("max_concurrent"), 3)),
            retry_attempts=max(0, _to_int(self.get("retry_attempts"), 2)),
            retry_delay_s=max(0.0, _to_float(self.get("retry_delay_s"), 1.0)),
        )

    def status(self) -> dict:
        out = {}
        for key, (_aliases, _default, secret) in KEYS.items():
            v = self.get(key)
            if secret:
                out[key] = {"present": bool(v), "masked": mask_secret(v), "source": self.sources.get(key, "default")}
            else:
                out[key] = {"value": v, "source": self.sources.get(key, "default")}
        return {"data_dir": str(self.data_dir), "settings": out}
