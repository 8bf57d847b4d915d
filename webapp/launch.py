# -*- coding: utf-8 -*-

from __future__ import annotations

import logging
import logging.config
import os
import socket
import sys
import traceback
from pathlib import Path
from typing import Optional

from jinmai.settings import Settings


def resolve_log_path(settings: Settings) -> Path:
    raw = (os.environ.get("JINMAI_LOG_FILE") or "").strip()
    p = Path(raw) if raw else settings.data_dir.joinpath("logs", "gateway.log")
    if not p.is_absolute():
        p = settings.data_dir.joinpath(p)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def build_log_config(log_path: Optional[Path], *, level: str = "INFO") -> dict:
    level = (level or "INFO").upper()
    handlers: dict = {}
    handler_names = []
    if log_path is not None:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": str(log_path),
            "encoding": "utf-8",
        }
        handler_names.append("file")
    # pythonw and some service managers run without a console.
    if getattr(sys, "stderr", None) is not None:
        handlers["stderr"] = {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        }
        handler_names.append("stderr")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"}},
        "handlers": handlers,
        "loggers": {
            "jinmai": {"handlers": handler_names, "level": level, "propagate": False},
            "uvicorn": {"handlers": handler_names, "level": level, "propagate": False},
            "uvicorn.error": {"handlers": handler_names, "level": level, "propagate": False},
            "uvicorn.access": {"handlers": handler_names, "level": level, "propagate": False},
        },
        "root": {"handlers": handler_names, "level": level},
    }


def port_available(host: str, port: int) -> bool:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, port))
        return True
    except OSError:
        return False


def main(*, host: str = "", port: int = 0, settings: Optional[Settings] = None) -> None:
    settings = settings or Settings.load()
    host = host or settings.host
    port = int(port or settings.port)

    try:
        log_path: Optional[Path] = resolve_log_path(settings)
    except OSError:
        log_path = None
    log_config = build_log_config(log_path, level=settings.log_level)
    logging.config.dictConfig(log_config)
    log = logging.getLogger("jinmai.launch")
    log.info("Launching Jinmai AI gateway")
    log.info("data_dir=%s", str(settings.data_dir))
    log.info("log_path=%s", str(log_path or "-"))

    if not port_available(host, port):
        log.error("port %s:%s is already in use", host, port)
        raise SystemExit(1)

    try:
        import uvicorn  # lazy import

        from webapp.app import create_app

        app = create_app(settings)
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=settings.log_level,
            log_config=log_config,
        )
        server = uvicorn.Server(config)
        app.state.uvicorn_server = server
        log.info("listening on http://%s:%s (ws at /ws)", host, port)
        server.run()
    except Exception:
        log.error("Failed to start server:\n%s", traceback.format_exc())
        raise


if __name__ == "__main__":
    main()
