# -*- coding: utf-8 -*-

from __future__ import annotations

import argparse
import json
import os
import sys
import traceback
from typing import Optional

from jmcore.ark import ArkClient
from jmcore.qianfan import QianfanClient
from jmcore.task_queue import PRIORITY_ORDER, TASK_TYPES, AITaskQueue
from jmcore.upstream import extract_first_content, mask_secret

from .executors import register_default_executors
from .settings import Settings


def _print_json(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _cmd_serve(args: argparse.Namespace) -> int:
    from webapp.launch import main as launch_main

    launch_main(host=str(args.host or ""), port=int(args.port or 0))
    return 0


def _cmd_config_status(args: argparse.Namespace) -> int:
    _print_json(Settings.load().status())
    return 0


def _cmd_ark_test(args: argparse.Namespace) -> int:
    settings = Settings.load()
    cfg = settings.ark_config()
    if not cfg.api_key or not cfg.model:
        print("Missing Ark config. Set DOUBAO_API_KEY and DOUBAO_MODEL_ID (or settings.json ark_*).")
        return 2

    ark = ArkClient(cfg)
    print(f"base_url: {cfg.base_url}")
    print(f"model:    {cfg.model}")
    print(f"api_key:  {mask_secret(cfg.api_key)}")
    print("")

    status, resp = ark.chat_completions(
        {
            "messages": [
                {"role": "system", "content": "You are a minimal connectivity test. Reply with exactly: ok"},
                {"role": "user", "content": str(args.prompt)},
            ],
            "max_tokens": int(args.max_tokens),
            "temperature": 0.0,
        }
    )
    _print_json(
        {
            "http_status": int(status or 0),
            "content": extract_first_content(resp),
            "usage": resp.get("usage") if isinstance(resp, dict) else None,
            "error": resp.get("error") if isinstance(resp, dict) else None,
            "raw_error": resp.get("_error") if isinstance(resp, dict) else None,
        }
    )
    return 0 if int(status or 0) == 200 else 1


def _cmd_queue_run(args: argparse.Namespace) -> int:
    settings = Settings.load()
    queue = AITaskQueue(settings.queue_config())
    ark = ArkClient(settings.ark_config(), video_model=settings.get("ark_video_model"))
    register_default_executors(queue, ark=ark, qianfan=QianfanClient(settings.qianfan_config()))

    def prog(progress: float, data):
        detail = json.dumps(data, ensure_ascii=False) if data else ""
        print(f"[{int(progress):3d}%] {detail}".rstrip())

    metadata = {"provider": str(args.provider)}
    if args.image_url:
        metadata["image_url"] = str(args.image_url)
    task = queue.add_task(str(args.type), str(args.prompt), priority=str(args.priority), metadata=metadata, on_progress=prog)
    print(f"queued {task.id}")
    try:
        if not queue.wait_idle(timeout_s=float(args.timeout_s)):
            queue.cancel_task(task.id)
            print(f"Timed out after {args.timeout_s}s; task cancelled.")
            return 1
    except KeyboardInterrupt:
        queue.cancel_task(task.id)
        raise
    print("")
    _print_json(task.to_dict())
    return 0 if task.status == "completed" else 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="jinmai", description="Jinmai AI gateway (vendor proxy + task queue + collaboration relay).")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sp_serve = sub.add_parser("serve", help="Run the HTTP/WebSocket gateway.")
    sp_serve.add_argument("--host", default="", help="Bind host (default: JINMAI_HOST or 127.0.0.1)")
    sp_serve.add_argument("--port", type=int, default=0, help="Bind port (default: JINMAI_PORT or 3001)")
    sp_serve.set_defaults(func=_cmd_serve)

    sp_cfg = sub.add_parser("config", help="Inspect resolved configuration.")
    sub_cfg = sp_cfg.add_subparsers(dest="config_cmd", required=True)
    sp_cs = sub_cfg.add_parser("status", help="Print resolved settings and their sources (secrets masked).")
    sp_cs.set_defaults(func=_cmd_config_status)

    sp_ark = sub.add_parser("ark", help="Doubao / Ark API utilities.")
    sub_ark = sp_ark.add_subparsers(dest="ark_cmd", required=True)
    sp_test = sub_ark.add_parser("test", help="Send a minimal chat request and print the response.")
    sp_test.add_argument("--prompt", default="ok", help="User prompt for the test request")
    sp_test.add_argument("--max-tokens", type=int, default=64)
    sp_test.set_defaults(func=_cmd_ark_test)

    sp_q = sub.add_parser("queue", help="Run AI tasks through the in-process queue.")
    sub_q = sp_q.add_subparsers(dest="queue_cmd", required=True)
    sp_run = sub_q.add_parser("run", help="Submit one task and wait for it to finish.")
    sp_run.add_argument("--type", required=True, choices=list(TASK_TYPES))
    sp_run.add_argument("--prompt", required=True)
    sp_run.add_argument("--priority", default="medium", choices=sorted(PRIORITY_ORDER.keys()))
    sp_run.add_argument("--provider", default="ark", choices=["ark", "qianfan"], help="Text provider")
    sp_run.add_argument("--image-url", default="", help="Reference image for video tasks")
    sp_run.add_argument("--timeout-s", type=float, default=900.0)
    sp_run.set_defaults(func=_cmd_queue_run)

    return ap


def main(argv: Optional[list[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    fn = getattr(args, "func", None)
    if fn is None:
        ap.print_help()
        return 2
    try:
        return int(fn(args) or 0)
    except KeyboardInterrupt:
        print("Canceled.")
        return 130
    except Exception as e:
        msg = str(e or "").strip() or e.__class__.__name__
        print(f"Error: {msg}")
        if (os.environ.get("JINMAI_DEBUG", "") or "").strip():
            traceback.print_exc()
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
