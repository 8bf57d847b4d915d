# -*- coding: utf-8 -*-

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from jmcore.ark import ArkClient
from jmcore.qianfan import QianfanClient, map_qianfan_error
from jmcore.task_queue import AITask, AITaskQueue
from jmcore.upstream import extract_first_content, upstream_error_code

log = logging.getLogger("jinmai.executors")


class ExecutorError(RuntimeError):
    pass


def _options(task: AITask) -> Dict[str, Any]:
    opts = (task.metadata or {}).get("options", {})
    return dict(opts) if isinstance(opts, dict) else {}


def _raise_for(status: int, data: dict, what: str) -> None:
    if int(status or 0) == 200:
        return
    code = upstream_error_code(data)
    detail = str((data or {}).get("_error", "") or "").strip()
    raise ExecutorError(f"{what} failed: http {status} {code}" + (f" ({detail})" if detail else ""))


class TextExecutor:
    def __init__(self, ark: ArkClient, qianfan: Optional[QianfanClient] = None):
        self.ark = ark
        self.qianfan = qianfan

    def __call__(self, task: AITask) -> dict:
        body = _options(task)
        body["messages"] = body.get("messages") or [{"role": "user", "content": task.prompt}]
        provider = str((task.metadata or {}).get("provider", "ark") or "ark").strip().lower()
        task.report_progress(10)
        if provider == "qianfan":
            if self.qianfan is None:
                raise ExecutorError("qianfan provider not configured")
            status, data = self.qianfan.chat_completions(body)
            if int(status or 0) != 200:
                _http, err = map_qianfan_error(status, data)
                raise ExecutorError(f"qianfan chat failed: {err.get('error')}")
            content = str(data.get("result", "") or "") or extract_first_content(data)
        else:
            status, data = self.ark.chat_completions(body)
            _raise_for(status, data, "chat")
            content = extract_first_content(data)
        return {"content": content, "usage": data.get("usage", {}) if isinstance(data, dict) else {}}


class ImageExecutor:
    def __init__(self, ark: ArkClient):
        self.ark = ark

    def __call__(self, task: AITask) -> dict:
        body = _options(task)
        body["prompt"] = task.prompt
        task.report_progress(10)
        status, data = self.ark.generate_images(body)
        _raise_for(status, data, "image generation")
        images = data.get("data", []) if isinstance(data, dict) else []
        urls = [str(it.get("url", "")) for it in images if isinstance(it, dict) and it.get("url")]
        return {"urls": urls, "raw": data}


class VideoExecutor:
    def __init__(self, ark: ArkClient, *, poll_s: float = 5.0, timeout_s: float = 900.0):
        self.ark = ark
        self.poll_s = float(poll_s)
        self.timeout_s = float(timeout_s)

    def _create(self, task: AITask) -> str:
        content = [{"type": "text", "text": task.prompt}]
        image_url = str((task.metadata or {}).get("image_url", "") or "").strip()
        if image_url:
            content.append({"type": "image_url", "image_url": {"url": image_url}})
        body = _options(task)
        body["content"] = content

        status, data = self.ark.create_video_task(body)
        _raise_for(status, data, "video task")
        vid = str(data.get("id", "") or "").strip()
        if not vid:
            raise ExecutorError("video task created without id")
        return vid

    def __call__(self, task: AITask) -> dict:
        meta = task.metadata or {}
        # A retried attempt resumes polling the job created earlier.
        vid = str(meta.get("upstream_task_id", "") or "").strip()
        if vid:
            log.info("%s resuming upstream video task %s", task.id, vid)
        else:
            vid = self._create(task)
            task.metadata["upstream_task_id"] = vid
        task.report_progress(5, {"upstream_task_id": vid})

        def on_poll(st: str, polls: int):
            # Upstream reports no percentage; capped at 95 until done.
            task.report_progress(min(95.0, 5.0 + polls * 5.0), {"upstream_status": st})

        final = self.ark.wait_video_task(
            vid,
            poll_s=self.poll_s,
            timeout_s=self.timeout_s,
            cancel_event=task.cancel_event,
            progress_cb=on_poll,
        )
        st = str(final.get("status", "") or "")
        if st != "succeeded":
            err = final.get("error")
            msg = err.get("message", "") if isinstance(err, dict) else ""
            raise ExecutorError(f"video task {vid} {st}" + (f": {msg}" if msg else ""))
        video_url = ""
        out = final.get("content")
        if isinstance(out, dict):
            video_url = str(out.get("video_url", "") or "")
        return {"upstream_task_id": vid, "video_url": video_url, "raw": final}


def register_default_executors(queue: AITaskQueue, *, ark: ArkClient, qianfan: Optional[QianfanClient] = None) -> None:
    queue.register_executor("text", TextExecutor(ark, qianfan))
    queue.register_executor("image", ImageExecutor(ark))
    queue.register_executor("video", VideoExecutor(ark))
    log.info("registered executors: text, image, video")
