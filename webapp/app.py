# -*- coding: utf-8 -*-

from __future__ import annotations

import json
import logging
import time
import traceback
from datetime import datetime, timezone
from typing import Optional

try:
    from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse, Response
except Exception as e:  # pragma: no cover
    raise RuntimeError("Missing web dependencies. Install: pip install 'jinmai'") from e

from jinmai._version import VERSION
from jinmai.executors import register_default_executors
from jinmai.settings import Settings
from jmcore import api_errors
from jmcore.api_errors import ApiError, error_body, new_request_id
from jmcore.ark import ArkClient
from jmcore.collab_hub import CollabHub
from jmcore.media import passthrough_headers, relay_unsplash, relay_video
from jmcore.qianfan import QianfanClient, map_qianfan_error
from jmcore.task_queue import AITaskQueue
from jmcore.upstream import upstream_error_code

log = logging.getLogger("jinmai.web")


def _upstream_response(status: int, data: dict) -> JSONResponse:
    status = int(status or 0)
    if status == 0:
        msg = str((data or {}).get("_error", "") or "").strip() or "UNKNOWN"
        return JSONResponse(status_code=500, content={"error": api_errors.SERVER_ERROR, "message": msg})
    if not (200 <= status < 300):
        return JSONResponse(status_code=status, content={"error": upstream_error_code(data), "data": data})
    return JSONResponse(status_code=200, content={"ok": True, "data": data})


def create_app(
    settings: Optional[Settings] = None,
    *,
    ark: Optional[ArkClient] = None,
    qianfan: Optional[QianfanClient] = None,
    queue: Optional[AITaskQueue] = None,
    hub: Optional[CollabHub] = None,
) -> FastAPI:
    settings = settings or Settings.load()
    ark = ark or ArkClient(settings.ark_config(), video_model=settings.get("ark_video_model"))
    qianfan = qianfan or QianfanClient(settings.qianfan_config())
    if queue is None:
        queue = AITaskQueue(settings.queue_config())
        register_default_executors(queue, ark=ark, qianfan=qianfan)
    hub = hub or CollabHub()

    app = FastAPI(title="Jinmai AI Gateway", version=str(VERSION or "0.0.0"))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.state.settings = settings
    app.state.queue = queue
    app.state.hub = hub

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status, content=error_body(exc.code, exc.message, data=exc.data))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        rid = new_request_id()
        log.error("unhandled error on %s [%s]:\n%s", request.url.path, rid, traceback.format_exc())
        message = str(exc) if settings.debug else ""
        return JSONResponse(status_code=500, content=error_body(api_errors.SERVER_ERROR, message, request_id=rid))

    @app.on_event("shutdown")
    def _shutdown_queue():
        n = queue.clear_queue()
        if n:
            log.info("shutdown: cancelled %d queued AI tasks", n)

    # health

    @app.get("/api/health")
    def health():
        return {"ok": True, "time": time.time(), "version": VERSION}

    @app.get("/api/health/ping")
    def ping():
        return {"ok": True, "message": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/config/status")
    def config_status():
        return settings.status()

    # Doubao / Ark

    def _require_ark(*, need_model: bool):
        if not ark.configured or (need_model and not ark.model):
            raise ApiError(api_errors.CONFIG_MISSING)

    @app.post("/api/doubao/chat/completions")
    def doubao_chat(payload: dict = Body(default={})):
        _require_ark(need_model=True)
        status, data = ark.chat_completions(payload)
        return _upstream_response(status, data)

    @app.post("/api/doubao/images/generate")
    def doubao_images(payload: dict = Body(default={})):
        _require_ark(need_model=True)
        status, data = ark.generate_images(payload)
        return _upstream_response(status, data)

    @app.post("/api/doubao/videos/tasks")
    def doubao_video_create(payload: dict = Body(default={})):
        _require_ark(need_model=False)
        status, data = ark.create_video_task(payload)
        return _upstream_response(status, data)

    @app.get("/api/doubao/videos/tasks/{task_id}")
    def doubao_video_get(task_id: str):
        _require_ark(need_model=False)
        status, data = ark.get_video_task(task_id)
        return _upstream_response(status, data)

    # Qianfan

    @app.post("/api/wenxin/chat/completions")
    def wenxin_chat(payload: dict = Body(default={})):
        if not qianfan.cfg.configured:
            raise ApiError(api_errors.CONFIG_MISSING)
        status, data = qianfan.chat_completions(payload)
        if int(status or 0) == 200:
            return {"ok": True, "data": data}
        if int(status or 0) == 0:
            return _upstream_response(0, data)
        code, body = map_qianfan_error(status, data)
        return JSONResponse(status_code=code, content=body)

    # media relays

    @app.get("/api/proxy/video")
    def proxy_video(url: str = ""):
        resp = relay_video(url)
        return Response(
            content=resp.body,
            status_code=resp.status,
            media_type=resp.content_type,
            headers=passthrough_headers(resp),
        )

    @app.get("/api/proxy/unsplash/{path:path}")
    def proxy_unsplash(path: str, request: Request):
        resp = relay_unsplash(path, request.url.query, user_agent=request.headers.get("user-agent", ""))
        return Response(content=resp.body, status_code=resp.status, media_type=resp.content_type)

    # AI task queue

    @app.post("/api/ai/tasks")
    def ai_task_add(payload: dict = Body(...)):
        task_type = str(payload.get("type", "") or "").strip().lower()
        prompt = str(payload.get("prompt", "") or "").strip()
        if not task_type or not prompt:
            raise ApiError(api_errors.MISSING_REQUIRED_FIELDS, "type and prompt are required")
        metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
        try:
            task = queue.add_task(task_type, prompt, priority=payload.get("priority") or None, metadata=metadata)
        except ValueError as e:
            raise ApiError(api_errors.INVALID_PARAMETER, str(e))
        return {"ok": True, "task": task.to_dict()}

    @app.get("/api/ai/tasks")
    def ai_task_list(pending_only: bool = False):
        tasks = queue.get_all_tasks() if pending_only else queue.list_tasks()
        return {"ok": True, "tasks": [t.to_dict() for t in tasks]}

    @app.get("/api/ai/tasks/stats")
    def ai_task_stats():
        return {"ok": True, "stats": queue.get_queue_stats()}

    @app.post("/api/ai/tasks/clear")
    def ai_task_clear():
        return {"ok": True, "affected": queue.clear_queue()}

    @app.post("/api/ai/tasks/concurrency")
    def ai_task_concurrency(payload: dict = Body(...)):
        try:
            queue.set_max_concurrent_tasks(int(payload.get("max", 0) or 0))
        except (TypeError, ValueError) as e:
            raise ApiError(api_errors.INVALID_PARAMETER, str(e))
        return {"ok": True, "max_concurrent_tasks": queue.config.max_concurrent_tasks}

    @app.get("/api/ai/tasks/{task_id}")
    def ai_task_get(task_id: str):
        t = queue.get_task(task_id)
        if t is None:
            raise ApiError(api_errors.TASK_NOT_FOUND)
        return {"ok": True, "task": t.to_dict()}

    @app.post("/api/ai/tasks/{task_id}/cancel")
    def ai_task_cancel(task_id: str):
        if not queue.cancel_task(task_id):
            raise ApiError(api_errors.TASK_NOT_FOUND)
        return {"ok": True}

    # collaboration relay

    @app.get("/api/collab/sessions")
    def collab_sessions():
        return {
            "ok": True,
            "stats": hub.stats(),
            "sessions": {sid: hub.participants(sid) for sid in hub.session_ids()},
        }

    @app.websocket("/ws")
    async def collab_ws(websocket: WebSocket):
        q = websocket.query_params
        session_id = (q.get("sessionId", "") or "").strip()
        user_id = (q.get("userId", "") or "").strip()
        username = (q.get("username", "") or "").strip()
        if not session_id or not user_id:
            await websocket.close(code=1008)
            return
        await websocket.accept()

        async def send(message: dict):
            await websocket.send_json(message)

        participant = await hub.join(session_id, user_id, username, send)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    await send({"type": "error", "message": "invalid JSON"})
                    continue
                await hub.handle(session_id, user_id, message)
        except WebSocketDisconnect:
            pass
        finally:
            await hub.leave(session_id, user_id, participant=participant)

    return app
