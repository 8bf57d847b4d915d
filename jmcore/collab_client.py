# -*- coding: utf-8 -*-
"""
Reconnecting client for the collaboration relay.

The connection is served by a background reader thread; a second thread sends
a ``ping`` every ``heartbeat_s`` seconds while the socket is open. When the
socket closes unexpectedly the client reconnects after
``reconnect_delay_s * attempts`` seconds, up to ``max_reconnect_attempts``.
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.parse
from typing import Any, Callable, Dict, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

log = logging.getLogger("jinmai.collab.client")

DEFAULT_URL = "ws://localhost:3007/ws"

CALLBACK_NAMES = (
    "on_open",
    "on_close",
    "on_error",
    "on_message",
    "on_session_join",
    "on_user_joined",
    "on_user_left",
    "on_text_edit",
    "on_cursor_update",
    "on_selection_update",
)

# message type -> callback name
DISPATCH = {
    "session_joined": "on_session_join",
    "user_joined": "on_user_joined",
    "user_left": "on_user_left",
    "text_edit": "on_text_edit",
    "cursor_update": "on_cursor_update",
    "selection_update": "on_selection_update",
}


def build_url(base: str, session_id: str, user_id: str, username: str) -> str:
    qs = urllib.parse.urlencode({"sessionId": session_id, "userId": user_id, "username": username})
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}{qs}"


class CollabClient:
    def __init__(
        self,
        url_base: str = DEFAULT_URL,
        *,
        max_reconnect_attempts: int = 5,
        reconnect_delay_s: float = 1.0,
        heartbeat_s: float = 30.0,
        open_timeout_s: float = 10.0,
        connect_fn=ws_connect,
    ):
        self.url_base = url_base
        self.max_reconnect_attempts = int(max_reconnect_attempts)
        self.reconnect_delay_s = float(reconnect_delay_s)
        self.heartbeat_s = float(heartbeat_s)
        self.open_timeout_s = float(open_timeout_s)
        self._connect_fn = connect_fn

        self._lock = threading.Lock()
        self._ws = None
        self._connecting = False
        self._closed_by_user = False
        self._had_error = False
        self.reconnect_attempts = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._heartbeat_stop: Optional[threading.Event] = None
        self._callbacks: Dict[str, Callable[..., Any]] = {}

    # callbacks

    def set_callbacks(self, **callbacks: Callable[..., Any]) -> None:
        for name, fn in callbacks.items():
            if name not in CALLBACK_NAMES:
                raise ValueError(f"unknown callback: {name}")
            self._callbacks[name] = fn

    def _fire(self, name: str, *args) -> None:
        fn = self._callbacks.get(name)
        if fn is None:
            return
        try:
            fn(*args)
        except Exception:
            log.exception("%s callback failed", name)

    # connection lifecycle

    def is_open(self) -> bool:
        with self._lock:
            return self._ws is not None and not self._connecting

    def connection_state(self) -> str:
        with self._lock:
            if self._connecting:
                return "connecting"
            if self._ws is not None:
                return "open"
            if self._had_error:
                return "error"
            return "closed"

    def connect(self, session_id: str, user_id: str, username: str) -> None:
        with self._lock:
            if self._connecting or self._ws is not None:
                return
            # A previous reader may still be unwinding after disconnect().
            if self._thread is not None and self._thread.is_alive():
                log.warning("collab client still shutting down, connect ignored")
                return
            self._connecting = True
            self._closed_by_user = False
            self._stop.clear()
            url = build_url(self.url_base, session_id, user_id, username)
            t = threading.Thread(target=self._run, args=(url,), name="collab-client", daemon=True)
            self._thread = t
        t.start()

    def _run(self, url: str) -> None:
        while True:
            try:
                ws = self._connect_fn(url, open_timeout=self.open_timeout_s)
            except (OSError, WebSocketException, TimeoutError) as e:
                log.error("collab connect failed: %s", e)
                with self._lock:
                    self._connecting = False
                    self._had_error = True
                self._fire("on_error", e)
            else:
                with self._lock:
                    abandoned = self._closed_by_user or self._stop.is_set()
                    if not abandoned:
                        self._ws = ws
                        self._connecting = False
                        self._had_error = False
                        self.reconnect_attempts = 0
                if abandoned:
                    log.info("collab connect completed after disconnect, closing")
                    self._close_quietly(ws)
                    return
                log.info("collab connection open: %s", url)
                self._start_heartbeat()
                self._fire("on_open")
                self._read_loop(ws)
                self._stop_heartbeat()
                with self._lock:
                    self._ws = None
                self._fire("on_close")

            with self._lock:
                if self._closed_by_user or self.reconnect_attempts >= self.max_reconnect_attempts:
                    return
                self.reconnect_attempts += 1
                delay = self.reconnect_delay_s * self.reconnect_attempts
            log.info("collab reconnect %d/%d in %.1fs", self.reconnect_attempts, self.max_reconnect_attempts, delay)
            if self._stop.wait(delay):
                return
            with self._lock:
                self._connecting = True

    def _read_loop(self, ws) -> None:
        while True:
            try:
                raw = ws.recv()
            except ConnectionClosed as e:
                log.info("collab connection closed: %s", e)
                return
            except (OSError, WebSocketException) as e:
                log.error("collab connection error: %s", e)
                with self._lock:
                    self._had_error = True
                self._fire("on_error", e)
                return
            try:
                message = json.loads(raw)
            except ValueError as e:
                log.error("collab message parse error: %s", e)
                continue
            self.handle_message(message)

    def disconnect(self) -> None:
        with self._lock:
            self._closed_by_user = True
            ws = self._ws
            self._ws = None
            self._connecting = False
        self._stop.set()
        self._stop_heartbeat()
        if ws is not None:
            self._close_quietly(ws)

    def _close_quietly(self, ws) -> None:
        try:
            ws.close(code=1000, reason="client disconnect")
        except (OSError, WebSocketException) as e:
            log.warning("collab close failed: %s", e)

    # heartbeat

    def _start_heartbeat(self) -> None:
        stop = threading.Event()
        self._heartbeat_stop = stop

        def loop():
            while not stop.wait(self.heartbeat_s):
                if self.is_open():
                    self.send({"type": "ping"})

        threading.Thread(target=loop, name="collab-heartbeat", daemon=True).start()

    def _stop_heartbeat(self) -> None:
        stop = self._heartbeat_stop
        self._heartbeat_stop = None
        if stop is not None:
            stop.set()

    # outgoing

    def send(self, message: dict) -> bool:
        with self._lock:
            ws = self._ws if not self._connecting else None
        if ws is None:
            log.warning("collab not connected, dropping %s", message.get("type"))
            return False
        try:
            ws.send(json.dumps(message, ensure_ascii=False))
            return True
        except (OSError, WebSocketException) as e:
            log.warning("collab send failed: %s", e)
            return False

    def send_text_edit(self, operation: str, position: int, text: str = "", length: int = 0) -> bool:
        if operation not in ("insert", "delete"):
            raise ValueError(f"unknown operation: {operation}")
        return self.send({"type": "text_edit", "operation": operation, "position": int(position), "text": text, "length": int(length)})

    def send_cursor_move(self, position: int) -> bool:
        return self.send({"type": "cursor_move", "position": int(position)})

    def send_selection_change(self, start: int, end: int) -> bool:
        return self.send({"type": "selection_change", "start": int(start), "end": int(end)})

    def send_typing_start(self) -> bool:
        return self.send({"type": "typing_start"})

    def send_typing_stop(self) -> bool:
        return self.send({"type": "typing_stop"})

    # incoming

    def handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            log.warning("collab message is not an object: %r", message)
            return
        self._fire("on_message", message)
        mtype = message.get("type")
        name = DISPATCH.get(mtype)
        if name is not None:
            self._fire(name, message)
        elif mtype == "error":
            log.error("collab server error: %s", message.get("message"))
        elif mtype == "pong":
            return
        else:
            log.warning("unknown collab message type: %s", mtype)
