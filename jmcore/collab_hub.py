# -*- coding: utf-8 -*-
"""
Collaboration relay.

Each session is a set of participants keyed by user id. Messages from one
participant are relayed to the others in arrival order; edits are forwarded as
raw operations without any merge or transform.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

log = logging.getLogger("jinmai.collab")

SendFn = Callable[[dict], Awaitable[None]]

TEXT_OPERATIONS = ("insert", "delete")


@dataclass
class Participant:
    user_id: str
    username: str
    send: SendFn = field(repr=False)
    joined_at: float = field(default_factory=time.time)
    cursor: Optional[int] = None
    selection: Optional[Dict[str, int]] = None
    typing: bool = False

    def public(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "joinedAt": self.joined_at,
            "cursor": self.cursor,
            "selection": self.selection,
            "isTyping": self.typing,
        }


def _as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    return None


class CollabHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Dict[str, Participant]] = {}
        self._pending_leaves: Set["asyncio.Future[bool]"] = set()

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def _members(self, session_id: str) -> List[Participant]:
        with self._lock:
            return list(self._sessions.get(session_id, {}).values())

    def _member(self, session_id: str, user_id: str) -> Optional[Participant]:
        with self._lock:
            return self._sessions.get(session_id, {}).get(user_id)

    def participants(self, session_id: str) -> List[dict]:
        return [p.public() for p in self._members(session_id)]

    def stats(self) -> dict:
        with self._lock:
            return {
                "sessions": len(self._sessions),
                "participants": sum(len(v) for v in self._sessions.values()),
            }

    async def join(self, session_id: str, user_id: str, username: str, send: SendFn) -> Participant:
        p = Participant(user_id=user_id, username=username or user_id, send=send)
        with self._lock:
            members = self._sessions.setdefault(session_id, {})
            replaced = members.get(user_id) is not None
            members[user_id] = p
            users = [m.public() for m in members.values()]
        log.info("session %s: %s joined%s", session_id, user_id, " (replaced)" if replaced else "")

        await self._send(session_id, p, {"type": "session_joined", "sessionId": session_id, "userId": user_id, "users": users})
        if not replaced:
            await self.broadcast(
                session_id,
                {"type": "user_joined", "sessionId": session_id, "user": p.public(), "timestamp": time.time()},
                exclude=user_id,
            )
        return p

    async def leave(self, session_id: str, user_id: str, *, participant: Optional[Participant] = None) -> bool:
        with self._lock:
            members = self._sessions.get(session_id)
            if not members or user_id not in members:
                return False
            # A stale connection must not evict the participant that replaced it.
            if participant is not None and members[user_id] is not participant:
                return False
            p = members.pop(user_id)
            if not members:
                self._sessions.pop(session_id, None)
        log.info("session %s: %s left", session_id, user_id)
        await self.broadcast(
            session_id,
            {"type": "user_left", "sessionId": session_id, "userId": user_id, "username": p.username, "timestamp": time.time()},
        )
        return True

    async def broadcast(self, session_id: str, message: dict, *, exclude: str = "") -> int:
        members = self._members(session_id)
        delivered = 0
        for p in members:
            if exclude and p.user_id == exclude:
                continue
            if await self._send(session_id, p, message):
                delivered += 1
        return delivered

    async def _send(self, session_id: str, p: Participant, message: dict) -> bool:
        try:
            await p.send(message)
            return True
        except Exception as e:
            log.warning("session %s: dropping %s after send failure: %s", session_id, p.user_id, e)
        # Schedule rather than await: leave() broadcasts and may recurse into _send.
        fut = asyncio.ensure_future(self.leave(session_id, p.user_id, participant=p))
        self._pending_leaves.add(fut)
        fut.add_done_callback(self._leave_done)
        return False

    def _leave_done(self, fut: "asyncio.Future[bool]") -> None:
        self._pending_leaves.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            log.error("scheduled leave failed: %r", exc)

    async def _reply_error(self, session_id: str, p: Participant, message: str) -> None:
        await self._send(session_id, p, {"type": "error", "message": message})

    async def handle(self, session_id: str, user_id: str, message: Any) -> None:
        p = self._member(session_id, user_id)
        if p is None:
            return
        if not isinstance(message, dict):
            await self._reply_error(session_id, p, "message must be a JSON object")
            return

        mtype = str(message.get("type", "") or "")
        base = {"sessionId": session_id, "userId": user_id, "username": p.username, "timestamp": time.time()}

        if mtype == "ping":
            await self._send(session_id, p, {"type": "pong", "timestamp": base["timestamp"]})
            return

        if mtype == "text_edit":
            op = message.get("operation")
            position = _as_int(message.get("position"))
            if op not in TEXT_OPERATIONS or position is None or position < 0:
                await self._reply_error(session_id, p, "invalid text_edit")
                return
            text = message.get("text", "")
            length = _as_int(message.get("length", 0))
            if not isinstance(text, str) or length is None or length < 0:
                await self._reply_error(session_id, p, "invalid text_edit")
                return
            await self.broadcast(
                session_id,
                dict(base, type="text_edit", operation=op, position=position, text=text, length=length),
                exclude=user_id,
            )
            return

        if mtype == "cursor_move":
            position = _as_int(message.get("position"))
            if position is None or position < 0:
                await self._reply_error(session_id, p, "invalid cursor_move")
                return
            p.cursor = position
            await self.broadcast(session_id, dict(base, type="cursor_update", position=position), exclude=user_id)
            return

        if mtype == "selection_change":
            start = _as_int(message.get("start"))
            end = _as_int(message.get("end"))
            if start is None or end is None or start < 0 or end < start:
                await self._reply_error(session_id, p, "invalid selection_change")
                return
            p.selection = {"start": start, "end": end}
            await self.broadcast(session_id, dict(base, type="selection_update", start=start, end=end), exclude=user_id)
            return

        if mtype in ("typing_start", "typing_stop"):
            p.typing = mtype == "typing_start"
            await self.broadcast(session_id, dict(base, type="typing_update", isTyping=p.typing), exclude=user_id)
            return

        await self._reply_error(session_id, p, f"unknown message type: {mtype or '(empty)'}")
