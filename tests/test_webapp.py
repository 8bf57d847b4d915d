# -*- coding: utf-8 -*-

import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from jinmai.settings import Settings
from jmcore.ark import ArkClient
from jmcore.collab_hub import CollabHub
from jmcore.task_queue import AITaskQueue, TaskQueueConfig
from jmcore.upstream import BinaryResponse, UpstreamConfig
from webapp.app import create_app


class WebAppTestCase(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        self.settings = Settings.load({}, data_dir=Path(self._td.name))

        self.ark = ArkClient(UpstreamConfig(api_key="sk-test", base_url="https://ark.example/api/v3", model="ep-chat"))
        self.ark._http = MagicMock()

        self.queue = AITaskQueue(TaskQueueConfig(max_concurrent_tasks=2, retry_attempts=0, retry_delay_s=0.0))
        self.queue.register_executor("text", lambda task: {"echo": task.prompt})
        self.hub = CollabHub()

        self.app = create_app(self.settings, ark=self.ark, queue=self.queue, hub=self.hub)
        self.client = TestClient(self.app)


class TestHealthAndConfig(WebAppTestCase):
    def test_ping(self):
        r = self.client.get("/api/health/ping")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["message"], "pong")
        self.assertTrue(r.json()["ok"])

    def test_config_status_masks_keys(self):
        r = self.client.get("/api/config/status")
        self.assertEqual(r.status_code, 200)
        self.assertIn("ark_api_key", r.json()["settings"])

    def test_cors_preflight(self):
        r = self.client.options(
            "/api/doubao/chat/completions",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.headers.get("access-control-allow-origin"), "*")


class TestDoubaoRoutes(WebAppTestCase):
    def test_chat_success_and_sanitized_payload(self):
        self.ark._http.request.return_value = (200, {"choices": [{"message": {"content": "ok"}}]})
        r = self.client.post("/api/doubao/chat/completions", json={"messages": [{"content": "`hi`"}]})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"ok": True, "data": {"choices": [{"message": {"content": "ok"}}]}})
        payload = self.ark._http.request.call_args.kwargs["payload"]
        self.assertEqual(payload["model"], "ep-chat")
        self.assertEqual(payload["messages"], [{"role": "user", "content": "hi"}])

    def test_chat_requires_messages(self):
        r = self.client.post("/api/doubao/chat/completions", json={})
        self.assertEqual(r.status_code, 400)
        body = r.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"], "MESSAGES_REQUIRED")
        self.assertTrue(body["requestId"])
        self.assertFalse(self.ark._http.request.called)

    def test_upstream_error_is_passed_through(self):
        self.ark._http.request.return_value = (401, {"error": {"code": "AuthenticationError", "message": "bad key"}})
        r = self.client.post("/api/doubao/images/generate", json={"prompt": "cat"})
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json()["error"], "AuthenticationError")

    def test_network_failure_maps_to_500(self):
        self.ark._http.request.return_value = (0, {"_error": "connection refused"})
        r = self.client.post("/api/doubao/chat/completions", json={"messages": [{"content": "x"}]})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json(), {"error": "SERVER_ERROR", "message": "connection refused"})

    def test_video_task_routes(self):
        self.ark._http.request.return_value = (200, {"id": "cgt-1"})
        r = self.client.post("/api/doubao/videos/tasks", json={"content": [{"type": "text", "text": "sea"}]})
        self.assertEqual(r.json()["data"]["id"], "cgt-1")

        self.ark._http.request.return_value = (200, {"id": "cgt-1", "status": "running"})
        r = self.client.get("/api/doubao/videos/tasks/cgt-1")
        self.assertEqual(r.json()["data"]["status"], "running")
        self.assertEqual(self.ark._http.request.call_args.args, ("GET", "/contents/generations/tasks/cgt-1"))

        r = self.client.post("/api/doubao/videos/tasks", json={"content": []})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "CONTENT_REQUIRED")

    def test_missing_key_is_config_error(self):
        ark = ArkClient(UpstreamConfig(api_key="", base_url="https://ark.example/api/v3", model="ep"))
        client = TestClient(create_app(self.settings, ark=ark, queue=self.queue, hub=self.hub))
        r = client.post("/api/doubao/chat/completions", json={"messages": [{"content": "x"}]})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json()["error"], "CONFIG_MISSING")


class TestWenxinRoute(WebAppTestCase):
    def test_not_configured(self):
        r = self.client.post("/api/wenxin/chat/completions", json={"messages": [{"content": "x"}]})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json()["error"], "CONFIG_MISSING")

    def test_quota_error_and_success(self):
        qf = MagicMock()
        qf.cfg.configured = True
        client = TestClient(create_app(self.settings, ark=self.ark, qianfan=qf, queue=self.queue, hub=self.hub))

        qf.chat_completions.return_value = (400, {"error_code": 4001, "error_msg": "quota"})
        r = client.post("/api/wenxin/chat/completions", json={"messages": [{"content": "x"}]})
        self.assertEqual(r.status_code, 429)
        self.assertEqual(r.json()["error"], "QUOTA_EXCEEDED")

        qf.chat_completions.return_value = (200, {"result": "你好"})
        r = client.post("/api/wenxin/chat/completions", json={"messages": [{"content": "x"}]})
        self.assertEqual(r.json(), {"ok": True, "data": {"result": "你好"}})


class TestProxyRoutes(WebAppTestCase):
    def test_video_proxy_validation(self):
        r = self.client.get("/api/proxy/video")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "URL_NOT_PROVIDED")
        r = self.client.get("/api/proxy/video", params={"url": "https://evil.example/a.mp4"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "URL_NOT_ALLOWED")

    def test_video_proxy_streams_bytes(self):
        resp = BinaryResponse(status=200, content_type="video/mp4", headers={"accept-ranges": "bytes"}, body=b"\x00\x01")
        with patch("jmcore.media.http_bytes", return_value=resp):
            r = self.client.get("/api/proxy/video", params={"url": "https://x.volces.com/a.mp4"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.content, b"\x00\x01")
        self.assertEqual(r.headers["content-type"], "video/mp4")
        self.assertEqual(r.headers["accept-ranges"], "bytes")

    def test_unsplash_proxy(self):
        resp = BinaryResponse(status=200, content_type="", headers={}, body=b"img")
        with patch("jmcore.media.http_bytes", return_value=resp) as m:
            r = self.client.get("/api/proxy/unsplash/photo-123?w=200")
        self.assertEqual(r.content, b"img")
        self.assertEqual(r.headers["content-type"], "image/jpeg")
        self.assertEqual(m.call_args.args[0], "https://images.unsplash.com/photo-123?w=200")


class TestTaskQueueRoutes(WebAppTestCase):
    def test_submit_and_fetch(self):
        r = self.client.post("/api/ai/tasks", json={"type": "text", "prompt": "hello", "priority": "high"})
        self.assertEqual(r.status_code, 200)
        tid = r.json()["task"]["id"]
        self.assertTrue(self.queue.wait_idle(5))

        r = self.client.get(f"/api/ai/tasks/{tid}")
        task = r.json()["task"]
        self.assertEqual(task["status"], "completed")
        self.assertEqual(task["result"], {"success": True, "data": {"echo": "hello"}})

        stats = self.client.get("/api/ai/tasks/stats").json()["stats"]
        self.assertEqual(stats["byStatus"]["completed"], 1)
        self.assertEqual(len(self.client.get("/api/ai/tasks").json()["tasks"]), 1)

    def test_validation_and_not_found(self):
        r = self.client.post("/api/ai/tasks", json={"type": "text"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "MISSING_REQUIRED_FIELDS")
        r = self.client.post("/api/ai/tasks", json={"type": "text", "prompt": "x", "priority": "asap"})
        self.assertEqual(r.json()["error"], "INVALID_PARAMETER")
        r = self.client.post("/api/ai/tasks", json={"type": "text", "prompt": "x", "priority": 3})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "INVALID_PARAMETER")
        r = self.client.get("/api/ai/tasks/task_nope")
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"], "TASK_NOT_FOUND")
        r = self.client.post("/api/ai/tasks/task_nope/cancel")
        self.assertEqual(r.status_code, 404)

    def test_concurrency_and_clear(self):
        r = self.client.post("/api/ai/tasks/concurrency", json={"max": 5})
        self.assertEqual(r.json()["max_concurrent_tasks"], 5)
        r = self.client.post("/api/ai/tasks/concurrency", json={"max": 0})
        self.assertEqual(r.status_code, 400)
        r = self.client.post("/api/ai/tasks/clear")
        self.assertEqual(r.json(), {"ok": True, "affected": 0})


class TestCollabSocket(WebAppTestCase):
    def test_two_participants_relay(self):
        with self.client.websocket_connect("/ws?sessionId=doc&userId=a&username=Alice") as ws_a:
            self.assertEqual(ws_a.receive_json()["type"], "session_joined")
            with self.client.websocket_connect("/ws?sessionId=doc&userId=b&username=Bob") as ws_b:
                joined = ws_b.receive_json()
                self.assertEqual(joined["type"], "session_joined")
                self.assertEqual(len(joined["users"]), 2)
                self.assertEqual(ws_a.receive_json()["type"], "user_joined")

                ws_a.send_json({"type": "text_edit", "operation": "insert", "position": 0, "text": "Hi"})
                edit = ws_b.receive_json()
                self.assertEqual(edit["type"], "text_edit")
                self.assertEqual(edit["userId"], "a")
                self.assertEqual(edit["text"], "Hi")

                ws_b.send_text("not json")
                self.assertEqual(ws_b.receive_json(), {"type": "error", "message": "invalid JSON"})

                sessions = self.client.get("/api/collab/sessions").json()
                self.assertEqual(sessions["stats"], {"sessions": 1, "participants": 2})

            left = ws_a.receive_json()
            self.assertEqual(left["type"], "user_left")
            self.assertEqual(left["userId"], "b")

    def test_missing_params_rejected(self):
        with self.assertRaises(WebSocketDisconnect) as cm:
            with self.client.websocket_connect("/ws?sessionId=doc") as ws:
                ws.receive_json()
        self.assertEqual(cm.exception.code, 1008)


if __name__ == "__main__":
    unittest.main()
