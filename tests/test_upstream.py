# -*- coding: utf-8 -*-

import http.client
import unittest
from unittest.mock import MagicMock, patch

from jmcore.upstream import (
    UpstreamClient,
    UpstreamConfig,
    extract_first_content,
    http_bytes,
    http_json,
    is_transient_status,
    join_url,
    mask_secret,
    upstream_error_code,
)


class TestUpstreamHelpers(unittest.TestCase):
    def test_mask_secret(self):
        self.assertEqual(mask_secret(""), "")
        self.assertEqual(mask_secret("abc"), "***")
        self.assertEqual(mask_secret("sk-1234567890"), "*********7890")

    def test_join_url(self):
        self.assertEqual(join_url("https://a/api/v3/", "/chat"), "https://a/api/v3/chat")
        self.assertEqual(join_url("https://a", ""), "https://a")
        self.assertEqual(join_url("", "/x"), "")

    def test_transient_statuses(self):
        for s in (0, 408, 429, 500, 503, 599):
            self.assertTrue(is_transient_status(s), s)
        for s in (200, 400, 401, 404):
            self.assertFalse(is_transient_status(s), s)

    def test_upstream_error_code(self):
        self.assertEqual(upstream_error_code({"error": {"code": "InvalidParameter"}}), "InvalidParameter")
        self.assertEqual(upstream_error_code({"error": "plain"}), "SERVER_ERROR")
        self.assertEqual(upstream_error_code(None, "X"), "X")

    def test_extract_first_content(self):
        self.assertEqual(extract_first_content({"choices": [{"message": {"content": " hi "}}]}), "hi")
        self.assertEqual(extract_first_content({"choices": []}), "")


class TestUpstreamClient(unittest.TestCase):
    def _client(self, **kw):
        cfg = UpstreamConfig(api_key="k", base_url="https://up.example/v1", max_retries=kw.pop("max_retries", 2))
        delays = []
        return UpstreamClient(cfg, sleep=delays.append), delays

    def test_retries_transient_then_succeeds(self):
        client, delays = self._client()
        with patch("jmcore.upstream.http_json", side_effect=[(503, {}), (0, {"_error": "reset"}), (200, {"ok": 1})]) as m:
            status, data = client.request("POST", "/chat/completions", payload={"a": 1})
        self.assertEqual((status, data), (200, {"ok": 1}))
        self.assertEqual(m.call_count, 3)
        self.assertEqual(delays, [0.8, 1.6])
        args, kwargs = m.call_args
        self.assertEqual(args, ("POST", "https://up.example/v1/chat/completions"))
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer k")

    def test_client_errors_are_not_retried(self):
        client, delays = self._client()
        with patch("jmcore.upstream.http_json", return_value=(400, {"error": {"code": "Bad"}})) as m:
            status, _ = client.request("GET", "/x")
        self.assertEqual(status, 400)
        self.assertEqual(m.call_count, 1)
        self.assertEqual(delays, [])

    def test_retry_disabled_sends_once(self):
        client, delays = self._client()
        with patch("jmcore.upstream.http_json", return_value=(502, {})) as m:
            status, _ = client.request("POST", "/images", retry=False)
        self.assertEqual(status, 502)
        self.assertEqual(m.call_count, 1)

    def test_gives_up_after_max_retries(self):
        client, delays = self._client(max_retries=1)
        with patch("jmcore.upstream.http_json", return_value=(429, {"error": {"code": "RateLimit"}})) as m:
            status, data = client.request("GET", "/x")
        self.assertEqual(status, 429)
        self.assertEqual(m.call_count, 2)
        self.assertEqual(data["error"]["code"], "RateLimit")


def truncated_response():
    resp = MagicMock()
    resp.status = 200
    resp.headers = {"Content-Type": "application/json"}
    resp.read.side_effect = http.client.IncompleteRead(b'{"ok"', 20)
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


class TestTransportFailures(unittest.TestCase):
    def test_truncated_body_is_a_network_failure(self):
        with patch("jmcore.upstream.urllib.request.urlopen", return_value=truncated_response()):
            status, data = http_json("POST", "https://up.example/v1/chat", payload={})
        self.assertEqual(status, 0)
        self.assertIn("IncompleteRead", data["_error"])
        self.assertTrue(is_transient_status(status))

    def test_truncated_body_is_retried(self):
        ok = MagicMock()
        ok.status = 200
        ok.read.return_value = b'{"id": "x"}'
        ok_cm = MagicMock()
        ok_cm.__enter__.return_value = ok
        ok_cm.__exit__.return_value = False

        client = UpstreamClient(UpstreamConfig(api_key="k", base_url="https://up.example/v1"), sleep=lambda s: None)
        with patch("jmcore.upstream.urllib.request.urlopen", side_effect=[truncated_response(), ok_cm]) as m:
            status, data = client.request("GET", "/tasks/x")
        self.assertEqual((status, data), (200, {"id": "x"}))
        self.assertEqual(m.call_count, 2)

    def test_binary_truncation_raises_oserror(self):
        with patch("jmcore.upstream.urllib.request.urlopen", return_value=truncated_response()):
            with self.assertRaises(OSError):
                http_bytes("https://a.volces.com/v.mp4")


if __name__ == "__main__":
    unittest.main()
