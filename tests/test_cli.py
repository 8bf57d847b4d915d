# -*- coding: utf-8 -*-

import contextlib
import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from jinmai.cli import main
from jinmai.settings import Settings
from webapp.launch import build_log_config, resolve_log_path


class TestCli(unittest.TestCase):
    def _run(self, argv, env):
        out = io.StringIO()
        with patch.dict(os.environ, env, clear=True), contextlib.redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def test_config_status_prints_masked_json(self):
        with tempfile.TemporaryDirectory() as td:
            code, out = self._run(["config", "status"], {"JINMAI_DATA_DIR": td, "DOUBAO_API_KEY": "sk-verysecret"})
        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual(data["settings"]["ark_api_key"]["source"], "env:DOUBAO_API_KEY")
        self.assertNotIn("sk-verysecret", out)

    def test_ark_test_without_config(self):
        with tempfile.TemporaryDirectory() as td:
            code, out = self._run(["ark", "test"], {"JINMAI_DATA_DIR": td})
        self.assertEqual(code, 2)
        self.assertIn("Missing Ark config", out)

    def test_queue_run_reports_failed_task(self):
        with tempfile.TemporaryDirectory() as td:
            env = {"JINMAI_DATA_DIR": td, "JINMAI_RETRY_ATTEMPTS": "0"}
            code, out = self._run(["queue", "run", "--type", "audio", "--prompt", "hi", "--timeout-s", "5"], env)
        self.assertEqual(code, 1)
        self.assertIn("No executor registered for task type: audio", out)

    def test_unexpected_error_exit_code(self):
        with tempfile.TemporaryDirectory() as td:
            with patch("jinmai.cli.Settings.load", side_effect=RuntimeError("disk on fire")):
                code, out = self._run(["config", "status"], {"JINMAI_DATA_DIR": td})
        self.assertEqual(code, 1)
        self.assertIn("Error: disk on fire", out)


class TestLaunchHelpers(unittest.TestCase):
    def test_log_path_defaults_under_data_dir(self):
        with tempfile.TemporaryDirectory() as td:
            s = Settings.load({}, data_dir=Path(td))
            with patch.dict(os.environ, {}, clear=True):
                p = resolve_log_path(s)
            self.assertEqual(p, Path(td) / "logs" / "gateway.log")
            self.assertTrue(p.parent.is_dir())

            with patch.dict(os.environ, {"JINMAI_LOG_FILE": "custom/x.log"}, clear=True):
                self.assertEqual(resolve_log_path(s), Path(td) / "custom" / "x.log")

    def test_log_config_routes_uvicorn(self):
        cfg = build_log_config(Path("/tmp/gw.log"), level="debug")
        self.assertEqual(cfg["handlers"]["file"]["filename"], "/tmp/gw.log")
        for name in ("jinmai", "uvicorn", "uvicorn.access"):
            self.assertEqual(cfg["loggers"][name]["level"], "DEBUG")
            self.assertIn("file", cfg["loggers"][name]["handlers"])

        cfg = build_log_config(None)
        self.assertNotIn("file", cfg["handlers"])


if __name__ == "__main__":
    unittest.main()
