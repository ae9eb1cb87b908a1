"""Tests for the escalation ticker script."""

import argparse
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

# The ticker is a standalone script that depends on `requests`,
# which is not a core dependency. Skip the entire module if missing.
pytest.importorskip("requests", reason="requests is required for escalation ticker tests")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts", "escalation_tick"))

from tick import build_config, run_once, run_rotation, run_tick

CONFIG = {
    "beacon_url": "http://beacon:8000/",
    "api_prefix": "/api/v1",
    "interval": 60,
    "timeout": 30,
    "rotate": True,
}


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    resp.text = "error"
    return resp


def _args(**kw):
    defaults = dict(beacon_url=None, interval=None, no_rotate=False, once=False)
    defaults.update(kw)
    return argparse.Namespace(**defaults)


# ─── API calls ─────────────────────────────────────────


class TestRunTick:
    def test_posts_to_tick_endpoint(self):
        counts = {"evaluated": 2, "advanced": 1, "wrapped": 0, "exhausted": 0, "skipped": 1}
        with patch("tick.requests.post", return_value=_response(body=counts)) as mock_post:
            result = run_tick(CONFIG)

        assert result == counts
        assert mock_post.call_args.args[0] == "http://beacon:8000/api/v1/escalations/tick"
        assert mock_post.call_args.kwargs["timeout"] == 30

    def test_error_status_returns_none(self):
        with patch("tick.requests.post", return_value=_response(500)):
            assert run_tick(CONFIG) is None

    def test_network_error_returns_none(self):
        import requests as req

        with patch("tick.requests.post", side_effect=req.ConnectionError("refused")):
            assert run_tick(CONFIG) is None


class TestRunOnce:
    def test_tick_then_rotation(self):
        with patch(
            "tick.requests.post",
            side_effect=[_response(body={"advanced": 0}), _response(body={"rotated": 1, "total": 3})],
        ) as mock_post:
            summary = run_once(CONFIG)

        urls = [c.args[0] for c in mock_post.call_args_list]
        assert urls == [
            "http://beacon:8000/api/v1/escalations/tick",
            "http://beacon:8000/api/v1/oncall/rotate",
        ]
        assert summary["rotation"] == {"rotated": 1, "total": 3}

    def test_rotation_disabled(self):
        with patch("tick.requests.post", return_value=_response(body={})) as mock_post:
            summary = run_once({**CONFIG, "rotate": False})

        mock_post.assert_called_once()
        assert summary["rotation"] is None

    def test_rotation_failure_does_not_raise(self):
        with patch("tick.requests.post", return_value=_response(503)):
            assert run_rotation(CONFIG) is None


# ─── Config ────────────────────────────────────────────


class TestBuildConfig:
    def test_defaults(self, monkeypatch):
        for key in ["BEACON_URL", "API_PREFIX", "TICK_INTERVAL", "TICK_TIMEOUT", "ROTATE_SCHEDULES"]:
            monkeypatch.delenv(key, raising=False)

        config = build_config(_args())
        assert config["beacon_url"] == "http://localhost:8000"
        assert config["api_prefix"] == "/api/v1"
        assert config["interval"] == 60
        assert config["timeout"] == 120
        assert config["rotate"] is True

    def test_cli_overrides_env(self, monkeypatch):
        monkeypatch.setenv("BEACON_URL", "http://env-host:8000")
        monkeypatch.setenv("TICK_INTERVAL", "15")

        config = build_config(_args(beacon_url="http://cli-host:8000", interval=5))
        assert config["beacon_url"] == "http://cli-host:8000"
        assert config["interval"] == 5

    def test_rotation_off(self, monkeypatch):
        monkeypatch.setenv("ROTATE_SCHEDULES", "false")
        assert build_config(_args())["rotate"] is False
        monkeypatch.delenv("ROTATE_SCHEDULES")
        assert build_config(_args(no_rotate=True))["rotate"] is False
