"""CLI commands via click's CliRunner."""

import json
import os

import pytest
from click.testing import CliRunner

from hotelmate_realtime import config
from hotelmate_realtime.cli.main import main


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_FILE", path)
    for key in list(os.environ):
        if key.startswith(config.ENV_PREFIX):
            monkeypatch.delenv(key)
    return path


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


class TestChannels:
    def test_lists_hotel_and_personal_channels(self, runner):
        result = runner.invoke(main, ["channels", "--hotel", "acme", "--staff-id", "7", "--conversation", "3"])
        assert result.exit_code == 0
        assert "acme.attendance" in result.output
        assert "acme.staff-7-notifications" in result.output
        assert "acme.staff-chat.3" in result.output

    def test_requires_a_slug(self, runner):
        result = runner.invoke(main, ["channels"])
        assert result.exit_code == 1
        assert "No hotel slug" in result.output


class TestConfig:
    def test_set_then_show(self, runner, isolated_config):
        result = runner.invoke(main, ["config", "set", "hotel_slug", "acme"])
        assert result.exit_code == 0
        assert json.loads(isolated_config.read_text())["hotel_slug"] == "acme"

        result = runner.invoke(main, ["config", "show"])
        assert result.exit_code == 0
        assert "acme" in result.output

    def test_saved_slug_is_used_by_channels(self, runner):
        runner.invoke(main, ["config", "set", "hotel_slug", "acme"])
        result = runner.invoke(main, ["channels"])
        assert result.exit_code == 0
        assert "acme.booking" in result.output

    def test_unknown_key(self, runner, isolated_config):
        result = runner.invoke(main, ["config", "set", "colour", "blue"])
        assert result.exit_code == 1
        assert not isolated_config.exists()

    def test_invalid_value(self, runner):
        result = runner.invoke(main, ["config", "set", "ledger_capacity", "lots"])
        assert result.exit_code == 1


def test_replay_capture(runner, tmp_path):
    capture = tmp_path / "capture.jsonl"
    lines = [
        json.dumps({"channel": "acme.room-service", "eventName": "order_created",
                    "payload": {"id": 1, "status": "pending"}}),
        json.dumps({"channel": "acme.room-service", "eventName": "pusher:subscription_succeeded", "payload": {}}),
        "{not json",
        "",
        json.dumps({"data": {
            "type": "staff_chat_message",
            "conversation_id": "3",
            "message_data": json.dumps({"id": 10, "sender_id": 2, "message": "hi"}),
        }}),
    ]
    capture.write_text("\n".join(lines) + "\n")

    result = runner.invoke(main, ["replay", str(capture)])

    assert result.exit_code == 0
    assert "invalid JSON" in result.output
    assert "2 routed" in result.output
    assert "1 dropped" in result.output
    assert "1 pending" in result.output
    assert "2 notifications" in result.output
