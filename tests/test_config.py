import json

import pytest

from hotelmate_realtime.config import Settings, load_settings, save_settings


def test_defaults(tmp_path):
    settings = load_settings(path=tmp_path / "missing.json", env={})
    assert settings == Settings()
    assert settings.ledger_capacity == 1000
    assert settings.hotel_slug is None


def test_precedence(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"hotel_slug": "file", "staff_id": "1", "guest_page_size": 10}))
    env = {"HOTELMATE_HOTEL_SLUG": "env", "HOTELMATE_STAFF_ID": "2"}

    settings = load_settings(path=path, env=env, staff_id="3", hotel_slug=None)

    assert settings.hotel_slug == "env"
    assert settings.staff_id == "3"
    assert settings.guest_page_size == 10


def test_unknown_file_keys_are_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"hotel_slug": "acme", "theme": "dark"}))
    assert load_settings(path=path, env={}).hotel_slug == "acme"


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_unreadable_file_falls_back_to_defaults(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    assert load_settings(path=path, env={}) == Settings()


def test_invalid_value_raises(tmp_path):
    with pytest.raises(ValueError):
        load_settings(path=tmp_path / "none.json", env={"HOTELMATE_LEDGER_CAPACITY": "lots"})


def test_save_round_trip(tmp_path):
    path = tmp_path / "nested" / "config.json"
    save_settings(Settings(hotel_slug="acme", attendance_window_s=2.5), path)
    assert "auth_token" not in json.loads(path.read_text())
    loaded = load_settings(path=path, env={})
    assert loaded.hotel_slug == "acme"
    assert loaded.attendance_window_s == 2.5
