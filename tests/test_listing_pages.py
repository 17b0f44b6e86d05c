import importlib
import sys
from datetime import date, time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure project root on path
sys.path.append(str(Path(__file__).resolve().parents[1]))

from halo.events import DataIntegrityError, Event, Visibility
from halo.listing import DEFAULT_DAYS_AFTER, DEFAULT_DAYS_BEFORE
from halo.time_utils import days_to, today


def _setup_app(tmp_path, monkeypatch, tz="UTC"):
    monkeypatch.setenv("HALO_DB", str(tmp_path / "test.db"))
    monkeypatch.setenv("HALO_TZ", tz)
    monkeypatch.setenv("HALO_TOP", "Office hours")
    if "halo.app" in sys.modules:
        del sys.modules["halo.app"]
    app_module = importlib.import_module("halo.app")
    app_module.user_store.create("alice", "alice-pw")
    app_module.user_store.create("bob", "bob-pw")
    return app_module


def _login(app_module, login):
    client = TestClient(app_module.app)
    client.get("/login", auth=(login, f"{login}-pw"), follow_redirects=False)
    return client


def _add(app_module, description, group, public, start_date=date(2024, 1, 1), repeat_weeks=1):
    return app_module.event_store.create(
        Event(
            owner="alice",
            start_date=start_date,
            start_time=time(9, 0),
            repeat_weeks=repeat_weeks,
            description=description,
            link=f"https://example.com/{description}",
            show_to_group=int(group),
            show_to_all=int(public),
        )
    )


WINDOW = {"from": "2024-01-01", "until": "2024-01-10"}


def test_feed_per_viewer(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    _add(app_module, "standup", Visibility.BUSY, Visibility.HIDE)

    anonymous = TestClient(app_module.app).get("/list", params=WINDOW).json()
    assert anonymous == []

    member = _login(app_module, "bob").get("/list", params=WINDOW).json()
    assert [(o["startDateTime"], o["description"], o["link"]) for o in member] == [
        ("2024-01-01T09:00:00Z", "busy", ""),
        ("2024-01-08T09:00:00Z", "busy", ""),
    ]

    owner = _login(app_module, "alice").get("/list", params=WINDOW).json()
    assert [(o["description"], o["link"]) for o in owner] == [
        ("standup", "https://example.com/standup"),
        ("standup", "https://example.com/standup"),
    ]


def test_feed_fields(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch, tz="America/New_York")
    ev = _add(app_module, "lunch", Visibility.SHOW, Visibility.SHOW, repeat_weeks=0)

    (occ,) = TestClient(app_module.app).get("/list", params=WINDOW).json()
    assert occ == {
        "id": ev.id,
        "owner": "alice",
        "startDateTime": "2024-01-01T14:00:00Z",
        "repeatWeeks": 0,
        "description": "lunch",
        "link": "https://example.com/lunch",
        "showToGroup": 2,
        "showToAll": 2,
        "daysTo": days_to(today(), date(2024, 1, 1)),
    }


def test_feed_is_one_timeline(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    _add(app_module, "a", Visibility.SHOW, Visibility.SHOW, start_date=date(2024, 1, 1))
    _add(app_module, "b", Visibility.SHOW, Visibility.SHOW, start_date=date(2024, 1, 5), repeat_weeks=0)

    feed = TestClient(app_module.app).get("/list", params=WINDOW).json()
    assert [o["description"] for o in feed] == ["a", "b", "a"]


def test_default_window(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    now = today()
    _add(app_module, "today", Visibility.SHOW, Visibility.SHOW, start_date=now, repeat_weeks=0)

    feed = TestClient(app_module.app).get("/list").json()
    assert [o["description"] for o in feed] == ["today"]
    assert feed[0]["daysTo"] == 0

    page = TestClient(app_module.app).get("/")
    assert page.status_code == 200
    assert DEFAULT_DAYS_BEFORE == 1 and DEFAULT_DAYS_AFTER == 3
    assert now.isoformat() in page.text


def test_invalid_window_is_rejected(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    resp = TestClient(app_module.app).get("/list", params={"from": "last week"})
    assert resp.status_code == 422


def test_listing_page(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    _add(app_module, "standup", Visibility.BUSY, Visibility.HIDE)
    _add(app_module, "talk", Visibility.SHOW, Visibility.SHOW, repeat_weeks=0)

    page = TestClient(app_module.app).get("/", params=WINDOW)
    assert page.status_code == 200
    assert "Office hours" in page.text
    assert "Log in" in page.text
    assert "talk" in page.text
    assert "standup" not in page.text
    assert 'value="2024-01-01"' in page.text
    assert 'value="2024-01-10"' in page.text

    client = _login(app_module, "alice")
    page = client.get("/", params=WINDOW)
    assert "standup" in page.text
    assert "editevent?csrf=" in page.text
    assert "Monday, January 1, 2024 09:00:00" in page.text


def test_corrupt_row_aborts_request(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    ev = _add(app_module, "broken", Visibility.SHOW, Visibility.SHOW)
    ev.show_to_group = 9
    app_module.event_store.update(ev.id, ev)

    with pytest.raises(DataIntegrityError):
        TestClient(app_module.app).get("/list", params=WINDOW)
    client = TestClient(app_module.app, raise_server_exceptions=False)
    assert client.get("/list", params=WINDOW).status_code == 500


def test_long_series_is_listed(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    _add(app_module, "forever", Visibility.SHOW, Visibility.SHOW, repeat_weeks=600000)

    resp = TestClient(app_module.app).get("/list", params=WINDOW)
    assert resp.status_code == 200
    assert [o["startDateTime"] for o in resp.json()] == [
        "2024-01-01T09:00:00Z",
        "2024-01-08T09:00:00Z",
    ]
    assert TestClient(app_module.app).get("/", params=WINDOW).status_code == 200


def test_window_reaching_the_ends_of_the_calendar(tmp_path, monkeypatch):
    app_module = _setup_app(tmp_path, monkeypatch)
    _add(app_module, "first", Visibility.SHOW, Visibility.SHOW, start_date=date(1, 1, 1), repeat_weeks=0)
    _add(app_module, "last", Visibility.SHOW, Visibility.SHOW, start_date=date(9999, 12, 31), repeat_weeks=0)
    client = TestClient(app_module.app)

    resp = client.get("/list", params={"from": "0001-01-01", "until": "0001-01-10"})
    assert resp.status_code == 200
    assert [o["description"] for o in resp.json()] == ["first"]

    resp = client.get("/list", params={"from": "9999-12-20", "until": "9999-12-31"})
    assert resp.status_code == 200
    assert [o["startDateTime"] for o in resp.json()] == ["9999-12-31T09:00:00Z"]

    resp = client.get("/list", params={"from": "0001-01-01", "until": "9999-12-31"})
    assert resp.status_code == 200
    assert [o["description"] for o in resp.json()] == ["first", "last"]
    assert client.get("/", params={"from": "0001-01-01", "until": "9999-12-31"}).status_code == 200
