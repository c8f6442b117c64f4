"""End-to-end: a session polling a fake backend from its own loop thread."""

import time
from unittest.mock import MagicMock

import pytest

from castwatch.config import Settings
from castwatch.models import Alert, HealthStatus, PredictionBatch, Reading
from castwatch.session import DashboardSession
from castwatch.upload import UploadPhase


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def client() -> MagicMock:
    c = MagicMock()
    c.check_health.return_value = HealthStatus(connected=True)
    c.fetch_machines.return_value = ["M1", "M2"]
    c.fetch_predictions.return_value = PredictionBatch(
        readings=[Reading(time="10:00", values={"metal_temperature": 760.0})],
        feature_columns=["metal_temperature"],
    )
    c.fetch_alerts.return_value = [Alert(id="a1", machine="M1")]
    c.fetch_metrics.return_value = {}
    c.fetch_current_data.return_value = {}
    return c


@pytest.fixture
def session(client):
    s = DashboardSession(
        settings=Settings(
            poll_seconds=60.0,
            status_delay_seconds=0.05,
            default_machine="M3",
            default_parameter="tilting_speed",
        ),
        client=client,
    )
    s.start()
    yield s
    s.stop()


def test_first_cycle_runs_on_start_and_reconciles(session):
    assert _wait_for(lambda: session.snapshot().connected)
    assert _wait_for(lambda: session.snapshot().machines == ["M1", "M2"])

    snap = session.snapshot()
    assert (snap.selected_machine, snap.selected_parameter) == ("M1", "metal_temperature")
    assert session.live_status().in_violation is True


def test_manual_refresh_runs_another_cycle(session, client):
    assert _wait_for(lambda: client.fetch_alerts.call_count >= 1)
    calls = client.fetch_alerts.call_count

    assert session.refresh().result(timeout=3) is True
    assert client.fetch_alerts.call_count == calls + 1


def test_dismissed_alert_comes_back_after_refresh(session):
    assert _wait_for(lambda: len(session.snapshot().alerts) == 1)

    assert session.dismiss_alert("a1") is True
    assert session.snapshot().alerts == []

    session.refresh().result(timeout=3)
    assert [a.id for a in session.snapshot().alerts] == ["a1"]


def test_invalid_upload_is_rejected_without_network(session, client):
    status = session.upload("data.txt", b"x").result(timeout=3)

    assert status.phase == UploadPhase.IDLE
    client.upload.assert_not_called()


def test_submit_after_stop_raises(client):
    s = DashboardSession(settings=Settings(poll_seconds=60.0), client=client)
    s.start()
    s.stop()

    assert not s.started
    with pytest.raises(RuntimeError):
        s.refresh()


def test_untouched_session_winds_down_and_can_restart(client):
    s = DashboardSession(settings=Settings(poll_seconds=60.0, idle_timeout=0.5), client=client)
    s.start()
    s.set_bound("metal_temperature", "upper", "800")

    assert _wait_for(lambda: not s.started)
    with pytest.raises(RuntimeError):
        s.refresh()

    calls = client.check_health.call_count
    s.start()
    try:
        assert _wait_for(lambda: client.check_health.call_count > calls)
        assert s.band("metal_temperature").upper == 800
        s.touch()
        assert s.refresh().result(timeout=3) is True
    finally:
        s.stop()


def test_touched_session_keeps_polling(client):
    s = DashboardSession(settings=Settings(poll_seconds=60.0, idle_timeout=0.2), client=client)
    s.start()
    try:
        deadline = time.monotonic() + 0.6
        while time.monotonic() < deadline:
            s.touch()
            time.sleep(0.02)
        assert s.started
    finally:
        s.stop()
