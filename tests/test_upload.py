"""Upload / train state machine."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from castwatch.errors import TrainFailure, UploadFailure, ValidationFailure
from castwatch.models import UploadResult
from castwatch.upload import UploadOrchestrator, UploadPhase, validate_upload

RESET_DELAY = 0.05


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def client() -> MagicMock:
    c = MagicMock()
    c.upload.return_value = UploadResult(message="File uploaded successfully")
    c.train.return_value = "trained"
    return c


@pytest.fixture
def refresh() -> AsyncMock:
    return AsyncMock(return_value=True)


@pytest.fixture
def orchestrator(client, refresh) -> UploadOrchestrator:
    return UploadOrchestrator(
        client,
        refresh=refresh,
        reset_delay=RESET_DELAY,
        progress_interval=0.01,
    )


# =============================================================================
# VALIDATION
# =============================================================================


@pytest.mark.parametrize("name", ["data.xlsx", "data.xls", "data.csv", "DATA.CSV"])
def test_accepted_extensions(name):
    validate_upload(name, b"payload")


@pytest.mark.parametrize("name", ["data.txt", "data", "data.xlsx.zip", "report.pdf"])
def test_rejected_extensions(name):
    with pytest.raises(ValidationFailure):
        validate_upload(name, b"payload")


def test_empty_file_is_rejected():
    with pytest.raises(ValidationFailure):
        validate_upload("data.csv", b"")


@pytest.mark.asyncio
async def test_txt_file_never_reaches_backend(orchestrator, client, refresh):
    status = await orchestrator.upload("data.txt", b"hello")

    client.upload.assert_not_called()
    refresh.assert_not_awaited()
    assert status.phase == UploadPhase.IDLE
    assert status.filename is None
    assert ".xlsx" in status.message


@pytest.mark.asyncio
async def test_missing_file_asks_for_one(orchestrator, client):
    status = await orchestrator.upload(None, None)
    client.upload.assert_not_called()
    assert status.message == "Please select a file first"


# =============================================================================
# UPLOAD
# =============================================================================


@pytest.mark.asyncio
async def test_successful_upload_refreshes_and_returns_to_idle(orchestrator, client, refresh):
    client.upload.return_value = UploadResult(
        message="File uploaded successfully", auto_train_message="Model retrained"
    )

    status = await orchestrator.upload("line3.xlsx", b"bytes", auto_train=True)

    client.upload.assert_called_once_with("line3.xlsx", b"bytes", True)
    refresh.assert_awaited_once()
    assert status.phase == UploadPhase.TRAINING_TRIGGERED
    assert status.progress == 100
    assert status.message == "File uploaded successfully - Model retrained"
    assert status.filename == "line3.xlsx"

    await asyncio.sleep(RESET_DELAY * 4)
    idle = orchestrator.snapshot()
    assert idle.phase == UploadPhase.IDLE
    assert idle.progress == 0
    assert idle.message == ""
    assert idle.filename is None


@pytest.mark.asyncio
async def test_backend_rejection_reports_backend_message(orchestrator, client, refresh):
    client.upload.side_effect = UploadFailure("Missing columns", backend_message="Missing columns")

    status = await orchestrator.upload("line3.csv", b"a,b\n")

    refresh.assert_not_awaited()
    assert status.phase == UploadPhase.FAILED
    assert status.message == "Missing columns"

    await asyncio.sleep(RESET_DELAY * 4)
    assert orchestrator.snapshot().phase == UploadPhase.IDLE


@pytest.mark.asyncio
async def test_transport_failure_reports_generic_message(orchestrator, client):
    client.upload.side_effect = UploadFailure("Connection refused")

    status = await orchestrator.upload("line3.csv", b"a,b\n")

    assert status.phase == UploadPhase.FAILED
    assert status.message == "Upload failed"


@pytest.mark.asyncio
async def test_progress_creeps_up_but_stays_below_complete(orchestrator, client):
    def slow_upload(*_args):
        time.sleep(0.3)
        return UploadResult(message="ok")

    client.upload.side_effect = slow_upload

    task = asyncio.create_task(orchestrator.upload("line3.csv", b"a,b\n"))
    await asyncio.sleep(0.15)

    mid = orchestrator.snapshot()
    assert mid.phase == UploadPhase.UPLOADING
    assert 0 < mid.progress <= 90

    status = await task
    assert status.progress == 100


@pytest.mark.asyncio
async def test_second_upload_is_ignored_while_busy(orchestrator, client):
    def slow_upload(*_args):
        time.sleep(0.2)
        return UploadResult(message="ok")

    client.upload.side_effect = slow_upload

    first = asyncio.create_task(orchestrator.upload("a.csv", b"1"))
    await asyncio.sleep(0.05)
    await orchestrator.upload("b.csv", b"2")
    await first

    assert client.upload.call_count == 1


@pytest.mark.asyncio
async def test_upload_during_post_upload_refresh_is_ignored(client):
    refreshing = asyncio.Event()
    release = asyncio.Event()

    async def slow_refresh():
        refreshing.set()
        await release.wait()
        return True

    orchestrator = UploadOrchestrator(
        client, refresh=slow_refresh, reset_delay=RESET_DELAY, progress_interval=0.01
    )

    first = asyncio.create_task(orchestrator.upload("a.csv", b"1"))
    await refreshing.wait()

    assert orchestrator.busy is True
    ignored = await orchestrator.upload("b.csv", b"2")
    assert ignored.filename == "a.csv"
    assert await orchestrator.train() is False

    release.set()
    status = await first

    assert status.phase == UploadPhase.TRAINING_TRIGGERED
    assert status.filename == "a.csv"
    assert client.upload.call_count == 1
    client.train.assert_not_called()
    assert orchestrator.busy is False


@pytest.mark.asyncio
async def test_unexpected_upload_error_fails_and_recovers(orchestrator, client, refresh):
    client.upload.side_effect = RuntimeError("boom")

    status = await orchestrator.upload("line3.csv", b"a,b\n")

    refresh.assert_not_awaited()
    assert status.phase == UploadPhase.FAILED
    assert status.message == "Upload failed"
    assert orchestrator.busy is False

    await asyncio.sleep(RESET_DELAY * 4)
    assert orchestrator.snapshot().phase == UploadPhase.IDLE

    client.upload.side_effect = None
    status = await orchestrator.upload("line3.csv", b"a,b\n")
    assert status.phase == UploadPhase.TRAINING_TRIGGERED
    assert client.upload.call_count == 2


@pytest.mark.asyncio
async def test_failing_refresh_still_returns_to_idle(orchestrator, client, refresh):
    refresh.side_effect = TypeError("bad payload")

    status = await orchestrator.upload("line3.csv", b"a,b\n")

    assert status.phase == UploadPhase.TRAINING_TRIGGERED
    assert orchestrator.busy is False
    await asyncio.sleep(RESET_DELAY * 4)
    assert orchestrator.snapshot().phase == UploadPhase.IDLE


    assert client.upload.call_count == 1


# =============================================================================
# TRAIN
# =============================================================================


@pytest.mark.asyncio
async def test_train_success_refreshes(orchestrator, refresh):
    assert await orchestrator.train() is True

    refresh.assert_awaited_once()
    status = orchestrator.snapshot()
    assert status.message == "Model trained successfully!"
    assert status.training is False


@pytest.mark.asyncio
async def test_train_backend_failure_message(orchestrator, client, refresh):
    client.train.side_effect = TrainFailure("Not enough rows", backend_message="Not enough rows")

    assert await orchestrator.train() is False

    refresh.assert_not_awaited()
    assert orchestrator.snapshot().message == "Training failed: Not enough rows"


@pytest.mark.asyncio
async def test_train_transport_failure_message(orchestrator, client):
    client.train.side_effect = TrainFailure("refused")

    await orchestrator.train()

    assert orchestrator.snapshot().message == "Failed to train model. Check logs for details."
    await asyncio.sleep(RESET_DELAY * 4)
    assert orchestrator.snapshot().message == ""


@pytest.mark.asyncio
async def test_train_unexpected_error_does_not_wedge(orchestrator, client):
    client.train.side_effect = RuntimeError("boom")

    assert await orchestrator.train() is False

    assert orchestrator.snapshot().message == "Failed to train model. Check logs for details."
    assert orchestrator.snapshot().training is False
    assert orchestrator.busy is False

    client.train.side_effect = None
    assert await orchestrator.train() is True


@pytest.mark.asyncio
async def test_train_with_failing_refresh_still_resets(orchestrator, refresh):
    refresh.side_effect = TypeError("bad payload")

    assert await orchestrator.train() is True

    await asyncio.sleep(RESET_DELAY * 4)
    assert orchestrator.snapshot().message == ""
