# castwatch/upload.py
#
# Upload -> (backend auto-train) -> refresh, with a status line and a
# progress bar for the view.
#
#   IDLE -> UPLOADING -> TRAINING_TRIGGERED | FAILED -> IDLE
#
# The progress value is cosmetic: it creeps up while the request is in
# flight, stops short of 100 and jumps to 100 when the answer arrives.

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional

from .client import BackendClient
from .config import STATUS_DELAY_SECONDS, UPLOAD_EXTENSIONS
from .errors import TrainFailure, UploadFailure, ValidationFailure

logger = logging.getLogger(__name__)


class UploadPhase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    TRAINING_TRIGGERED = "training_triggered"
    FAILED = "failed"


@dataclass
class UploadStatus:
    phase: UploadPhase = UploadPhase.IDLE
    progress: int = 0
    message: str = ""
    filename: Optional[str] = None
    training: bool = False


def validate_upload(filename: Optional[str], content: Optional[bytes]) -> None:
    if not filename:
        raise ValidationFailure("Please select a file first")

    extension = os.path.splitext(filename)[1].lower()
    if extension not in UPLOAD_EXTENSIONS:
        raise ValidationFailure(
            "Please select a valid data file (" + ", ".join(UPLOAD_EXTENSIONS) + ")"
        )
    if not content:
        raise ValidationFailure(f"{filename} is empty")


class UploadOrchestrator:
    def __init__(
        self,
        client: BackendClient,
        refresh: Callable[[], Awaitable[bool]],
        reset_delay: float = STATUS_DELAY_SECONDS,
        progress_interval: float = 0.2,
        progress_step: int = 10,
        progress_cap: int = 90,
    ) -> None:
        self._client = client
        self._refresh = refresh
        self.reset_delay = reset_delay
        self.progress_interval = progress_interval
        self.progress_step = progress_step
        self.progress_cap = progress_cap

        self._status = UploadStatus()
        self._status_lock = threading.Lock()
        self._reset_task: Optional[asyncio.Task] = None
        self._in_flight = False

    # -------------------------------------------------
    # Status
    # -------------------------------------------------

    def snapshot(self) -> UploadStatus:
        with self._status_lock:
            return replace(self._status)

    def _set(self, **changes) -> None:
        with self._status_lock:
            self._status = replace(self._status, **changes)

    @property
    def busy(self) -> bool:
        with self._status_lock:
            return self._in_flight

    def _claim(self) -> bool:
        with self._status_lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def _release(self) -> None:
        with self._status_lock:
            self._in_flight = False

    async def _refresh_quietly(self) -> None:
        try:
            await self._refresh()
        except Exception as exc:
            logger.error("Refresh after upload/train failed", exc_info=exc)

    # -------------------------------------------------
    # Upload
    # -------------------------------------------------

    async def upload(
        self, filename: Optional[str], content: Optional[bytes], auto_train: bool = True
    ) -> UploadStatus:
        # held through the refresh so a second request cannot start mid-way
        if not self._claim():
            logger.info("Upload of %s ignored, another request is in flight", filename)
            return self.snapshot()

        try:
            try:
                validate_upload(filename, content)
            except ValidationFailure as exc:
                logger.info("Rejected upload: %s", exc.message)
                self._set(phase=UploadPhase.IDLE, progress=0, message=exc.message, filename=None)
                return self.snapshot()
            status = await self._send(filename, content, auto_train)
        finally:
            self._release()
        self._schedule_reset()
        return status

    async def _send(self, filename: str, content: bytes, auto_train: bool) -> UploadStatus:
        self._cancel_reset()
        self._set(
            phase=UploadPhase.UPLOADING,
            progress=0,
            message="Uploading file...",
            filename=filename,
        )

        ticker = asyncio.create_task(self._tick_progress())
        try:
            result = await asyncio.to_thread(self._client.upload, filename, content, auto_train)
        except UploadFailure as exc:
            logger.warning("Upload of %s failed: %s", filename, exc.message)
            self._set(
                phase=UploadPhase.FAILED,
                progress=100,
                message=exc.backend_message or "Upload failed",
            )
            return self.snapshot()
        except Exception as exc:
            logger.error("Upload of %s failed unexpectedly", filename, exc_info=exc)
            self._set(phase=UploadPhase.FAILED, progress=100, message="Upload failed")
            return self.snapshot()
        finally:
            ticker.cancel()

        self._set(
            phase=UploadPhase.TRAINING_TRIGGERED,
            progress=100,
            message=result.summary(),
        )
        status = self.snapshot()
        await self._refresh_quietly()
        return status

    async def _tick_progress(self) -> None:
        while True:
            await asyncio.sleep(self.progress_interval)
            with self._status_lock:
                if self._status.phase != UploadPhase.UPLOADING:
                    return
                self._status.progress = min(
                    self._status.progress + self.progress_step, self.progress_cap
                )

    # -------------------------------------------------
    # Train
    # -------------------------------------------------

    async def train(self) -> bool:
        if not self._claim():
            logger.info("Train request ignored, another request is in flight")
            return False

        try:
            trained = await self._train()
        finally:
            self._release()
        self._schedule_reset()
        return trained

    async def _train(self) -> bool:
        self._cancel_reset()
        self._set(training=True, message="Training model...")
        try:
            await asyncio.to_thread(self._client.train)
        except TrainFailure as exc:
            logger.warning("Training failed: %s", exc.message)
            if exc.backend_message:
                message = f"Training failed: {exc.backend_message}"
            else:
                message = "Failed to train model. Check logs for details."
            self._set(training=False, message=message)
            return False
        except Exception as exc:
            logger.error("Training failed unexpectedly", exc_info=exc)
            self._set(training=False, message="Failed to train model. Check logs for details.")
            return False

        self._set(training=False, message="Model trained successfully!")
        await self._refresh_quietly()
        return True

    # -------------------------------------------------
    # Back to idle
    # -------------------------------------------------

    def _schedule_reset(self) -> None:
        self._cancel_reset()
        self._reset_task = asyncio.create_task(self._reset_after_delay())

    def _cancel_reset(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    async def _reset_after_delay(self) -> None:
        await asyncio.sleep(self.reset_delay)
        self._set(phase=UploadPhase.IDLE, progress=0, message="", filename=None)
