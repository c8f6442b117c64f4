# castwatch/session.py
#
# One operator's dashboard: state, poller and upload orchestrator wired to
# a private asyncio loop running in a daemon thread.
#
# The Streamlit script re-runs on every interaction, so it cannot own a
# long-lived loop itself. It keeps a DashboardSession in session_state,
# reads snapshots from it, and hands coroutines to the loop thread.
#
# Streamlit gives no hook for a closed browser tab. The view calls touch()
# on every redraw instead, and a session nobody has touched for
# idle_timeout seconds shuts its loop down. A later start() picks up
# where it left off with the same state.

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any, Coroutine, Optional

from .alerts import AlertId
from .client import BackendClient
from .config import Settings, get_settings
from .polling import PollingCoordinator
from .state import DashboardState, LiveStatus, Snapshot
from .thresholds import ThresholdBand
from .upload import UploadOrchestrator, UploadStatus

logger = logging.getLogger(__name__)


class DashboardSession:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[BackendClient] = None,
        suppress_cycles: int = 0,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or BackendClient(
            base_url=self.settings.api_base_url,
            timeout=self.settings.request_timeout,
            long_timeout=self.settings.long_request_timeout,
        )
        self.state = DashboardState.from_settings(self.settings, suppress_cycles)
        self._wire()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._last_seen = time.monotonic()

    def _wire(self) -> None:
        # asyncio primitives bind to one loop, so each start gets fresh ones
        self.poller = PollingCoordinator(
            self.client,
            self.state,
            interval=self.settings.poll_seconds,
            predict_steps=self.settings.predict_steps,
        )
        self.uploads = UploadOrchestrator(
            self.client,
            refresh=self.poller.refresh,
            reset_delay=self.settings.status_delay_seconds,
        )

    # -------------------------------------------------
    # Lifecycle
    # -------------------------------------------------

    @property
    def started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.started:
            return

        self._wire()
        self.touch()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="castwatch-poller", daemon=True
        )
        self._thread.start()
        self.submit(self._start_polling()).result()
        logger.info("Dashboard session started against %s", self.settings.api_base_url)

    def _run_loop(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()

    async def _start_polling(self) -> None:
        self.poller.start()
        if self.settings.idle_timeout > 0:
            self._watchdog = asyncio.create_task(self._stop_when_idle())

    def touch(self) -> None:
        """Mark the session as watched."""
        self._last_seen = time.monotonic()

    async def _stop_when_idle(self) -> None:
        timeout = self.settings.idle_timeout
        while time.monotonic() - self._last_seen < timeout:
            await asyncio.sleep(timeout / 4)

        logger.info("No redraw for %.0f s, stopping dashboard session", timeout)
        await self._shutdown()
        asyncio.get_running_loop().stop()

    def stop(self, timeout: float = 5.0) -> None:
        if not self.started:
            return

        self.submit(self._shutdown()).result(timeout)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._loop = None
        self._thread = None
        logger.info("Dashboard session stopped")

    async def _shutdown(self) -> None:
        await self.poller.stop()
        # pending status resets and in-flight refreshes
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Schedule a coroutine on the session loop from any thread."""
        if self._loop is None or self._loop.is_closed():
            coro.close()
            raise RuntimeError("dashboard session is not started")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    # -------------------------------------------------
    # Actions that hit the backend
    # -------------------------------------------------

    def refresh(self) -> concurrent.futures.Future:
        return self.submit(self.poller.refresh())

    def train(self) -> concurrent.futures.Future:
        return self.submit(self.uploads.train())

    def upload(
        self, filename: Optional[str], content: Optional[bytes], auto_train: bool = True
    ) -> concurrent.futures.Future:
        return self.submit(self.uploads.upload(filename, content, auto_train))

    # -------------------------------------------------
    # Local operator actions and reads
    # -------------------------------------------------

    def select_machine(self, machine: str) -> None:
        self.state.select_machine(machine)

    def select_parameter(self, parameter: str) -> None:
        self.state.select_parameter(parameter)

    def set_bound(self, parameter: str, kind: str, value: Any) -> ThresholdBand:
        return self.state.set_bound(parameter, kind, value)

    def dismiss_alert(self, alert_id: AlertId) -> bool:
        return self.state.dismiss_alert(alert_id)

    def band(self, parameter: str) -> ThresholdBand:
        return self.state.band(parameter)

    def snapshot(self) -> Snapshot:
        return self.state.snapshot()

    def live_status(self) -> LiveStatus:
        return self.state.live_status()

    def upload_status(self) -> UploadStatus:
        return self.uploads.snapshot()
