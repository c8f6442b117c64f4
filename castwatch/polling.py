# castwatch/polling.py
#
# Periodic refresh of everything the dashboard shows.
#
# One cycle = health probe, then every data source fetched concurrently.
# A source that fails keeps its previous value; a failed probe skips the
# cycle and leaves all data as it was. The timer and the on-demand path
# share run_cycle(), and a lock keeps two cycles from interleaving.

import asyncio
import logging
from typing import Callable, Dict, Optional

from .client import BackendClient
from .config import POLL_SECONDS, PREDICT_STEPS
from .errors import ConnectivityFailure, FetchFailure
from .state import DashboardState

logger = logging.getLogger(__name__)

SOURCES = ("machines", "predictions", "alerts", "metrics", "current_data")


class PollingCoordinator:
    def __init__(
        self,
        client: BackendClient,
        state: DashboardState,
        interval: float = POLL_SECONDS,
        predict_steps: int = PREDICT_STEPS,
    ) -> None:
        self._client = client
        self._state = state
        self.interval = interval
        self.predict_steps = predict_steps

        self._cycle_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------
    # One cycle
    # -------------------------------------------------

    async def run_cycle(self) -> bool:
        """
        Run one full refresh. Returns False if the backend was unreachable
        or the coordinator was stopped before results could be applied.
        """
        async with self._cycle_lock:
            try:
                health = await asyncio.to_thread(self._client.check_health)
            except ConnectivityFailure as exc:
                logger.warning("Backend unreachable, keeping last data: %s", exc)
                if not self._stopped:
                    self._state.mark_disconnected()
                return False
            except Exception as exc:
                logger.error("Health probe failed unexpectedly", exc_info=exc)
                if not self._stopped:
                    self._state.mark_disconnected()
                return False

            if self._stopped:
                return False
            self._state.apply_health(health)

            results = await asyncio.gather(
                asyncio.to_thread(self._client.fetch_machines),
                asyncio.to_thread(self._client.fetch_predictions, self.predict_steps),
                asyncio.to_thread(self._client.fetch_alerts),
                asyncio.to_thread(self._client.fetch_metrics),
                asyncio.to_thread(self._client.fetch_current_data),
                return_exceptions=True,
            )

            if self._stopped:
                logger.debug("Coordinator stopped mid-cycle, dropping results")
                return False

            self._apply(dict(zip(SOURCES, results)))
            return True

    def _apply(self, results: Dict[str, object]) -> None:
        appliers: Dict[str, Callable] = {
            "machines": self._state.apply_machines,
            "predictions": self._state.apply_predictions,
            "alerts": self._state.apply_alerts,
            "metrics": self._state.apply_metrics,
            "current_data": self._state.apply_current_data,
        }
        failed = []

        with self._state.lock:
            for source, result in results.items():
                if isinstance(result, BaseException):
                    self._record_failure(source, result)
                    failed.append(source)
                    continue
                appliers[source](result)

            if "machines" not in failed or "predictions" not in failed:
                self._state.reconcile()
            self._state.finish_cycle()

        if failed:
            logger.info("Poll cycle finished, failed sources: %s", ", ".join(failed))
        else:
            logger.info("Poll cycle finished, all sources refreshed")

    def _record_failure(self, source: str, exc: BaseException) -> None:
        if isinstance(exc, FetchFailure):
            logger.warning("Fetch failed for %s: %s", source, exc.reason)
            message = exc.reason
        else:
            logger.error("Unexpected error fetching %s", source, exc_info=exc)
            message = f"{type(exc).__name__}: {exc}"
        self._state.record_source_error(source, message)

    # -------------------------------------------------
    # Scheduling
    # -------------------------------------------------

    async def refresh(self) -> bool:
        """On-demand cycle for manual refresh, post-upload and post-train."""
        return await self.run_cycle()

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Poll cycle crashed, retrying next tick")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        """Start the periodic task on the running loop (no-op if already running)."""
        if not self.running:
            self._stopped = False
            self._task = asyncio.create_task(self.run_forever())
            logger.info("Polling every %.0f s", self.interval)
        return self._task

    async def stop(self) -> None:
        self._stopped = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Polling stopped")
