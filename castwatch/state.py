# castwatch/state.py
#
# Everything one dashboard session knows, behind one lock.
#
# The poller writes from the event-loop thread and the Streamlit script
# reads and applies operator actions from its own thread, so every public
# method takes the lock. Snapshots hand out copies.

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .alerts import AlertId, AlertLedger, is_in_violation, latest_reading, status_alert
from .config import Settings
from .models import Alert, HealthStatus, PredictionBatch, Reading
from .selection import SelectionState
from .thresholds import ThresholdBand, ThresholdStore


@dataclass
class LiveStatus:
    machine: str
    parameter: str
    band: ThresholdBand
    time: Optional[str]
    value: Optional[float]
    in_violation: bool
    alert: Optional[Alert]


@dataclass
class Snapshot:
    connected: bool
    machines: List[str]
    feature_columns: List[str]
    readings: List[Reading]
    alerts: List[Alert]
    metrics: Dict[str, Dict[str, Any]]
    current_data: Dict[str, Dict[str, Any]]
    source_errors: Dict[str, str]
    last_cycle_at: Optional[datetime]
    selected_machine: str
    selected_parameter: str

    def metrics_for(self, machine: str) -> Optional[Dict[str, Any]]:
        return self.metrics.get(machine)


@dataclass
class DashboardState:
    thresholds: ThresholdStore = field(default_factory=ThresholdStore)
    selection: SelectionState = field(default_factory=SelectionState)
    ledger: AlertLedger = field(default_factory=AlertLedger)

    connected: bool = False
    machines: List[str] = field(default_factory=list)
    feature_columns: List[str] = field(default_factory=list)
    readings: List[Reading] = field(default_factory=list)
    metrics: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    current_data: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    source_errors: Dict[str, str] = field(default_factory=dict)
    last_cycle_at: Optional[datetime] = None

    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, suppress_cycles: int = 0) -> "DashboardState":
        return cls(
            thresholds=ThresholdStore(settings.default_bands),
            selection=SelectionState(
                selected_machine=settings.default_machine,
                selected_parameter=settings.default_parameter,
            ),
            ledger=AlertLedger(suppress_cycles=suppress_cycles),
        )

    # -------------------------------------------------
    # Writes from the poller
    # -------------------------------------------------

    def mark_disconnected(self) -> None:
        with self.lock:
            self.connected = False

    def apply_health(self, health: HealthStatus) -> None:
        with self.lock:
            self.connected = health.connected
            if health.feature_columns:
                self.feature_columns = list(health.feature_columns)
                self.reconcile()

    def apply_machines(self, machines: List[str]) -> None:
        with self.lock:
            self.machines = list(machines)
            self.source_errors.pop("machines", None)

    def apply_predictions(self, batch: PredictionBatch) -> None:
        with self.lock:
            self.readings = list(batch.readings)
            if batch.feature_columns:
                self.feature_columns = list(batch.feature_columns)
            self.source_errors.pop("predictions", None)

    def apply_alerts(self, alerts: List[Alert]) -> None:
        with self.lock:
            self.ledger.replace_all(alerts)
            self.source_errors.pop("alerts", None)

    def apply_metrics(self, metrics: Dict[str, Dict[str, Any]]) -> None:
        with self.lock:
            self.metrics = dict(metrics)
            self.source_errors.pop("metrics", None)

    def apply_current_data(self, current: Dict[str, Dict[str, Any]]) -> None:
        with self.lock:
            self.current_data = dict(current)
            self.source_errors.pop("current_data", None)

    def record_source_error(self, source: str, message: str) -> None:
        with self.lock:
            self.source_errors[source] = message

    def reconcile(self) -> bool:
        with self.lock:
            return self.selection.reconcile(self.machines, self.feature_columns)

    def finish_cycle(self) -> None:
        with self.lock:
            self.last_cycle_at = datetime.now(timezone.utc)

    # -------------------------------------------------
    # Operator actions
    # -------------------------------------------------

    def select_machine(self, machine: str) -> None:
        with self.lock:
            self.selection.select_machine(machine)

    def select_parameter(self, parameter: str) -> None:
        with self.lock:
            self.selection.select_parameter(parameter)

    def set_bound(self, parameter: str, kind: str, value: Any) -> ThresholdBand:
        with self.lock:
            return self.thresholds.set_bound(parameter, kind, value)

    def dismiss_alert(self, alert_id: AlertId) -> bool:
        with self.lock:
            return self.ledger.dismiss(alert_id)

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    def band(self, parameter: str) -> ThresholdBand:
        with self.lock:
            return self.thresholds.get_band(parameter)

    def live_status(self) -> LiveStatus:
        with self.lock:
            machine = self.selection.selected_machine
            parameter = self.selection.selected_parameter
            band = self.thresholds.get_band(parameter)
            reading = latest_reading(self.readings)

        return LiveStatus(
            machine=machine,
            parameter=parameter,
            band=band,
            time=reading.time if reading else None,
            value=reading.value(parameter) if reading else None,
            in_violation=is_in_violation(reading, parameter, band),
            alert=status_alert(reading, machine, parameter, band),
        )

    def snapshot(self) -> Snapshot:
        with self.lock:
            return Snapshot(
                connected=self.connected,
                machines=list(self.machines),
                feature_columns=list(self.feature_columns),
                readings=list(self.readings),
                alerts=self.ledger.list(),
                metrics=dict(self.metrics),
                current_data=dict(self.current_data),
                source_errors=dict(self.source_errors),
                last_cycle_at=self.last_cycle_at,
                selected_machine=self.selection.selected_machine,
                selected_parameter=self.selection.selected_parameter,
            )
