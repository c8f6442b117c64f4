# castwatch/alerts.py
#
# Threshold evaluation and the alert feed.
#
#   - is_in_violation / status_alert: instantaneous Normal/Alert signal for
#     the selected parameter, computed locally and never stored
#   - AlertLedger: the backend's alert list as of the last poll, with
#     operator dismissal

import logging
from typing import Dict, List, Optional, Sequence, Union

from .models import Alert, Reading
from .thresholds import ThresholdBand

logger = logging.getLogger(__name__)

AlertId = Union[int, str]


# -------------------------------------------------
# Evaluation
# -------------------------------------------------


def latest_reading(readings: Sequence[Reading]) -> Optional[Reading]:
    return readings[-1] if readings else None


def is_in_violation(
    reading: Optional[Reading], parameter: str, band: ThresholdBand
) -> bool:
    """
    True iff the reading's value lies strictly outside [lower, upper].

    Boundary values count as in range. A missing reading, or one without
    this parameter, is never a violation.
    """
    if reading is None:
        return False
    value = reading.value(parameter)
    if value is None:
        return False
    return value > band.upper or value < band.lower


def status_alert(
    reading: Optional[Reading], machine: str, parameter: str, band: ThresholdBand
) -> Optional[Alert]:
    """Build the display-only alert for the current reading, or None if in range."""
    if not is_in_violation(reading, parameter, band):
        return None

    value = reading.value(parameter)
    if value > band.upper:
        severity, threshold, word = "high", band.upper, "above"
    else:
        severity, threshold, word = "low", band.lower, "below"

    return Alert(
        id=f"local:{machine}:{parameter}:{reading.time}",
        machine=machine,
        parameter=parameter,
        value=value,
        threshold=threshold,
        severity=severity,
        time=reading.time,
        message=f"{parameter} {value:g} {word} threshold {threshold:g} on {machine}",
    )


# -------------------------------------------------
# Alert feed
# -------------------------------------------------


class AlertLedger:
    """
    Alerts delivered by the backend, in backend order.

    Each poll replaces the whole list. Dismissal only removes the alert
    from the current list: if the backend reports it again it comes back,
    unless `suppress_cycles` is set, in which case a dismissed id stays
    hidden for that many replacements.
    """

    def __init__(self, suppress_cycles: int = 0) -> None:
        self.suppress_cycles = suppress_cycles
        self._alerts: List[Alert] = []
        self._suppressed: Dict[AlertId, int] = {}

    def replace_all(self, alerts: Sequence[Alert]) -> None:
        seen = set()
        kept: List[Alert] = []
        for alert in alerts:
            if alert.id in seen:
                logger.debug("Dropping duplicate alert id %s", alert.id)
                continue
            seen.add(alert.id)
            if alert.id in self._suppressed:
                continue
            kept.append(alert)

        self._alerts = kept
        self._age_suppressions()

    def _age_suppressions(self) -> None:
        for alert_id in list(self._suppressed):
            self._suppressed[alert_id] -= 1
            if self._suppressed[alert_id] <= 0:
                del self._suppressed[alert_id]

    def dismiss(self, alert_id: AlertId) -> bool:
        before = len(self._alerts)
        self._alerts = [a for a in self._alerts if a.id != alert_id]
        removed = len(self._alerts) != before

        if removed:
            logger.debug("Dismissed alert %s", alert_id)
            if self.suppress_cycles > 0:
                self._suppressed[alert_id] = self.suppress_cycles
        return removed

    def list(self) -> List[Alert]:
        return list(self._alerts)

    def __len__(self) -> int:
        return len(self._alerts)
