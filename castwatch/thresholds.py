# castwatch/thresholds.py
#
# Per-parameter threshold bands. Values only ever change through user
# input; nothing here looks at readings.

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .config import DEFAULT_BANDS

logger = logging.getLogger(__name__)

BOUND_KINDS = ("lower", "upper")


@dataclass
class ThresholdBand:
    """
    Lower/upper bounds for one parameter.

    The pair is not ordered: lower > upper is accepted as entered.
    """

    lower: float
    upper: float


def coerce_bound(value: Any) -> float:
    """Parse user input as a number; anything unparseable becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


class ThresholdStore:
    def __init__(self, bands: Optional[Dict[str, Tuple[float, float]]] = None) -> None:
        source = DEFAULT_BANDS if bands is None else bands
        self._bands: Dict[str, ThresholdBand] = {
            name: ThresholdBand(lower=float(lo), upper=float(hi))
            for name, (lo, hi) in source.items()
        }

    def get_band(self, parameter: str) -> ThresholdBand:
        # parameters the backend adds later start unbounded
        if parameter not in self._bands:
            self._bands[parameter] = ThresholdBand(lower=-math.inf, upper=math.inf)
        band = self._bands[parameter]
        return ThresholdBand(lower=band.lower, upper=band.upper)

    def set_bound(self, parameter: str, kind: str, value: Any) -> ThresholdBand:
        if kind not in BOUND_KINDS:
            raise ValueError(f"bound kind must be 'lower' or 'upper', got {kind!r}")

        self.get_band(parameter)
        setattr(self._bands[parameter], kind, coerce_bound(value))
        band = self.get_band(parameter)
        logger.debug("Threshold %s.%s set to %s", parameter, kind, getattr(band, kind))
        return band

    def bands(self) -> Dict[str, ThresholdBand]:
        return {name: self.get_band(name) for name in self._bands}
