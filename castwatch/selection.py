# castwatch/selection.py
#
# Which machine and which parameter the operator is looking at, kept
# consistent with whatever the backend currently knows about.

import logging
from dataclasses import dataclass
from typing import Sequence

from .config import DEFAULT_MACHINE, DEFAULT_PARAMETER

logger = logging.getLogger(__name__)


@dataclass
class SelectionState:
    selected_machine: str = DEFAULT_MACHINE
    selected_parameter: str = DEFAULT_PARAMETER

    def select_machine(self, machine: str) -> None:
        self.selected_machine = machine

    def select_parameter(self, parameter: str) -> None:
        self.selected_parameter = parameter

    def reconcile(self, machines: Sequence[str], features: Sequence[str]) -> bool:
        """
        Re-anchor the selection onto the backend's current sets.

        - If `features` is non-empty and the selected parameter is not in it,
          fall back to features[0].
        - Same rule for `machines` and the selected machine.
        - Empty sets leave the selection alone.

        Idempotent. Returns True if anything changed.
        """
        changed = False

        if features and self.selected_parameter not in features:
            logger.info(
                "Parameter %s no longer offered, switching to %s",
                self.selected_parameter,
                features[0],
            )
            self.selected_parameter = features[0]
            changed = True

        if machines and self.selected_machine not in machines:
            logger.info(
                "Machine %s no longer reported, switching to %s",
                self.selected_machine,
                machines[0],
            )
            self.selected_machine = machines[0]
            changed = True

        return changed
