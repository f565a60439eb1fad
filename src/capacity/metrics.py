"""Counters collected by capacity sources."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class CapacityMetrics:
    """Acquire/release accounting for a single capacity node."""
    acquire_accepted: int = 0
    acquire_rejected: int = 0
    acquire_waited: int = 0
    releases: int = 0
    peak_in_flight: int = 0

    def record_grant(self, in_flight: int) -> None:
        self.acquire_accepted += 1
        if in_flight > self.peak_in_flight:
            self.peak_in_flight = in_flight

    def snapshot(self, in_flight: int, total_units: int) -> Dict[str, Any]:
        """Counters plus point-in-time utilisation (0.0 idle, 1.0 saturated)."""
        return {
            "acquire_accepted": self.acquire_accepted,
            "acquire_rejected": self.acquire_rejected,
            "acquire_waited": self.acquire_waited,
            "releases": self.releases,
            "peak_in_flight": self.peak_in_flight,
            "in_flight": in_flight,
            "utilization": in_flight / total_units if total_units > 0 else 0.0,
        }
