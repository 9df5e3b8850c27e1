"""Take-off detection gate (NotFlying -> Flying, one way)."""

from enum import Enum
from typing import Callable, List, Optional

from .config import FLIGHT_ACCEL_THRESHOLD


class FlightState(Enum):
    NOT_FLYING = 0
    FLYING = 1


class FlightDetector:
    """
    Declares flight on the first IMU sample whose |a_z| exceeds the threshold.

    The transition happens once. Listeners registered with ``on_flying`` are
    called exactly once with the transition timestamp; afterwards no further
    checks are made.
    """

    def __init__(self, threshold: float = FLIGHT_ACCEL_THRESHOLD):
        self.threshold = float(threshold)
        self.state = FlightState.NOT_FLYING
        self.transition_time: Optional[float] = None
        self._listeners: List[Callable[[float], None]] = []

    @property
    def flying(self) -> bool:
        return self.state is FlightState.FLYING

    def on_flying(self, callback: Callable[[float], None]):
        self._listeners.append(callback)

    def check(self, sample) -> bool:
        """
        Feed one IMU sample.

        Returns:
            True only for the sample that caused the transition
        """
        if self.state is FlightState.FLYING:
            return False

        az = float(sample.linear_acceleration[2])
        # Written as 'not >' so a NaN a_z never declares flight
        if not abs(az) > self.threshold:
            return False

        self.state = FlightState.FLYING
        self.transition_time = float(sample.t)
        print(f"[FLIGHT] Now flying (t={sample.t:.3f}, a_z={az:.2f})")
        for callback in self._listeners:
            callback(self.transition_time)
        return True
