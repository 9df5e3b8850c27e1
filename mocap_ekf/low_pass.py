"""First-order IIR smoothing for gyro / accelerometer channels."""

from typing import Optional


class LowPassFilter:
    """
    y[n] = alpha * y[n-1] + (1 - alpha) * u[n]

    The first sample seeds y[-1] := u[0], so the filter is a pass-through on
    its first call instead of blending against an arbitrary baseline.
    """

    def __init__(self, alpha: float):
        alpha = float(alpha)
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be in [0, 1], got {alpha}")
        self.alpha = alpha
        self._value: Optional[float] = None

    @property
    def seeded(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> Optional[float]:
        """Last output, or None before the first sample."""
        return self._value

    def update(self, u: float) -> float:
        u = float(u)
        if self._value is None:
            self._value = u
        else:
            self._value = self.alpha * self._value + (1.0 - self.alpha) * u
        return self._value

    def reset(self):
        self._value = None

    def __repr__(self):
        return f"LowPassFilter(alpha={self.alpha}, value={self._value})"
