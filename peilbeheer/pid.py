"""PID controller mapping a level error to a 0..1 pump duty."""

from __future__ import annotations

import logging

from .constants import DEFAULT_PID_KD, DEFAULT_PID_KI, DEFAULT_PID_KP, PID_INTEGRAL_DEADBAND_M

logger = logging.getLogger(__name__)


class PIDController:
    """Positional PID with an integral deadband and conditional anti-windup.

    The error convention is ``level - target``: a positive error means the polder
    is too wet and the pump should run. One instance controls one pump and is
    owned by a single simulation run.
    """

    def __init__(
        self,
        kp: float = DEFAULT_PID_KP,
        ki: float = DEFAULT_PID_KI,
        kd: float = DEFAULT_PID_KD,
    ) -> None:
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self._integral = 0.0
        self._last_error = 0.0

    @property
    def integral(self) -> float:
        return self._integral

    @property
    def last_error(self) -> float:
        return self._last_error

    def update(self, error: float, dt: float) -> float:
        """Return the duty in [0, 1] for ``error`` (m) over a step of ``dt`` minutes."""
        if dt <= 0.0:
            logger.debug("PID update with dt=%s ignored", dt)
            return 0.0

        increment = 0.0
        if abs(error) > PID_INTEGRAL_DEADBAND_M:
            increment = error * dt
            self._integral += increment

        derivative = (error - self._last_error) / dt
        raw = self.kp * error + self.ki * self._integral + self.kd * derivative
        output = max(0.0, min(1.0, raw))

        if (output == 0.0 and error < 0.0) or (output == 1.0 and error > 0.0):
            self._integral -= increment

        self._last_error = error
        return output

    def reset(self) -> None:
        self._integral = 0.0
        self._last_error = 0.0
