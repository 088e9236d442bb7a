"""
PID loop shared by the speed and acceleration stages.
Setpoint-based, tick-driven (no dt), derivative on measurement.
"""

import numpy as np
from typing import Optional, Tuple


class PIDController:
    """
    PID controller with a symmetric output clamp.

    The integral term accumulates without decay. Anti-windup is handled by the
    owning stage, which clamps the command it carries between ticks.
    """

    def __init__(self, kp: float, ki: float, kd: float, output_limit: float,
                 setpoint: float = 0.0, p_limit: Optional[float] = None,
                 i_limit: Optional[float] = None, d_limit: Optional[float] = None):
        """
        Initialize PID controller.

        Args:
            kp: Proportional gain
            ki: Integral gain
            kd: Derivative gain
            output_limit: Output is clamped to [-output_limit, output_limit]
            setpoint: Initial setpoint
            p_limit: Optional clamp on the proportional term
            i_limit: Optional clamp on the accumulated integral term
            d_limit: Optional clamp on the derivative term
        """
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self.output_limit = abs(output_limit)
        self.p_limit = p_limit
        self.i_limit = i_limit
        self.d_limit = d_limit
        self.setpoint = setpoint

        self.integral_term = 0.0
        self.prev_measurement: Optional[float] = None
        self.last_terms: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    @staticmethod
    def _limit(value: float, limit: Optional[float]) -> float:
        if limit is None:
            return value
        return float(np.clip(value, -limit, limit))

    def step(self, measurement: float) -> float:
        """
        Compute the control output for one tick.

        Args:
            measurement: Current value of the controlled quantity

        Returns:
            Control output clamped to [-output_limit, output_limit]
        """
        error = self.setpoint - measurement

        # Proportional term
        p_term = self._limit(self.kp * error, self.p_limit)

        # Integral term
        self.integral_term = self._limit(self.integral_term + self.ki * error, self.i_limit)

        # Derivative term (on measurement, zero on the first call)
        if self.prev_measurement is not None:
            d_term = self._limit(-self.kd * (measurement - self.prev_measurement), self.d_limit)
        else:
            d_term = 0.0

        output = p_term + self.integral_term + d_term
        output = float(np.clip(output, -self.output_limit, self.output_limit))

        self.prev_measurement = measurement
        self.last_terms = (p_term, self.integral_term, d_term)

        return output

    def reset(self):
        """Reset controller state."""
        self.integral_term = 0.0
        self.prev_measurement = None
        self.last_terms = (0.0, 0.0, 0.0)
