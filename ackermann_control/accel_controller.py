"""
Acceleration stage: closes a PID loop on measured acceleration and
integrates its output into a bounded pedal target.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ackermann_control.config import AccelControllerConfig, ConfigurationError
from ackermann_control.pid_controller import PIDController


@dataclass
class AccelControl:
    """Result of one acceleration stage tick."""
    target_pedal: float  # clamped to [-max_pedal, max_pedal]
    delta_pedal: float   # raw PID output for this tick
    pid_terms: Tuple[float, float, float] = (0.0, 0.0, 0.0)


class AccelController:
    """
    Inner loop of the cascade.

    The pedal target is carried across ticks and only moved by the bounded PID
    delta, so the pedal behaves like a rate-limited actuator.
    """

    def __init__(self, max_pedal: float, config: AccelControllerConfig = None):
        """
        Args:
            max_pedal: Pedal magnitude, min(max_accel, max_deceleration) of the vehicle
            config: PID gains for the loop
        """
        if config is None:
            config = AccelControllerConfig()
        if not max_pedal > 0.0:
            raise ConfigurationError(f"max_pedal must be positive, got {max_pedal}")

        pid = config.pid
        self.accel_pid = PIDController(
            kp=pid.kp,
            ki=pid.ki,
            kd=pid.kd,
            output_limit=pid.output_limit,
            p_limit=pid.p_limit,
            i_limit=pid.i_limit,
            d_limit=pid.d_limit,
        )
        self.max_pedal = max_pedal
        self.target_accel = 0.0
        self.target_pedal = 0.0

    def set_target_accel(self, target_accel: float):
        self.target_accel = target_accel

    def reset_target_pedal(self):
        """Drop the carried pedal so it does not leak across a full stop."""
        self.target_pedal = 0.0

    def step(self, current_accel: float) -> AccelControl:
        """
        Advance the loop by one tick.

        Args:
            current_accel: Measured acceleration (m/s^2)

        Returns:
            AccelControl with the new pedal target and the PID delta
        """
        self.accel_pid.setpoint = self.target_accel
        delta_pedal = self.accel_pid.step(current_accel)

        target_pedal = float(np.clip(self.target_pedal + delta_pedal, -self.max_pedal, self.max_pedal))
        self.target_pedal = target_pedal

        return AccelControl(
            target_pedal=target_pedal,
            delta_pedal=delta_pedal,
            pid_terms=self.accel_pid.last_terms,
        )

    def reset(self):
        """Reset loop memory and the carried pedal."""
        self.accel_pid.reset()
        self.target_accel = 0.0
        self.target_pedal = 0.0
