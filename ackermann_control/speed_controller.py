"""
Speed stage: closes a PID loop on vehicle speed and integrates its output
into a bounded acceleration setpoint for the acceleration stage.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np

from ackermann_control.config import SpeedControllerConfig
from ackermann_control.pid_controller import PIDController


class SpeedKind(Enum):
    """Coarse classification of the current speed."""
    FULL_STOP = "full_stop"
    STAND_STILL = "stand_still"
    DRIVING = "driving"


@dataclass
class SpeedControl:
    """Result of one speed stage tick."""
    setpoint_accel: float  # bounded acceleration setpoint (m/s^2)
    delta_accel: float     # raw PID output, before clamping
    full_stop: bool
    setpoint_speed: float  # effective speed setpoint used this tick
    speed_kind: SpeedKind
    pid_terms: Tuple[float, float, float] = (0.0, 0.0, 0.0)


class DelayedActivator:
    """
    Saturating debounce counter.

    ``inc`` reports True once the counter has reached ``threshold``;
    ``dec`` walks it back towards zero.
    """

    def __init__(self, threshold: int):
        self.threshold = threshold
        self.count = 0

    def inc(self) -> bool:
        self.count = min(self.count + 1, self.threshold)
        return self.count == self.threshold

    def dec(self):
        self.count = max(self.count - 1, 0)

    def reset(self):
        self.count = 0


def _same_sign(a: float, b: float) -> bool:
    # Zero counts as positive, -0.0 as negative.
    return (math.copysign(1.0, a) > 0) == (math.copysign(1.0, b) > 0)


class SpeedController:
    """
    Outer loop of the cascade.

    The PID computes an increment that is added to the previous acceleration
    setpoint, then clamped to the envelope allowed by the current request.
    """

    def __init__(self, max_speed: float, max_accel: float, max_decel: float,
                 full_stop_speed: float = 0.1, stand_still_speed: float = 0.5,
                 inertial_accel_threshold: float = 0.1,
                 config: SpeedControllerConfig = None):
        """
        Args:
            max_speed: Speed limit in either direction (m/s)
            max_accel: Largest positive acceleration (m/s^2)
            max_decel: Largest deceleration, as a positive magnitude (m/s^2)
            full_stop_speed: Below this the vehicle (or request) counts as stopped
            stand_still_speed: Below this the vehicle counts as standing
            inertial_accel_threshold: Requests smaller than this leave the
                full envelope to the speed loop
            config: PID gains and optional delayed activation
        """
        if config is None:
            config = SpeedControllerConfig()

        pid = config.pid
        self.speed_pid = PIDController(
            kp=pid.kp,
            ki=pid.ki,
            kd=pid.kd,
            output_limit=pid.output_limit,
            p_limit=pid.p_limit,
            i_limit=pid.i_limit,
            d_limit=pid.d_limit,
        )
        self.max_speed = max_speed
        self.max_accel = max_accel
        self.max_decel = max_decel
        self.min_accel = config.min_accel
        self.full_stop_speed = full_stop_speed
        self.stand_still_speed = stand_still_speed
        self.inertial_accel_threshold = inertial_accel_threshold

        self.activation_enabled = config.activation.enabled
        self.accel_activator = DelayedActivator(config.activation.threshold)

        self.target_speed = 0.0
        self.target_accel = 0.0
        self.setpoint_accel = 0.0

    def set_target(self, target_speed: float, target_accel: float):
        """Store a clamped speed/acceleration request."""
        target_speed = float(np.clip(target_speed, -self.max_speed, self.max_speed))
        if abs(target_speed) >= self.full_stop_speed:
            target_accel = float(np.clip(target_accel, -self.max_decel, self.max_accel))
        else:
            # Asking to stop always means braking.
            target_accel = -self.max_decel

        self.target_speed = target_speed
        self.target_accel = target_accel

    def classify(self, current_speed: float) -> SpeedKind:
        is_standing = abs(current_speed) < self.stand_still_speed
        is_stopping = abs(self.target_speed) < self.full_stop_speed
        if is_standing and is_stopping:
            return SpeedKind.FULL_STOP
        if is_standing:
            return SpeedKind.STAND_STILL
        return SpeedKind.DRIVING

    def _setpoint_speed(self, speed_kind: SpeedKind, current_speed: float) -> float:
        if speed_kind == SpeedKind.FULL_STOP:
            return 0.0
        if speed_kind == SpeedKind.STAND_STILL:
            return self.target_speed
        # Direction changes have to pass through zero.
        if not _same_sign(current_speed, self.target_speed):
            return 0.0
        return self.target_speed

    def _is_speed_control_enabled(self, target_accel_abs: float, is_inertial: bool) -> bool:
        if not self.activation_enabled:
            return True
        if not is_inertial and target_accel_abs >= self.min_accel:
            return self.accel_activator.inc()
        self.accel_activator.dec()
        return False

    def step(self, current_speed: float) -> SpeedControl:
        """
        Advance the loop by one tick.

        Args:
            current_speed: Measured speed (m/s), negative when rolling backwards.
                The sign only selects the direction; the loop runs on the
                speed magnitude in either direction.

        Returns:
            SpeedControl with the bounded acceleration setpoint
        """
        speed_kind = self.classify(current_speed)
        is_full_stop = speed_kind == SpeedKind.FULL_STOP
        setpoint_speed = self._setpoint_speed(speed_kind, current_speed)

        target_accel_abs = abs(self.target_accel)
        is_inertial = target_accel_abs < self.inertial_accel_threshold

        if self._is_speed_control_enabled(target_accel_abs, is_inertial):
            if is_inertial:
                lower, upper = -self.max_decel, self.max_accel
            else:
                lower, upper = -target_accel_abs, target_accel_abs

            self.speed_pid.setpoint = abs(setpoint_speed)
            delta_accel = self.speed_pid.step(abs(current_speed))
            pid_terms = self.speed_pid.last_terms

            prev_setpoint = 0.0 if is_full_stop else self.setpoint_accel
            setpoint_accel = float(np.clip(prev_setpoint + delta_accel, lower, upper))
        else:
            delta_accel = 0.0
            pid_terms = (0.0, 0.0, 0.0)
            setpoint_accel = self.target_accel

        self.setpoint_accel = setpoint_accel

        return SpeedControl(
            setpoint_accel=setpoint_accel,
            delta_accel=delta_accel,
            full_stop=is_full_stop,
            setpoint_speed=setpoint_speed,
            speed_kind=speed_kind,
            pid_terms=pid_terms,
        )

    def reset(self):
        """Reset loop memory, the carried setpoint and the activator."""
        self.speed_pid.reset()
        self.accel_activator.reset()
        self.setpoint_accel = 0.0
