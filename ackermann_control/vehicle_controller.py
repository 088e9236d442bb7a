"""
Vehicle controller: runs the steering, speed and acceleration stages once per
tick and maps the resulting pedal target onto throttle/brake commands.

Pipeline per tick:
  1. Measurement update (speed, differentiated acceleration)
  2. Steering ratio
  3. Speed loop -> acceleration setpoint
  4. Acceleration loop -> pedal target
  5. Physics borders -> Accelerating / Coasting / Braking / FullStop
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from ackermann_control.accel_controller import AccelController
from ackermann_control.config import ControllerConfig, InvalidIntervalError
from ackermann_control.physics import VehiclePhysics
from ackermann_control.speed_controller import SpeedController
from ackermann_control.steer_controller import SteerController


logger = logging.getLogger(__name__)


class Status(Enum):
    """Driving regime of the current tick."""
    FULL_STOP = "full_stop"
    ACCELERATING = "accelerating"
    COASTING = "coasting"
    BRAKING = "braking"


@dataclass
class VehicleParameters:
    """Static vehicle data read from the simulator once per episode."""
    mass: float  # kg
    wheel_max_steer_angles: Sequence[float] = ()  # radians, one per wheel


@dataclass
class TargetRequest:
    """Driving intent from the planner."""
    steering_angle: float = 0.0  # radians
    speed: float = 0.0           # m/s, negative for reverse
    accel: float = 0.0           # m/s^2


@dataclass
class Measurement:
    """
    Latest motion measurement.

    ``speed`` keeps its sign; ``accel`` is the rate of change of the speed
    magnitude, so it is positive when speeding up in either direction.
    """
    elapsed_time: float = 0.0
    speed: float = 0.0
    accel: float = 0.0

    def update(self, dt: float, current_speed: float, full_stop_speed: float):
        accel = (abs(current_speed) - abs(self.speed)) / dt
        self.elapsed_time += dt
        if abs(current_speed) < full_stop_speed:
            # Suppress noise from a nearly stationary vehicle.
            self.speed = 0.0
            self.accel = 0.0
        else:
            self.speed = current_speed
            self.accel = accel


@dataclass
class Output:
    """Actuator command."""
    throttle: float = 0.0  # 0.0 to 1.0
    brake: float = 1.0     # 0.0 to 1.0
    steer: float = 0.0     # -1.0 to 1.0
    reverse: bool = False
    hand_brake: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Report:
    """Per-tick diagnostics, for logging and tuning only."""
    status: Status
    setpoint_accel: float
    target_pedal: float
    delta_accel: float
    delta_pedal: float
    setpoint_speed: float = 0.0
    throttle_lower_border: float = 0.0
    brake_upper_border: float = 0.0
    # p/i/d split of both loops
    speed_p_term: float = 0.0
    speed_i_term: float = 0.0
    speed_d_term: float = 0.0
    pedal_p_term: float = 0.0
    pedal_i_term: float = 0.0
    pedal_d_term: float = 0.0

    def to_dict(self) -> dict:
        result = asdict(self)
        result['status'] = self.status.value
        return result


class VehicleController:
    """
    Cascaded longitudinal/lateral controller for one vehicle.

    Not thread-safe; each vehicle owns its own instance.
    """

    def __init__(self, physics: VehiclePhysics, config: Optional[ControllerConfig] = None):
        """
        Initialize vehicle controller.

        Args:
            physics: Force model of the controlled vehicle
            config: Controller configuration (defaults if None)

        Raises:
            ConfigurationError: If the configuration cannot produce a usable controller
        """
        if config is None:
            config = ControllerConfig()
        config.validate()

        self.config = config
        self._physics = physics
        self._measurement = Measurement()

        self.steer_controller = SteerController(physics.max_steering_angle)
        self.speed_controller = SpeedController(
            max_speed=physics.max_speed,
            max_accel=physics.max_accel,
            max_decel=physics.max_deceleration,
            full_stop_speed=config.full_stop_speed,
            stand_still_speed=config.stand_still_speed,
            inertial_accel_threshold=config.inertial_accel_threshold,
            config=config.speed,
        )
        self.accel_controller = AccelController(
            max_pedal=min(physics.max_accel, physics.max_deceleration),
            config=config.accel,
        )

    @classmethod
    def from_vehicle(cls, parameters: VehicleParameters,
                     config: Optional[ControllerConfig] = None) -> "VehicleController":
        """Build a controller from raw vehicle parameters."""
        if config is None:
            config = ControllerConfig()
        physics = VehiclePhysics(
            mass=parameters.mass,
            wheel_max_steer_angles=parameters.wheel_max_steer_angles,
            config=config.physics,
        )
        return cls(physics, config)

    @property
    def physics(self) -> VehiclePhysics:
        return self._physics

    @property
    def measurement(self) -> Measurement:
        return self._measurement

    @property
    def max_pedal(self) -> float:
        return self.accel_controller.max_pedal

    def set_target(self, target: TargetRequest):
        """Set the driving intent; values are clamped to the vehicle envelope."""
        self.steer_controller.set_target(target.steering_angle)
        self.speed_controller.set_target(target.speed, target.accel)

    def step(self, dt: float, current_speed: float,
             pitch_radians: float = 0.0) -> Tuple[Output, Report]:
        """
        Compute the actuator command for one tick.

        Args:
            dt: Time since the previous tick (seconds), must be positive
            current_speed: Current vehicle speed (m/s), negative when reversing
            pitch_radians: Current vehicle pitch (radians)

        Returns:
            Tuple of (Output, Report)

        Raises:
            InvalidIntervalError: If dt is not a positive finite number
        """
        if not (dt > 0.0 and math.isfinite(dt)):
            raise InvalidIntervalError(f"time step must be positive, got {dt}")

        measurement = self._measurement
        measurement.update(dt, current_speed, self.config.full_stop_speed)

        steer = self.steer_controller.ratio()

        speed_control = self.speed_controller.step(current_speed)
        is_full_stop = speed_control.full_stop

        self.accel_controller.set_target_accel(speed_control.setpoint_accel)
        if is_full_stop:
            self.accel_controller.reset_target_pedal()
        accel_control = self.accel_controller.step(measurement.accel)
        target_pedal = accel_control.target_pedal

        reverse = self.speed_controller.target_speed < 0.0
        throttle_lower_border = self._physics.driving_impedance_acceleration(
            measurement.speed, pitch_radians, reverse
        )
        brake_upper_border = throttle_lower_border + self._physics.lay_off_engine_acceleration
        max_pedal = self.max_pedal

        if is_full_stop:
            status = Status.FULL_STOP
            output = Output(throttle=0.0, brake=1.0, steer=steer, reverse=reverse, hand_brake=True)
        elif target_pedal > throttle_lower_border:
            status = Status.ACCELERATING
            throttle = float(np.clip((target_pedal - throttle_lower_border) / max_pedal, 0.0, 1.0))
            output = Output(throttle=throttle, brake=0.0, steer=steer, reverse=reverse, hand_brake=False)
        elif target_pedal > brake_upper_border:
            # Dead band: the vehicle decelerates on its own.
            status = Status.COASTING
            output = Output(throttle=0.0, brake=0.0, steer=steer, reverse=reverse, hand_brake=False)
        else:
            status = Status.BRAKING
            brake = float(np.clip((brake_upper_border - target_pedal) / max_pedal, 0.0, 1.0))
            output = Output(throttle=0.0, brake=brake, steer=steer, reverse=reverse, hand_brake=False)

        report = Report(
            status=status,
            setpoint_accel=speed_control.setpoint_accel,
            target_pedal=target_pedal,
            delta_accel=speed_control.delta_accel,
            delta_pedal=accel_control.delta_pedal,
            setpoint_speed=speed_control.setpoint_speed,
            throttle_lower_border=throttle_lower_border,
            brake_upper_border=brake_upper_border,
            speed_p_term=speed_control.pid_terms[0],
            speed_i_term=speed_control.pid_terms[1],
            speed_d_term=speed_control.pid_terms[2],
            pedal_p_term=accel_control.pid_terms[0],
            pedal_i_term=accel_control.pid_terms[1],
            pedal_d_term=accel_control.pid_terms[2],
        )

        logger.debug(
            f"t={measurement.elapsed_time:.3f} status={status.value} "
            f"speed={measurement.speed:.3f} accel={measurement.accel:.3f} "
            f"setpoint_accel={speed_control.setpoint_accel:.3f} pedal={target_pedal:.3f} "
            f"borders=({brake_upper_border:.3f}, {throttle_lower_border:.3f})"
        )

        return output, report

    def reset(self):
        """Return every stage and the measurement to the initial state (targets are kept)."""
        self._measurement = Measurement()
        self.speed_controller.reset()
        self.accel_controller.reset()
