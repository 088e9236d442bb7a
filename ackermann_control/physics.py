"""
Longitudinal vehicle physics.

Derives the resistance forces and the actuation envelope of the vehicle from
its mass and steering limits. Only the driving impedance depends on the
current speed and pitch; everything else is fixed at construction.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from ackermann_control.config import ConfigurationError, PhysicsConfig


logger = logging.getLogger(__name__)

G = 9.81  # m/s^2


class VehiclePhysics:
    """Static force model of a passenger vehicle."""

    def __init__(self, mass: float, wheel_max_steer_angles: Sequence[float] = (),
                 config: Optional[PhysicsConfig] = None) -> None:
        """
        Args:
            mass: Vehicle mass (kg)
            wheel_max_steer_angles: Per-wheel maximum steering angle (radians).
                Rear wheels usually report 0.
            config: Resistance constants and envelope limits
        """
        if config is None:
            config = PhysicsConfig()
        if not mass > 0.0:
            raise ConfigurationError(f"vehicle mass must be positive, got {mass}")

        self.config = config
        self.mass = float(mass)

        self.engine_brake_force = config.engine_brake_force
        self.lay_off_engine_acceleration = -self.engine_brake_force / self.mass
        self.weight_force = self.mass * G
        self.rolling_resistance_force = config.rolling_resistance_coefficient * self.weight_force
        self.drag_area = config.drag_coefficient * config.drag_reference_area

        steer_limits = [float(angle) for angle in wheel_max_steer_angles if angle > 0.0]
        if steer_limits:
            self.max_steering_angle = max(steer_limits)
        else:
            self.max_steering_angle = math.radians(config.default_max_steering_angle_deg)
            logger.warning(
                "Vehicle reports no steering limit, falling back to %.1f deg",
                config.default_max_steering_angle_deg,
            )

        self.max_speed = config.max_speed
        self.max_accel = config.max_accel
        self.max_deceleration = config.max_deceleration

    def slope_force(self, pitch_radians: float, reverse: bool = False) -> float:
        """Longitudinal weight component along the road (N)."""
        force = -G * self.mass * math.sin(pitch_radians)
        return -force if reverse else force

    def aerodynamic_drag_force(self, speed: float) -> float:
        """Air resistance at the given speed (N)."""
        return 0.5 * self.drag_area * self.config.air_density * speed ** 2

    def driving_impedance_acceleration(self, speed: float, pitch_radians: float,
                                       reverse: bool) -> float:
        """
        Deceleration the vehicle experiences when rolling freely.

        Combines rolling resistance, aerodynamic drag and road slope. A pedal
        target above this value needs throttle.

        Args:
            speed: Current speed (m/s)
            pitch_radians: Vehicle pitch as reported by the simulator (radians)
            reverse: Whether the vehicle drives backwards

        Returns:
            Impedance acceleration (m/s^2, normally negative)
        """
        total_force = (
            self.rolling_resistance_force
            + self.aerodynamic_drag_force(speed)
            + self.slope_force(pitch_radians, reverse)
        )
        return -total_force / self.mass
