"""
Steering stage: clamps the requested wheel angle and normalizes it.
"""

import numpy as np


class SteerController:
    """Maps a steering angle (radians) onto the [-1, 1] steer command."""

    def __init__(self, max_steering_angle: float):
        self.max_steering_angle = max_steering_angle
        self.target_steering_angle = 0.0

    def set_target(self, steering_angle: float):
        self.target_steering_angle = float(
            np.clip(steering_angle, -self.max_steering_angle, self.max_steering_angle)
        )

    def ratio(self) -> float:
        # Positive angles steer left, the steer command is positive to the right.
        return -self.target_steering_angle / self.max_steering_angle
