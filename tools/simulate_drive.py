#!/usr/bin/env python3
"""
Drive the vehicle controller against a point-mass longitudinal plant.

Useful for tuning gains without a simulator: the plant turns throttle/brake
into speed with rolling resistance, drag and engine braking.

Usage:
    python tools/simulate_drive.py --target-speed 5 --target-accel 1
    python tools/simulate_drive.py --initial-speed 10 --target-speed 0 --record-dir recordings
    python tools/simulate_drive.py --config config/controller_config.yaml --log-level DEBUG
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ackermann_control.config import build_controller_config, load_config
from ackermann_control.physics import VehiclePhysics
from ackermann_control.vehicle_controller import (
    Output,
    TargetRequest,
    VehicleController,
    VehicleParameters,
)
from data.recorder import ControlRecorder

logger = logging.getLogger(__name__)


class PointMassPlant:
    """
    Longitudinal point-mass vehicle on flat ground.

    Speed is signed (negative when rolling backwards). Resistances and brake
    only ever slow the vehicle down, they never reverse it.
    """

    def __init__(self, physics: VehiclePhysics, max_drive_accel: float = 4.0,
                 max_brake_decel: float = 8.0, initial_speed: float = 0.0):
        self.physics = physics
        self.max_drive_accel = max_drive_accel
        self.max_brake_decel = max_brake_decel
        self.velocity = initial_speed

    @property
    def speed(self) -> float:
        return abs(self.velocity)

    def step(self, output: Output, dt: float) -> float:
        """
        Apply one actuator command for dt seconds.

        Returns:
            New speed magnitude (m/s)
        """
        if output.hand_brake:
            self.velocity = 0.0
            return 0.0

        direction = -1.0 if output.reverse else 1.0
        velocity = self.velocity + direction * output.throttle * self.max_drive_accel * dt

        physics = self.physics
        resistance = (physics.rolling_resistance_force + physics.aerodynamic_drag_force(velocity)) / physics.mass
        opposing = output.brake * self.max_brake_decel + resistance
        if output.throttle == 0.0:
            opposing -= physics.lay_off_engine_acceleration

        slowdown = opposing * dt
        if abs(velocity) <= slowdown:
            velocity = 0.0
        else:
            velocity -= np.sign(velocity) * slowdown

        self.velocity = float(velocity)
        return self.speed


def run_simulation(controller: VehicleController, plant: PointMassPlant,
                   target: TargetRequest, duration: float = 10.0, dt: float = 0.05,
                   recorder: Optional[ControlRecorder] = None) -> List[dict]:
    """
    Run the closed loop for a fixed duration.

    Args:
        controller: Controller under test
        plant: Vehicle plant
        target: Driving intent, set once before the first tick
        duration: Simulated time (seconds)
        dt: Tick length (seconds)
        recorder: Optional recorder receiving every tick

    Returns:
        One dict per tick with plant speed, output and report fields
    """
    controller.set_target(target)
    rows = []
    num_steps = int(round(duration / dt))
    for _ in range(num_steps):
        output, report = controller.step(dt, plant.speed, 0.0)
        if recorder is not None:
            recorder.record(controller.measurement, target, output, report)

        row = {"time": controller.measurement.elapsed_time, "speed": plant.speed}
        row.update(output.to_dict())
        row.update(report.to_dict())
        rows.append(row)

        plant.step(output, dt)
    return rows


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Closed-loop run of the vehicle controller")
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/controller_config.yaml)')
    parser.add_argument('--mass', type=float, default=1500.0, help='Vehicle mass (kg)')
    parser.add_argument('--max-steer-deg', type=float, default=70.0,
                        help='Front wheel steering limit (degrees)')
    parser.add_argument('--initial-speed', type=float, default=0.0, help='Initial speed (m/s)')
    parser.add_argument('--target-speed', type=float, default=5.0, help='Target speed (m/s)')
    parser.add_argument('--target-accel', type=float, default=1.0, help='Target acceleration (m/s^2)')
    parser.add_argument('--steering-angle', type=float, default=0.0, help='Steering angle (radians)')
    parser.add_argument('--duration', type=float, default=20.0, help='Simulated time (seconds)')
    parser.add_argument('--dt', type=float, default=0.05, help='Tick length (seconds)')
    parser.add_argument('--record-dir', type=str, default=None,
                        help='Write an HDF5 recording to this directory')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    config = build_controller_config(load_config(args.config))
    parameters = VehicleParameters(
        mass=args.mass,
        wheel_max_steer_angles=[np.radians(args.max_steer_deg)] * 2 + [0.0, 0.0],
    )
    controller = VehicleController.from_vehicle(parameters, config)
    plant = PointMassPlant(controller.physics, initial_speed=args.initial_speed)
    target = TargetRequest(
        steering_angle=args.steering_angle,
        speed=args.target_speed,
        accel=args.target_accel,
    )

    recorder = None
    if args.record_dir:
        recorder = ControlRecorder(args.record_dir, metadata={"mass": args.mass, "dt": args.dt})
    try:
        rows = run_simulation(controller, plant, target, duration=args.duration,
                              dt=args.dt, recorder=recorder)
    finally:
        if recorder is not None:
            recorder.close()

    print(f"{'time':>7} {'speed':>7} {'throttle':>8} {'brake':>6}  status")
    report_every = max(int(round(1.0 / args.dt)), 1)
    for row in rows[::report_every]:
        print(f"{row['time']:7.2f} {row['speed']:7.3f} {row['throttle']:8.3f} "
              f"{row['brake']:6.3f}  {row['status']}")
    final = rows[-1] if rows else None
    if final is not None:
        print(f"Final speed {final['speed']:.3f} m/s, status {final['status']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
