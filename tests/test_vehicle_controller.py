"""
Tests for the vehicle controller (full cascade and regime classification).

Covers:
- Fail-fast on invalid time steps
- Clamping invariants for every output
- Full-stop handling and pedal reset
- Accelerating / Coasting / Braking ordering around the physics borders
- Reverse detection
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ackermann_control.accel_controller import AccelControl
from ackermann_control.config import ControllerConfig, InvalidIntervalError
from ackermann_control.vehicle_controller import (
    Measurement,
    Output,
    Status,
    TargetRequest,
    VehicleController,
    VehicleParameters,
)


MASS = 1500.0
MAX_STEER = 0.6
DT = 0.05


def _make_controller(config: ControllerConfig = None) -> VehicleController:
    """Helper to build a controller for a 1500 kg car."""
    parameters = VehicleParameters(mass=MASS, wheel_max_steer_angles=[MAX_STEER, MAX_STEER, 0.0, 0.0])
    return VehicleController.from_vehicle(parameters, config)


# --- Construction ---

class TestConstruction:
    def test_max_pedal_is_smaller_envelope_limit(self):
        controller = _make_controller()
        assert controller.max_pedal == 3.0

    def test_steering_fallback(self):
        controller = VehicleController.from_vehicle(VehicleParameters(mass=MASS))
        assert controller.physics.max_steering_angle == pytest.approx(math.radians(70.0))

    def test_initial_measurement_is_zero(self):
        controller = _make_controller()
        assert controller.measurement == Measurement(0.0, 0.0, 0.0)

    def test_default_output_is_parked(self):
        output = Output()
        assert output.hand_brake is True
        assert output.brake == 1.0
        assert output.throttle == 0.0


# --- Invalid interval (Scenario D) ---

class TestInvalidInterval:
    @pytest.mark.parametrize("dt", [0.0, -0.1, float("nan"), float("inf")])
    def test_step_rejects_bad_dt(self, dt):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        with pytest.raises(InvalidIntervalError):
            controller.step(dt, 1.0, 0.0)

    def test_rejected_step_leaves_state_untouched(self):
        controller = _make_controller()
        controller.step(DT, 2.0, 0.0)
        before = Measurement(**vars(controller.measurement))

        with pytest.raises(InvalidIntervalError):
            controller.step(0.0, 3.0, 0.0)
        assert controller.measurement == before


# --- Measurement ---

class TestMeasurement:
    def test_acceleration_is_differentiated(self):
        controller = _make_controller()
        controller.step(0.1, 2.0, 0.0)
        controller.step(0.1, 2.5, 0.0)
        assert controller.measurement.speed == 2.5
        assert controller.measurement.accel == pytest.approx(5.0)
        assert controller.measurement.elapsed_time == pytest.approx(0.2)

    def test_acceleration_follows_speed_magnitude_in_reverse(self):
        controller = _make_controller()
        controller.step(0.1, -2.0, 0.0)
        controller.step(0.1, -2.5, 0.0)
        assert controller.measurement.speed == -2.5
        assert controller.measurement.accel == pytest.approx(5.0)

    def test_near_zero_speed_is_suppressed(self):
        controller = _make_controller()
        controller.step(0.1, 2.0, 0.0)
        controller.step(0.1, 0.05, 0.0)
        assert controller.measurement.speed == 0.0
        assert controller.measurement.accel == 0.0


# --- Scenarios ---

class TestScenarios:
    def test_start_from_rest_accelerates(self):
        """Scenario A: at rest, asked for 5 m/s at 1 m/s^2."""
        controller = _make_controller()
        controller.set_target(TargetRequest(steering_angle=0.0, speed=5.0, accel=1.0))
        output, report = controller.step(DT, 0.0, 0.0)

        assert report.status == Status.ACCELERATING
        assert output.throttle > 0.0
        assert output.brake == 0.0
        assert output.reverse is False
        assert output.hand_brake is False

        # 0.25 m/s^2 setpoint, 0.0125 pedal, rolling resistance border at -0.0981
        assert report.setpoint_accel == pytest.approx(0.25)
        assert report.target_pedal == pytest.approx(0.0125)
        assert output.throttle == pytest.approx((0.0125 + 0.0981) / 3.0)

    def test_reverse_request_while_rolling_forward(self):
        """Scenario C: setpoint speed is zero until the vehicle crosses zero."""
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, -3.0, 1.0))
        output, report = controller.step(DT, 2.0, 0.0)

        assert report.setpoint_speed == 0.0
        assert output.reverse is True

    def _reverse_at(self, current_speed, ticks=60):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, -3.0, 1.0))
        return [controller.step(DT, current_speed, 0.0) for _ in range(ticks)]

    def test_reversing_too_fast_brakes(self):
        ticks = self._reverse_at(-6.0)
        assert all(report.setpoint_accel <= 0.0 for _, report in ticks)

        output, report = ticks[-1]
        assert report.setpoint_accel == pytest.approx(-1.0)
        assert report.target_pedal < 0.0
        assert report.status in (Status.BRAKING, Status.COASTING)
        assert output.throttle == 0.0
        assert output.reverse is True

    def test_reversing_at_target_holds_speed(self):
        ticks = self._reverse_at(-3.0)
        assert all(report.setpoint_accel == 0.0 for _, report in ticks)

        output, report = ticks[-1]
        assert report.target_pedal == pytest.approx(0.0)
        # Only enough throttle to overcome rolling resistance and drag
        assert output.throttle < 0.1

    def test_reversing_too_slow_accelerates(self):
        output, report = self._reverse_at(-1.0)[-1]
        assert report.setpoint_accel == pytest.approx(1.0)
        assert report.status == Status.ACCELERATING
        assert output.throttle > 0.0
        assert output.reverse is True

    def test_full_stop_every_tick_while_stopped(self):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 0.0, 0.0))
        for speed in [0.0, 0.05, 0.02, 0.0, 0.08]:
            output, report = controller.step(DT, speed, 0.0)
            assert report.status == Status.FULL_STOP
            assert output.hand_brake is True
            assert output.brake == 1.0
            assert output.throttle == 0.0

    def test_full_stop_resets_carried_pedal(self):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        for _ in range(20):
            controller.step(DT, 0.0, 0.0)
        assert controller.accel_controller.target_pedal > 0.1

        controller.set_target(TargetRequest(0.0, 0.0, 0.0))
        output, report = controller.step(DT, 0.0, 0.0)
        assert report.status == Status.FULL_STOP
        assert report.target_pedal == 0.0
        assert controller.accel_controller.target_pedal == 0.0


# --- Regime classification ---

class TestRegimeBorders:
    def _step_with_pedal(self, controller, monkeypatch, pedal, speed=5.0):
        monkeypatch.setattr(
            controller.accel_controller,
            "step",
            lambda current_accel: AccelControl(target_pedal=pedal, delta_pedal=0.0),
        )
        return controller.step(DT, speed, 0.0)

    def test_sweep_is_monotonic(self, monkeypatch):
        """Braking -> Coasting -> Accelerating as the pedal rises."""
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))

        order = {Status.BRAKING: 0, Status.COASTING: 1, Status.ACCELERATING: 2}
        seen = []
        for pedal in np.linspace(-3.0, 3.0, 121):
            _, report = self._step_with_pedal(controller, monkeypatch, float(pedal))
            assert report.status in order
            seen.append(order[report.status])

        assert seen == sorted(seen)
        assert set(seen) == {0, 1, 2}

    def test_borders_come_from_physics(self, monkeypatch):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        _, report = self._step_with_pedal(controller, monkeypatch, 0.0)

        physics = controller.physics
        expected_lower = physics.driving_impedance_acceleration(5.0, 0.0, False)
        assert report.throttle_lower_border == pytest.approx(expected_lower)
        assert report.brake_upper_border == pytest.approx(expected_lower - 500.0 / MASS)

    def test_throttle_scales_with_pedal_above_border(self, monkeypatch):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        output, report = self._step_with_pedal(controller, monkeypatch, 0.5)

        assert report.status == Status.ACCELERATING
        assert output.throttle == pytest.approx((0.5 - report.throttle_lower_border) / 3.0)
        assert output.brake == 0.0

    def test_dead_band_coasts(self, monkeypatch):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        output, report = self._step_with_pedal(controller, monkeypatch, -0.2)

        assert report.status == Status.COASTING
        assert output.throttle == 0.0
        assert output.brake == 0.0
        assert output.hand_brake is False

    def test_brake_scales_with_pedal_below_border(self, monkeypatch):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 5.0, 1.0))
        output, report = self._step_with_pedal(controller, monkeypatch, -2.0)

        assert report.status == Status.BRAKING
        assert output.brake == pytest.approx((report.brake_upper_border + 2.0) / 3.0)
        assert output.throttle == 0.0

    def test_full_stop_takes_priority(self, monkeypatch):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, 0.0, 0.0))
        output, report = self._step_with_pedal(controller, monkeypatch, 3.0, speed=0.2)
        assert report.status == Status.FULL_STOP
        assert output.throttle == 0.0


# --- Invariants ---

class TestInvariants:
    def test_outputs_stay_in_range(self):
        rng = np.random.default_rng(7)
        controller = _make_controller()
        for _ in range(300):
            if rng.random() < 0.1:
                controller.set_target(TargetRequest(
                    steering_angle=float(rng.uniform(-3.0, 3.0)),
                    speed=float(rng.uniform(-100.0, 100.0)),
                    accel=float(rng.uniform(-20.0, 20.0)),
                ))
            output, _ = controller.step(
                float(rng.uniform(0.001, 0.2)),
                float(rng.uniform(-60.0, 60.0)),
                float(rng.uniform(-0.3, 0.3)),
            )
            assert 0.0 <= output.throttle <= 1.0
            assert 0.0 <= output.brake <= 1.0
            assert -1.0 <= output.steer <= 1.0
            assert abs(controller.steer_controller.target_steering_angle) <= MAX_STEER
            assert abs(controller.speed_controller.target_speed) <= 50.0
            assert not (output.throttle > 0.0 and output.brake > 0.0)

    def test_step_is_deterministic(self):
        speeds = [0.0, 0.3, 1.2, 2.5, 3.1, 3.0, 2.2]
        results = []
        for _ in range(2):
            controller = _make_controller()
            controller.set_target(TargetRequest(0.2, 4.0, 1.5))
            results.append([controller.step(DT, speed, 0.02) for speed in speeds])
        assert results[0] == results[1]

    def test_set_target_is_idempotent(self):
        request = TargetRequest(steering_angle=0.3, speed=12.0, accel=2.0)
        once = _make_controller()
        once.set_target(request)
        twice = _make_controller()
        twice.set_target(request)
        twice.set_target(request)

        assert twice.steer_controller.target_steering_angle == once.steer_controller.target_steering_angle
        assert twice.speed_controller.target_speed == once.speed_controller.target_speed
        assert twice.speed_controller.target_accel == once.speed_controller.target_accel

    @pytest.mark.parametrize("target_speed, current_speed, expected", [
        (-3.0, 2.0, True),
        (-3.0, 0.0, True),
        (3.0, 2.0, False),
        (3.0, -1.0, False),
        (0.0, 1.0, False),
    ])
    def test_reverse_follows_target_sign(self, target_speed, current_speed, expected):
        controller = _make_controller()
        controller.set_target(TargetRequest(0.0, target_speed, 1.0))
        output, _ = controller.step(DT, current_speed, 0.0)
        assert output.reverse is expected

    def test_steer_is_attached_in_every_regime(self):
        controller = _make_controller()
        controller.set_target(TargetRequest(steering_angle=0.3, speed=0.0, accel=0.0))
        output, report = controller.step(DT, 0.0, 0.0)
        assert report.status == Status.FULL_STOP
        assert output.steer == pytest.approx(-0.5)


# --- Reset ---

def test_reset_restores_initial_state():
    controller = _make_controller()
    controller.set_target(TargetRequest(0.0, 5.0, 1.0))
    for speed in [0.0, 0.5, 1.0]:
        controller.step(DT, speed, 0.0)

    controller.reset()
    assert controller.measurement == Measurement()
    assert controller.accel_controller.target_pedal == 0.0
    assert controller.speed_controller.setpoint_accel == 0.0
    # Targets survive a reset
    assert controller.speed_controller.target_speed == 5.0


def test_report_to_dict():
    controller = _make_controller()
    controller.set_target(TargetRequest(0.0, 5.0, 1.0))
    output, report = controller.step(DT, 0.0, 0.0)

    data = report.to_dict()
    assert data['status'] == 'accelerating'
    assert data['speed_p_term'] == pytest.approx(0.25)
    assert data['pedal_p_term'] == pytest.approx(0.0125)
    assert data['speed_d_term'] == 0.0
    assert set(output.to_dict()) == {'throttle', 'brake', 'steer', 'reverse', 'hand_brake'}
