"""
Controller configuration.

Dataclasses with passenger-car defaults, plus helpers to load them from the
``controller`` section of a YAML file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Union

import yaml


logger = logging.getLogger(__name__)


class ControllerError(Exception):
    """Base class for controller errors."""


class ConfigurationError(ControllerError, ValueError):
    """Degenerate vehicle parameters or controller configuration."""


class InvalidIntervalError(ControllerError, ValueError):
    """Non-positive time step passed to the controller."""


@dataclass
class PidConfig:
    """Gains and limits of a single PID loop."""

    kp: float = 0.05
    ki: float = 0.0
    kd: float = 0.05
    output_limit: float = 1.0
    p_limit: Optional[float] = None
    i_limit: Optional[float] = None
    d_limit: Optional[float] = None


@dataclass
class PhysicsConfig:
    """Resistance constants and actuation envelope."""

    engine_brake_force: float = 500.0  # N
    rolling_resistance_coefficient: float = 0.01
    drag_coefficient: float = 0.3
    drag_reference_area: float = 2.37  # m^2
    air_density: float = 1.184  # kg/m^3 at 25 C
    default_max_steering_angle_deg: float = 70.0
    max_speed: float = 50.0  # m/s (180 km/h)
    max_accel: float = 3.0  # m/s^2
    max_deceleration: float = 8.0  # m/s^2


@dataclass
class ActivationConfig:
    """Debounce before the speed loop takes over an explicit accel request."""

    enabled: bool = False
    threshold: int = 5


@dataclass
class SpeedControllerConfig:
    """Outer (speed) loop."""

    pid: PidConfig = field(default_factory=lambda: PidConfig(kp=0.05, ki=0.0, kd=0.5, output_limit=1.0))
    min_accel: float = 1.0  # m/s^2, smallest request that arms the activator
    activation: ActivationConfig = field(default_factory=ActivationConfig)


@dataclass
class AccelControllerConfig:
    """Inner (acceleration) loop."""

    pid: PidConfig = field(default_factory=lambda: PidConfig(kp=0.05, ki=0.0, kd=0.05, output_limit=1.0))


@dataclass
class ControllerConfig:
    """Complete vehicle controller configuration."""

    full_stop_speed: float = 0.1  # m/s
    stand_still_speed: float = 0.5  # m/s
    inertial_accel_threshold: float = 0.1  # m/s^2
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    speed: SpeedControllerConfig = field(default_factory=SpeedControllerConfig)
    accel: AccelControllerConfig = field(default_factory=AccelControllerConfig)

    def validate(self) -> None:
        """Raise ConfigurationError for settings the controller cannot run with."""
        if not 0.0 <= self.full_stop_speed < self.stand_still_speed:
            raise ConfigurationError(
                f"expected 0 <= full_stop_speed < stand_still_speed, got "
                f"{self.full_stop_speed} / {self.stand_still_speed}"
            )
        if self.inertial_accel_threshold < 0.0:
            raise ConfigurationError("inertial_accel_threshold must not be negative")
        for name in ("max_speed", "max_accel", "max_deceleration"):
            if getattr(self.physics, name) < 0.0:
                raise ConfigurationError(f"physics.{name} must not be negative")
        if self.speed.activation.threshold < 1:
            raise ConfigurationError("speed.activation.threshold must be at least 1")


def load_config(config_path: Optional[Union[str, Path]] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = Path(__file__).parent.parent / "config" / "controller_config.yaml"
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def _build_section(cls, section: Optional[dict], nested: Optional[dict] = None):
    """Instantiate a config dataclass from a dict, ignoring unknown keys."""
    section = dict(section or {})
    nested = nested or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {unknown}")

    kwargs = {}
    for name in known & set(section):
        if name in nested:
            kwargs[name] = nested[name](section[name])
        else:
            kwargs[name] = section[name]
    return cls(**kwargs)


def _build_pid(section: Optional[dict], defaults: PidConfig) -> PidConfig:
    merged = {f.name: getattr(defaults, f.name) for f in fields(PidConfig)}
    merged.update(section or {})
    return _build_section(PidConfig, merged)


def build_controller_config(config: Optional[dict] = None) -> ControllerConfig:
    """Build a ControllerConfig from the ``controller`` section of a config dict."""
    section = dict((config or {}).get("controller", {}) or {})
    defaults = ControllerConfig()

    speed_section = dict(section.pop("speed", {}) or {})
    accel_section = dict(section.pop("accel", {}) or {})

    speed_config = _build_section(
        SpeedControllerConfig,
        speed_section,
        nested={
            "pid": lambda s: _build_pid(s, defaults.speed.pid),
            "activation": lambda s: _build_section(ActivationConfig, s),
        },
    )
    accel_config = _build_section(
        AccelControllerConfig,
        accel_section,
        nested={"pid": lambda s: _build_pid(s, defaults.accel.pid)},
    )

    controller_config = _build_section(
        ControllerConfig,
        section,
        nested={"physics": lambda s: _build_section(PhysicsConfig, s)},
    )
    controller_config.speed = speed_config
    controller_config.accel = accel_config
    controller_config.validate()
    return controller_config
