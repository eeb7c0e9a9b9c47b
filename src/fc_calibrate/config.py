"""
Configuration defaults for serial links and calibration runs.

CLI options override individual CalibrationConfig fields through
CalibrationConfig.with_overrides().
"""

from dataclasses import dataclass, replace
from typing import Tuple

from fc_calibrate.protocol.base import SensorKind
from fc_calibrate.protocol.transport import DEFAULT_BAUDRATE, DEFAULT_TIMEOUT

# Serial link defaults
PORT_ENVVAR = "FC_CALIBRATE_PORT"

# Acquisition defaults
DEFAULT_INTERVAL = 0.2  # seconds between samples
DEFAULT_DURATION = 5    # seconds per acquisition window


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Thresholds used to accept or reject a calibration dataset.

    Attributes:
        min_samples: Minimum number of samples in an acquisition window
        noise_threshold: Maximum std-dev / |mean| before data is rejected
        sample_interval: Nominal cadence of the sampling loop (seconds)
        voltage_range: Sane (min, max) reference voltage in volts
        current_range: Sane (min, max) reference current in amps
        voltage_zero: |mean voltage| at or below this is treated as zero
        current_zero: |mean current| at or below this is treated as zero
        window_tolerance: Slack (seconds) allowed when checking window span
    """
    min_samples: int = 10
    noise_threshold: float = 0.05
    sample_interval: float = DEFAULT_INTERVAL
    voltage_range: Tuple[float, float] = (0.5, 80.0)
    current_range: Tuple[float, float] = (0.1, 300.0)
    voltage_zero: float = 0.1
    current_zero: float = 0.05
    window_tolerance: float = 0.05

    def __post_init__(self):
        if self.min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {self.min_samples}")
        if self.noise_threshold <= 0:
            raise ValueError(f"noise_threshold must be > 0, got {self.noise_threshold}")
        if self.sample_interval <= 0:
            raise ValueError(f"sample_interval must be > 0, got {self.sample_interval}")
        for name in ("voltage_range", "current_range"):
            low, high = getattr(self, name)
            if not 0 <= low < high:
                raise ValueError(f"Invalid {name}: ({low}, {high})")

    def reference_range(self, kind: SensorKind) -> Tuple[float, float]:
        """Return the sane reference range for a sensor kind."""
        if kind is SensorKind.VOLTAGE:
            return self.voltage_range
        return self.current_range

    def zero_threshold(self, kind: SensorKind) -> float:
        """Return the |mean| below which a reading is considered zero."""
        if kind is SensorKind.VOLTAGE:
            return self.voltage_zero
        return self.current_zero

    def with_overrides(self, **kwargs) -> "CalibrationConfig":
        """Return a copy with every non-None keyword applied."""
        changes = {key: value for key, value in kwargs.items() if value is not None}
        return replace(self, **changes)
