"""
fc-calibrate - Voltage and current sensor calibration for flight controllers

Detects the firmware (Betaflight or INAV) over MSP, samples the battery
sensors and writes back a corrected scale.
"""

__version__ = "0.1.0"

from fc_calibrate.protocol import SerialTransport, SensorKind
from fc_calibrate.core import FCHandle, Calibrator, autodetect, connect

__all__ = [
    "SerialTransport",
    "SensorKind",
    "FCHandle",
    "Calibrator",
    "autodetect",
    "connect",
    "__version__",
]
