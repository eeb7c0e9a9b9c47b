"""
Core module for fc-calibrate.

This module provides the single source of truth for:
- The flight controller facade and firmware autodetection (interface.py)
- Timed sample acquisition (sampling.py)
- The calibration algorithm and run state machine (calibration.py)
- Result objects (results.py)
- Standardized hints/messages (messages.py)

The CLI calls into this module rather than implementing its own logic.
"""

from .interface import FCHandle, autodetect, connect, apply_pending_changes
from .sampling import Sample, collect, read_sample, expected_count
from .calibration import (
    CalibrationConfig,
    CalibrationFit,
    CalibrationPrompt,
    CalibrationSession,
    CalibrationState,
    Calibrator,
    compute_scale,
)
from .results import CalibrationReport
from .messages import MessageLevel, HintCode, Hint, hint_for_exception

__all__ = [
    # Interface
    "FCHandle",
    "autodetect",
    "connect",
    "apply_pending_changes",
    # Sampling
    "Sample",
    "collect",
    "read_sample",
    "expected_count",
    # Calibration
    "CalibrationConfig",
    "CalibrationFit",
    "CalibrationPrompt",
    "CalibrationSession",
    "CalibrationState",
    "Calibrator",
    "compute_scale",
    # Results
    "CalibrationReport",
    # Messages
    "MessageLevel",
    "HintCode",
    "Hint",
    "hint_for_exception",
]
