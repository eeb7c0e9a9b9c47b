"""
Voltage / current scale calibration.

A calibration run samples one sensor for a fixed window, asks the user for
the value measured independently (e.g. with a multimeter), and derives a
multiplicative correction:

    correction = reference / mean(observed)
    new_scale  = existing_scale * correction

The FC reports readings already scaled by its current register, so the
correction compounds onto the stored scale and repeated runs converge.
Current scales are stored as mV per amp, i.e. they divide the raw reading;
for those registers the same correction is applied as a division.

Only the scale is corrected. A non-zero current offset (Betaflight
current_meter offset, INAV current_meter_offset) is left untouched and
makes the correction approximate: the offset is added after scaling,
so one run leaves a residual error proportional to the offset. Repeated
runs still converge while |offset| < reference. The report carries a
warning when the calibrated sensor has an offset.

compute_scale() is pure. Calibrator drives the full run against an
FCHandle:

    Idle -> SensorChecked -> (EnableSkipped | Enabled) -> Sampled
         -> Validated -> (Accepted | Rejected)
"""

import logging
import statistics
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from fc_calibrate.config import CalibrationConfig
from fc_calibrate.core.interface import FCHandle, apply_pending_changes
from fc_calibrate.core.results import CalibrationReport
from fc_calibrate.core.sampling import CancelToken, Sample, collect, expected_count
from fc_calibrate.errors import Cancelled, InvalidResults, SensorMissing
from fc_calibrate.protocol.base import SensorKind

logger = logging.getLogger(__name__)


class CalibrationState(Enum):
    IDLE = "idle"
    SENSOR_CHECKED = "sensor_checked"
    ENABLE_SKIPPED = "enable_skipped"
    ENABLED = "enabled"
    SAMPLED = "sampled"
    VALIDATED = "validated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CalibrationFit:
    """
    Accepted calibration result.

    Attributes:
        kind: Calibrated sensor
        sample_count: Number of samples used
        mean: Mean observed reading
        spread: Population standard deviation of the readings
        relative_spread: spread / |mean| (fit-quality signal, lower is better)
        reference: Externally measured ground truth
        correction: reference / mean
        existing_scale: Scale register before calibration
        new_scale: Scale register to write
    """
    kind: SensorKind
    sample_count: int
    mean: float
    spread: float
    relative_spread: float
    reference: float
    correction: float
    existing_scale: float
    new_scale: float


class CalibrationPrompt(Protocol):
    """User interaction needed by a calibration run."""

    def ask_yes_no(self, prompt: str, default: bool) -> bool: ...

    def ask_reference(self, kind: SensorKind, observed: float) -> float: ...

    def report_live_sample(self, sample: Sample) -> None: ...


def _require_samples(samples: Sequence[Sample], config: CalibrationConfig) -> None:
    if len(samples) < config.min_samples:
        raise InvalidResults(
            "too_few_samples",
            f"Only {len(samples)} samples collected, need at least {config.min_samples}",
            {"count": len(samples), "min_samples": config.min_samples},
        )


def _require_window(samples: Sequence[Sample], window: float, config: CalibrationConfig) -> None:
    span = samples[-1].timestamp - samples[0].timestamp
    # the last sample lands (count - 1) intervals after the first one
    slots = expected_count(window, config.sample_interval) - 1
    required = slots * config.sample_interval - config.window_tolerance
    if span < required:
        raise InvalidResults(
            "window_incomplete",
            f"Samples span {span:.2f}s, acquisition window was {window:g}s",
            {"span": span, "window": window},
        )


def _require_reference(kind: SensorKind, reference: float, config: CalibrationConfig) -> None:
    low, high = config.reference_range(kind)
    if reference <= 0 or not low <= reference <= high:
        raise InvalidResults(
            "reference_out_of_range",
            f"Reference {reference:g} {kind.unit} outside sane range "
            f"[{low:g}, {high:g}] {kind.unit}",
            {"reference": reference, "range": [low, high]},
        )


def compute_scale(
    samples: Sequence[Sample],
    kind: SensorKind,
    reference: float,
    existing_scale: float,
    config: Optional[CalibrationConfig] = None,
    inverse: bool = False,
    window: Optional[float] = None,
) -> CalibrationFit:
    """
    Derive a new scale from samples and a reference measurement.

    Args:
        samples: Samples of one acquisition window, in order
        kind: Sensor channel to calibrate
        reference: Independently measured value (V or A)
        existing_scale: Scale register the samples were taken with
        config: Thresholds (defaults to CalibrationConfig())
        inverse: True if the register divides the raw reading
        window: Acquisition window in seconds; checked against the
            sample timestamps when given

    Returns:
        CalibrationFit

    Raises:
        InvalidResults: If the data or the reference is unusable
    """
    config = config or CalibrationConfig()

    _require_samples(samples, config)
    if window is not None:
        _require_window(samples, window, config)
    _require_reference(kind, reference, config)

    values = [sample.value(kind) for sample in samples]
    mean = statistics.fmean(values)
    spread = statistics.pstdev(values, mu=mean)

    zero = config.zero_threshold(kind)
    if abs(mean) <= zero:
        raise InvalidResults(
            "zero_mean",
            f"Mean {kind.value} {mean:.3f} {kind.unit} is too close to zero",
            {"mean": mean, "zero_threshold": zero},
        )

    relative_spread = spread / abs(mean)
    if relative_spread > config.noise_threshold:
        raise InvalidResults(
            "too_noisy",
            f"Readings too unstable: spread {relative_spread * 100:.2f}% "
            f"exceeds {config.noise_threshold * 100:.2f}%",
            {"mean": mean, "spread": spread, "relative_spread": relative_spread},
        )

    correction = reference / mean
    if inverse:
        new_scale = existing_scale / correction
    else:
        new_scale = existing_scale * correction

    return CalibrationFit(
        kind=kind,
        sample_count=len(values),
        mean=mean,
        spread=spread,
        relative_spread=relative_spread,
        reference=reference,
        correction=correction,
        existing_scale=existing_scale,
        new_scale=new_scale,
    )


@dataclass
class CalibrationSession:
    """Data gathered during one calibration run."""
    kind: SensorKind
    duration: float
    samples: List[Sample] = field(default_factory=list)
    reference: Optional[float] = None
    fit: Optional[CalibrationFit] = None


class Calibrator:
    """
    Runs one calibration of one sensor against a connected FC.

    Example:
        calibrator = Calibrator(fc, SensorKind.VOLTAGE, duration=5, prompt=prompt)
        report = calibrator.run()
    """

    def __init__(
        self,
        handle: FCHandle,
        kind: SensorKind,
        duration: float,
        prompt: CalibrationPrompt,
        config: Optional[CalibrationConfig] = None,
        persist: bool = True,
        cancel: Optional[CancelToken] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if duration <= 0:
            raise ValueError(f"duration must be positive, got {duration}")
        self.handle = handle
        self.kind = kind
        self.duration = duration
        self.prompt = prompt
        self.config = config or CalibrationConfig()
        self.persist = persist
        self.cancel = cancel
        self._clock = clock
        self._sleep = sleep
        self.state = CalibrationState.IDLE
        self.session = CalibrationSession(kind=kind, duration=duration)

    def _rejected(self, exc: InvalidResults) -> InvalidResults:
        self.state = CalibrationState.REJECTED
        logger.warning(f"Calibration of {self.kind.value} rejected: {exc}")
        return exc

    def run(self) -> CalibrationReport:
        """
        Run the full calibration state machine.

        Returns:
            CalibrationReport for an accepted calibration

        Raises:
            SensorMissing: The board has no such sensor
            Cancelled: The user declined a step or aborted sampling
            InvalidResults: Data rejected (state is REJECTED)
        """
        kind = self.kind
        handle = self.handle

        if not handle.sensor_present(kind):
            raise SensorMissing(f"No {kind.value} sensor on this flight controller")
        self.state = CalibrationState.SENSOR_CHECKED

        if handle.sensor_enabled(kind):
            self.state = CalibrationState.ENABLE_SKIPPED
        else:
            if not self.prompt.ask_yes_no(f"The {kind.value} sensor is disabled. Enable it?", True):
                raise Cancelled(f"{kind.value} sensor left disabled")
            handle.enable_sensor(kind)
            self.state = CalibrationState.ENABLED

        what = "battery and a constant load" if kind is SensorKind.CURRENT else "battery"
        if not self.prompt.ask_yes_no(
            f"Connect the {what}. Sample {kind.value} for {self.duration:g}s now?", True
        ):
            raise Cancelled("Sampling declined")

        existing_scale = handle.read_scale(kind)
        inverse = handle.scale_is_inverse(kind)
        offset = handle.read_offset(kind)

        samples = collect(
            handle,
            self.duration,
            interval=self.config.sample_interval,
            cancel=self.cancel,
            on_sample=self.prompt.report_live_sample,
            clock=self._clock,
            sleep=self._sleep,
        )
        self.session.samples = samples
        self.state = CalibrationState.SAMPLED

        try:
            _require_samples(samples, self.config)
        except InvalidResults as e:
            raise self._rejected(e)

        observed = statistics.fmean(sample.value(kind) for sample in samples)
        reference = self.prompt.ask_reference(kind, observed)
        self.session.reference = reference

        try:
            fit = compute_scale(
                samples,
                kind,
                reference,
                existing_scale,
                config=self.config,
                inverse=inverse,
                window=self.duration,
            )
        except InvalidResults as e:
            raise self._rejected(e)
        self.session.fit = fit
        self.state = CalibrationState.VALIDATED

        try:
            handle.write_scale(kind, fit.new_scale)
        except ValueError as e:
            raise self._rejected(InvalidResults(
                "scale_out_of_range",
                str(e),
                {"new_scale": fit.new_scale},
            )) from e
        self.state = CalibrationState.ACCEPTED
        logger.info(
            f"{kind.value} scale {fit.existing_scale:g} -> {fit.new_scale:.2f} "
            f"(correction x{fit.correction:.4f}, noise {fit.relative_spread * 100:.2f}%)"
        )

        report = CalibrationReport.success(
            "calibrate",
            sensor=kind.value,
            dialect=handle.dialect,
            state=self.state.value,
            fit=fit,
            metadata={"duration": self.duration},
        )
        if offset:
            report.add_warning(
                f"{kind.value} offset {offset:g} is not compensated, re-run to converge"
            )
        if self.persist:
            rebooted = apply_pending_changes(handle, self.prompt.ask_yes_no)
            report.metadata["rebooted"] = rebooted
            if not rebooted:
                report.add_warning("New scale is not saved to EEPROM")
        return report
