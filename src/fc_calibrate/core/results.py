"""
Result objects for calibration runs.

Provides a unified result structure that the CLI can render as a
human-readable summary or as JSON.
"""

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from fc_calibrate.core.calibration import CalibrationFit


@dataclass
class CalibrationReport:
    """
    Outcome of one calibration run.

    Attributes:
        ok: Whether the new scale was accepted and written
        operation: Name of the operation (e.g. "calibrate")
        sensor: Sensor kind ("voltage" / "current")
        dialect: Firmware dialect of the FC
        state: Final state of the calibration state machine
        fit: Accepted fit, if any
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional data (duration, reboot status, ...)
    """
    ok: bool
    operation: str
    sensor: str = ""
    dialect: str = ""
    state: str = ""
    fit: Optional["CalibrationFit"] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Generate a human-readable summary string."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation} {self.sensor}".rstrip()]

        if self.dialect:
            lines.append(f"  Firmware: {self.dialect}")
        if self.state:
            lines.append(f"  State: {self.state}")

        if self.fit is not None:
            fit = self.fit
            unit = fit.kind.unit
            lines.append(f"  Samples: {fit.sample_count}")
            lines.append(f"  Observed mean: {fit.mean:.3f} {unit}")
            lines.append(f"  Reference: {fit.reference:.3f} {unit}")
            lines.append(f"  Noise: {fit.relative_spread * 100:.2f}%")
            lines.append(f"  Correction: x{fit.correction:.4f}")
            lines.append(f"  Scale: {fit.existing_scale:g} -> {fit.new_scale:.2f}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        fit = None
        if self.fit is not None:
            fit = asdict(self.fit)
            fit["kind"] = self.fit.kind.value
        return {
            "ok": self.ok,
            "operation": self.operation,
            "sensor": self.sensor,
            "dialect": self.dialect,
            "state": self.state,
            "fit": fit,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        sensor: str = "",
        dialect: str = "",
        **kwargs,
    ) -> "CalibrationReport":
        """Create a successful result."""
        return cls(ok=True, operation=operation, sensor=sensor, dialect=dialect, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        sensor: str = "",
        **kwargs,
    ) -> "CalibrationReport":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, sensor=sensor, **kwargs)
        result.errors.append(error)
        return result
