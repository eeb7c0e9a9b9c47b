"""
Dialect registry for supported flight controller firmwares.

Provides a single source of truth for:
- Which dialects exist and which driver implements each one
- The fixed order in which autodetection probes them
- Per-dialect display names and notes

Usage:
    from fc_calibrate.protocol.registry import list_dialects, get_dialect

    for config in list_dialects():
        print(config.name, config.display_name)

    driver = get_dialect("inav").create_driver(transport)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Type

from fc_calibrate.protocol.base import DialectDriver
from fc_calibrate.protocol.betaflight import BetaflightDriver
from fc_calibrate.protocol.inav import INAVDriver

if TYPE_CHECKING:
    from fc_calibrate.protocol.transport import SerialTransport


@dataclass(frozen=True)
class DialectConfig:
    """
    Registration entry for one firmware dialect.

    Attributes:
        name: Stable identifier used on the command line (e.g. "inav")
        display_name: Human-readable firmware name
        driver: DialectDriver subclass implementing the dialect
        framing: Short description of the wire framing
        priority: Probe order (lower probes first)
        notes: Free-form remarks shown by the CLI
    """
    name: str
    display_name: str
    driver: Type[DialectDriver]
    framing: str
    priority: int
    notes: List[str] = field(default_factory=list)

    def create_driver(self, transport: "SerialTransport", **kwargs) -> DialectDriver:
        """Instantiate the driver on an open transport."""
        return self.driver(transport, **kwargs)


# ============================================================================
# DIALECT REGISTRY
# ============================================================================

_DIALECT_REGISTRY: Dict[str, DialectConfig] = {}


def _register_dialect(config: DialectConfig) -> None:
    """Register a dialect configuration."""
    if config.name in _DIALECT_REGISTRY:
        raise ValueError(f"Dialect already registered: {config.name}")
    _DIALECT_REGISTRY[config.name] = config


def _init_registry() -> None:
    """Initialize the registry with the built-in dialects."""

    _register_dialect(DialectConfig(
        name="betaflight",
        display_name="Betaflight",
        driver=BetaflightDriver,
        framing="MSP v1 ($M, XOR checksum)",
        priority=0,
        notes=[
            "Meter source changes take effect after save + reboot.",
        ],
    ))

    _register_dialect(DialectConfig(
        name="inav",
        display_name="INAV",
        driver=INAVDriver,
        framing="MSP v2 ($X, CRC-8 DVB-S2)",
        priority=1,
        notes=[
            "Meters are configured through named settings.",
            "Feature changes take effect after save + reboot.",
        ],
    ))


_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_dialects() -> List[DialectConfig]:
    """
    List registered dialects in probe order.

    Returns:
        Dialect configurations sorted by priority.
    """
    return sorted(_DIALECT_REGISTRY.values(), key=lambda config: config.priority)


def dialect_names() -> List[str]:
    """Names of registered dialects in probe order."""
    return [config.name for config in list_dialects()]


def get_dialect(name: str) -> Optional[DialectConfig]:
    """
    Get configuration for a dialect.

    Args:
        name: Dialect name (case-insensitive)

    Returns:
        DialectConfig or None if not found.
    """
    return _DIALECT_REGISTRY.get(name.lower())
