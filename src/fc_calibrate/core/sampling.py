"""
Timed acquisition of live (voltage, current) samples.

The loop runs at a fixed cadence anchored to its start time so that a
window of ``duration`` seconds always yields ``round(duration / interval)``
samples. Cancellation is checked before every sample; a cancelled run
never returns the samples it collected so far.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from fc_calibrate.config import DEFAULT_INTERVAL
from fc_calibrate.core.interface import FCHandle
from fc_calibrate.errors import Cancelled
from fc_calibrate.protocol.base import SensorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sample:
    """One live reading. ``timestamp`` comes from a monotonic clock."""
    voltage: float
    current: float
    timestamp: float

    def value(self, kind: SensorKind) -> float:
        """Channel value for a sensor kind."""
        return self.voltage if kind is SensorKind.VOLTAGE else self.current


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


def expected_count(duration: float, interval: float = DEFAULT_INTERVAL) -> int:
    """Number of samples taken for a window of ``duration`` seconds."""
    return max(1, int(round(duration / interval)))


def read_sample(
    handle: FCHandle,
    clock: Callable[[], float] = time.monotonic,
) -> Sample:
    """Take a single timestamped sample (live display mode)."""
    voltage, current = handle.sample()
    return Sample(voltage=voltage, current=current, timestamp=clock())


def collect(
    handle: FCHandle,
    duration: float,
    interval: float = DEFAULT_INTERVAL,
    cancel: Optional[CancelToken] = None,
    on_sample: Optional[Callable[[Sample], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Sample]:
    """
    Collect samples for ``duration`` seconds.

    Args:
        handle: Connected FCHandle
        duration: Acquisition window in seconds
        interval: Nominal time between samples in seconds
        cancel: Optional token (e.g. threading.Event) checked every iteration
        on_sample: Optional callback invoked with each new sample
        clock: Monotonic time source
        sleep: Sleep function

    Returns:
        Samples in acquisition order

    Raises:
        ValueError: If duration or interval is not positive
        Cancelled: If the token is set or the user interrupts the loop
    """
    if duration <= 0:
        raise ValueError(f"duration must be positive, got {duration}")
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")

    count = expected_count(duration, interval)
    samples: List[Sample] = []
    logger.debug(f"Collecting {count} samples over {duration}s")

    try:
        start = clock()
        for i in range(count):
            if cancel is not None and cancel.is_set():
                raise Cancelled(f"Sampling cancelled after {i}/{count} samples")

            sample = read_sample(handle, clock)
            samples.append(sample)
            if on_sample is not None:
                on_sample(sample)

            if i + 1 < count:
                delay = start + (i + 1) * interval - clock()
                if delay > 0:
                    sleep(delay)
    except KeyboardInterrupt as e:
        raise Cancelled(f"Sampling interrupted after {len(samples)}/{count} samples") from e

    logger.debug(f"Collected {len(samples)} samples")
    return samples
