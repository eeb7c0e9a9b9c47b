"""
Betaflight dialect (MSP v1).

Battery sensing in Betaflight is split across three places:

- MSP_VOLTAGE_METER_CONFIG / MSP_CURRENT_METER_CONFIG list the meters the
  board provides, with their type and scale registers.
- MSP_BATTERY_CONFIG selects which meter source feeds the battery
  voltage/current (NONE, ADC, ...). A sensor is "enabled" when its source
  is the ADC.
- MSP_ANALOG reports the live voltage (0.01 V) and amperage (0.01 A).
"""

import logging
import struct
from typing import List, Optional, Tuple

from fc_calibrate.errors import ProtocolViolation
from fc_calibrate.protocol.base import DialectDriver, SensorKind, register_value
from fc_calibrate.protocol.msp import (
    MSP_ANALOG,
    MSP_BATTERY_CONFIG,
    MSP_CURRENT_METER_CONFIG,
    MSP_EEPROM_WRITE,
    MSP_REBOOT,
    MSP_SET_BATTERY_CONFIG,
    MSP_SET_CURRENT_METER_CONFIG,
    MSP_SET_VOLTAGE_METER_CONFIG,
    MSP_VOLTAGE_METER_CONFIG,
    MSPv1Frame,
)

logger = logging.getLogger(__name__)

# Meter types as reported in MSP_*_METER_CONFIG
VOLTAGE_SENSOR_TYPE_ADC = 0
CURRENT_SENSOR_TYPE_ADC = 1

# Meter sources in MSP_BATTERY_CONFIG
METER_SOURCE_NONE = 0
METER_SOURCE_ADC = 1

# Byte offsets of the meter sources inside MSP_BATTERY_CONFIG
_SOURCE_OFFSET = {SensorKind.VOLTAGE: 5, SensorKind.CURRENT: 6}
_BATTERY_CONFIG_MIN_LEN = 7

# Register ranges accepted by the firmware
VBAT_SCALE_RANGE = (1, 255)
CURRENT_SCALE_RANGE = (-16000, 16000)

REBOOT_FIRMWARE = 0


class BetaflightDriver(DialectDriver):
    """Driver for Betaflight flight controllers."""

    name = "betaflight"
    variant = b"BTFL"
    frame_type = MSPv1Frame

    # ------------------------------------------------------------------
    # Meter configuration
    # ------------------------------------------------------------------

    def _voltage_meters(self) -> List[Tuple[int, int, int, int, int]]:
        """Return (id, type, vbatscale, resdivval, resdivmultiplier) per meter."""
        payload = self.read(MSP_VOLTAGE_METER_CONFIG)
        return self._meter_entries(payload, "<BBBBB", "voltage meter config")

    def _current_meters(self) -> List[Tuple[int, int, int, int]]:
        """Return (id, type, scale, offset) per meter."""
        payload = self.read(MSP_CURRENT_METER_CONFIG)
        return self._meter_entries(payload, "<BBhh", "current meter config")

    def _meter_entries(self, payload: bytes, fmt: str, what: str) -> list:
        (count,) = self.unpack("<B", payload, what)
        entry_size = struct.calcsize(fmt)
        entries = []
        offset = 1
        for _ in range(count):
            (length,) = self.unpack("<B", payload, what, offset)
            if length < entry_size:
                raise ProtocolViolation(
                    f"{self.name}: {what} entry too short ({length} < {entry_size})"
                )
            entries.append(self.unpack(fmt, payload, what, offset + 1))
            offset += 1 + length
        return entries

    def _adc_voltage_meter(self) -> Optional[Tuple[int, int, int, int, int]]:
        for meter in self._voltage_meters():
            if meter[1] == VOLTAGE_SENSOR_TYPE_ADC:
                return meter
        return None

    def _adc_current_meter(self) -> Optional[Tuple[int, int, int, int]]:
        for meter in self._current_meters():
            if meter[1] == CURRENT_SENSOR_TYPE_ADC:
                return meter
        return None

    def _require_voltage_meter(self) -> Tuple[int, int, int, int, int]:
        meter = self._adc_voltage_meter()
        if meter is None:
            raise ProtocolViolation(f"{self.name}: board reports no ADC voltage meter")
        return meter

    def _require_current_meter(self) -> Tuple[int, int, int, int]:
        meter = self._adc_current_meter()
        if meter is None:
            raise ProtocolViolation(f"{self.name}: board reports no ADC current meter")
        return meter

    def _battery_config(self) -> bytes:
        payload = self.read(MSP_BATTERY_CONFIG)
        if len(payload) < _BATTERY_CONFIG_MIN_LEN:
            raise ProtocolViolation(
                f"{self.name}: battery config too short ({len(payload)} bytes)"
            )
        return payload

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def sensor_present(self, kind: SensorKind) -> bool:
        if kind is SensorKind.VOLTAGE:
            return self._adc_voltage_meter() is not None
        return self._adc_current_meter() is not None

    def sensor_enabled(self, kind: SensorKind) -> bool:
        source = self._battery_config()[_SOURCE_OFFSET[kind]]
        return source == METER_SOURCE_ADC

    def enable_sensor(self, kind: SensorKind) -> None:
        config = bytearray(self._battery_config())
        config[_SOURCE_OFFSET[kind]] = METER_SOURCE_ADC
        self.request(MSP_SET_BATTERY_CONFIG, bytes(config))
        logger.info(f"{self.name}: {kind.value} meter source set to ADC")

    def sample(self) -> Tuple[float, float]:
        payload = self.read(MSP_ANALOG)
        legacy_vbat, _mah, _rssi, amperage = self.unpack("<BHHh", payload, "analog")
        if len(payload) >= 9:
            (voltage,) = self.unpack("<H", payload, "analog", 7)
            volts = voltage / 100.0
        else:
            volts = legacy_vbat / 10.0
        return self.check_sample(volts, amperage / 100.0)

    def read_scale(self, kind: SensorKind) -> float:
        if kind is SensorKind.VOLTAGE:
            return float(self._require_voltage_meter()[2])
        return float(self._require_current_meter()[2])

    def read_offset(self, kind: SensorKind) -> Optional[float]:
        if kind is SensorKind.VOLTAGE:
            return None
        meter = self._adc_current_meter()
        return float(meter[3]) if meter else None

    def write_scale(self, kind: SensorKind, scale: float) -> None:
        if kind is SensorKind.VOLTAGE:
            meter_id, _type, _scale, resdivval, resdivmultiplier = self._require_voltage_meter()
            value = register_value(scale, *VBAT_SCALE_RANGE, what="vbatscale")
            payload = struct.pack("<BBBB", meter_id, value, resdivval, resdivmultiplier)
            self.request(MSP_SET_VOLTAGE_METER_CONFIG, payload)
        else:
            meter_id, _type, _scale, offset = self._require_current_meter()
            value = register_value(scale, *CURRENT_SCALE_RANGE, what="current scale")
            payload = struct.pack("<Bhh", meter_id, value, offset)
            self.request(MSP_SET_CURRENT_METER_CONFIG, payload)
        logger.info(f"{self.name}: {kind.value} scale set to {value}")

    def save_settings(self) -> None:
        self.request(MSP_EEPROM_WRITE)
        logger.info(f"{self.name}: settings written to EEPROM")

    def reboot(self) -> None:
        self.request(MSP_REBOOT, bytes([REBOOT_FIRMWARE]))
        logger.info(f"{self.name}: reboot requested")
