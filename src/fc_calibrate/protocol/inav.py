"""
INAV dialect (MSP v2).

INAV exposes battery meter configuration through named settings
(MSP2_COMMON_SETTING / MSP2_COMMON_SET_SETTING), and switches the meters
on and off through feature flags (MSP_FEATURE / MSP_SET_FEATURE).

Setting request payload:  [ name (ASCII) | 0x00 ]
Setting response payload: [ raw little-endian value ]
Set request payload:      [ name (ASCII) | 0x00 | raw value ]
"""

import logging
import struct
from typing import Optional, Tuple

from fc_calibrate.errors import ProtocolViolation
from fc_calibrate.protocol.base import DialectDriver, SensorKind, register_value
from fc_calibrate.protocol.msp import (
    MSP2_COMMON_SET_SETTING,
    MSP2_COMMON_SETTING,
    MSP2_INAV_ANALOG,
    MSP_EEPROM_WRITE,
    MSP_FEATURE,
    MSP_REBOOT,
    MSP_SET_FEATURE,
    MSPv2Frame,
)

logger = logging.getLogger(__name__)

FEATURE_VBAT = 1 << 1
FEATURE_CURRENT_METER = 1 << 11

METER_TYPE_ADC = 1

# (setting name, struct format) per sensor kind
_METER_TYPE_SETTING = {
    SensorKind.VOLTAGE: ("vbat_meter_type", "<B"),
    SensorKind.CURRENT: ("current_meter_type", "<B"),
}
_SCALE_SETTING = {
    SensorKind.VOLTAGE: ("vbat_scale", "<H"),
    SensorKind.CURRENT: ("current_meter_scale", "<h"),
}
_OFFSET_SETTING = ("current_meter_offset", "<h")

_FEATURE_BIT = {
    SensorKind.VOLTAGE: FEATURE_VBAT,
    SensorKind.CURRENT: FEATURE_CURRENT_METER,
}

VBAT_SCALE_RANGE = (0, 65535)
CURRENT_SCALE_RANGE = (-10000, 10000)


class INAVDriver(DialectDriver):
    """Driver for INAV flight controllers."""

    name = "inav"
    variant = b"INAV"
    frame_type = MSPv2Frame

    def _get_setting(self, name: str, fmt: str) -> int:
        payload = self.read(MSP2_COMMON_SETTING, name.encode("ascii") + b"\x00")
        if len(payload) != struct.calcsize(fmt):
            raise ProtocolViolation(
                f"{self.name}: setting {name} returned {len(payload)} bytes, "
                f"expected {struct.calcsize(fmt)}"
            )
        (value,) = self.unpack(fmt, payload, f"setting {name}")
        return value

    def _set_setting(self, name: str, fmt: str, value: int) -> None:
        payload = name.encode("ascii") + b"\x00" + struct.pack(fmt, value)
        self.request(MSP2_COMMON_SET_SETTING, payload)

    def _features(self) -> int:
        (mask,) = self.unpack("<I", self.read(MSP_FEATURE), "feature")
        return mask

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def sensor_present(self, kind: SensorKind) -> bool:
        return self._get_setting(*_METER_TYPE_SETTING[kind]) == METER_TYPE_ADC

    def sensor_enabled(self, kind: SensorKind) -> bool:
        return bool(self._features() & _FEATURE_BIT[kind])

    def enable_sensor(self, kind: SensorKind) -> None:
        mask = self._features() | _FEATURE_BIT[kind]
        self.request(MSP_SET_FEATURE, struct.pack("<I", mask))
        logger.info(f"{self.name}: feature mask set to 0x{mask:08X}")

    def sample(self) -> Tuple[float, float]:
        payload = self.read(MSP2_INAV_ANALOG)
        _flags, vbat, amperage = self.unpack("<BHh", payload, "analog")
        return self.check_sample(vbat / 100.0, amperage / 100.0)

    def read_scale(self, kind: SensorKind) -> float:
        return float(self._get_setting(*_SCALE_SETTING[kind]))

    def read_offset(self, kind: SensorKind) -> Optional[float]:
        if kind is SensorKind.VOLTAGE:
            return None
        return float(self._get_setting(*_OFFSET_SETTING))

    def write_scale(self, kind: SensorKind, scale: float) -> None:
        name, fmt = _SCALE_SETTING[kind]
        limits = VBAT_SCALE_RANGE if kind is SensorKind.VOLTAGE else CURRENT_SCALE_RANGE
        value = register_value(scale, *limits, what=name)
        self._set_setting(name, fmt, value)
        logger.info(f"{self.name}: {name} set to {value}")

    def save_settings(self) -> None:
        self.request(MSP_EEPROM_WRITE)
        logger.info(f"{self.name}: settings written to EEPROM")

    def reboot(self) -> None:
        self.request(MSP_REBOOT)
        logger.info(f"{self.name}: reboot requested")
