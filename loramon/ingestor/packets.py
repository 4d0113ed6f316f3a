# Copyright © 2025-26 l5yth & contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Envelope parsing, packet classification and typed record decoding.

Every station packet is a JSON object sharing a small set of header fields
(the envelope). The declared ``MsgType`` string decides whether the body is
a :class:`BootupRecord` or a :class:`DataRecord`.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field

from .serialization import (
    JSON_NAME,
    FieldError,
    _get_float,
    _get_int,
    _get_str,
    _get_uint,
    _load_json_object,
)

MAX_DEVICES = 16
"""Number of device slots; valid identifiers are ``0 .. MAX_DEVICES - 1``."""


class PacketKind(enum.Enum):
    """Classification result for a station packet."""

    BOOTUP = "Bootup"
    DATA_GEN0 = "DataGen0"
    DATA_GEN1 = "DataGen1"
    DATA_GEN2 = "DataGen2"
    UNKNOWN = "Unknown"

    @property
    def is_data(self) -> bool:
        return self in _DATA_KINDS


_DATA_KINDS = frozenset(
    {PacketKind.DATA_GEN0, PacketKind.DATA_GEN1, PacketKind.DATA_GEN2}
)

_CLASSIFY_ORDER: tuple[PacketKind, ...] = (
    PacketKind.BOOTUP,
    PacketKind.DATA_GEN0,
    PacketKind.DATA_GEN1,
    PacketKind.DATA_GEN2,
)
"""Markers tested against ``MsgType``; the first match wins."""


class ErrorKind(enum.Enum):
    """Reason a packet or persistence operation was rejected."""

    MALFORMED_ENVELOPE = "MalformedEnvelope"
    INVALID_DEVICE_ID = "InvalidDeviceId"
    UNKNOWN_PACKET_TYPE = "UnknownPacketType"
    BOOTUP_DECODE_ERROR = "BootupDecodeError"
    DATA_DECODE_ERROR = "DataDecodeError"
    IO_ERROR = "IoError"


class DecodeError(ValueError):
    """Base class for packets that cannot be turned into records."""

    kind: ErrorKind = ErrorKind.MALFORMED_ENVELOPE


class MalformedEnvelope(DecodeError):
    """Raised when the payload is not a well-formed packet envelope."""

    kind = ErrorKind.MALFORMED_ENVELOPE


class InvalidDeviceId(DecodeError):
    """Raised when a device identifier lies outside ``[0, MAX_DEVICES)``."""

    kind = ErrorKind.INVALID_DEVICE_ID

    def __init__(self, dev_id: int) -> None:
        super().__init__(f"device id {dev_id} outside [0, {MAX_DEVICES})")
        self.dev_id = dev_id


class UnknownPacketType(DecodeError):
    """Raised when ``MsgType`` matches none of the known markers."""

    kind = ErrorKind.UNKNOWN_PACKET_TYPE


class BootupDecodeError(DecodeError):
    """Raised when a bootup packet body is malformed."""

    kind = ErrorKind.BOOTUP_DECODE_ERROR


class DataDecodeError(DecodeError):
    """Raised when a data packet body is malformed."""

    kind = ErrorKind.DATA_DECODE_ERROR


def _wire(name: str):
    return field(metadata={JSON_NAME: name})


@dataclass(frozen=True)
class Envelope:
    """Header fields shared by every station packet."""

    msg_id: int = _wire("MsgID")
    msg_type: str = _wire("MsgType")
    dev_id: int = _wire("DevID")
    rssi: int = _wire("RSSI")
    timestamp: int = _wire("TimeStamp")
    timestamp_fmt: str = _wire("TimeStampFmt")

    @property
    def kind(self) -> PacketKind:
        return classify_packet_type(self.msg_type)


@dataclass(frozen=True)
class BootupRecord:
    """Station configuration announced once after power-up."""

    msg_id: int = _wire("MsgID")
    msg_type: str = _wire("MsgType")
    timestamp: int = _wire("TimeStamp")
    timestamp_fmt: str = _wire("TimeStampFmt")
    rssi: int = _wire("RSSI")
    dev_id: int = _wire("DevID")
    firmware_ver: str = _wire("FirmwareVer")
    data_pack_cycle_tm: int = _wire("DataPackCycleTm")
    cfg_oled_display: int = _wire("CfgOledDisplay")
    cfg_dht_sensor: int = _wire("CfgDhtSensor")
    cfg_sr501_sensor: int = _wire("CfgSr501Sensor")
    cfg_adc_light_sensor: int = _wire("CfgAdcLightSensor")
    cfg_adc_car_bat_ain: int = _wire("CfgAdcCarBatAin")
    cfg_async_lora_event: int = _wire("CfgAsyncLoraEvent")
    sr501_pause_on_lora_tx: int = _wire("Sr501PauseOnLoraTx")
    commissioning_mode: int = _wire("CommissioningMode")
    lora_tx_power: int = _wire("LoraTxPower")
    lora_spread_factor: int = _wire("LoraSpreadFactor")


@dataclass(frozen=True)
class DataRecord:
    """Periodic sensor readings reported by a station."""

    msg_id: int = _wire("MsgID")
    msg_type: str = _wire("MsgType")
    timestamp: int = _wire("TimeStamp")
    timestamp_fmt: str = _wire("TimeStampFmt")
    rssi: int = _wire("RSSI")
    dev_id: int = _wire("DevID")
    sequ_num: int = _wire("SequNum")
    uptime: int = _wire("Uptime")
    uptime_fmt: str = _wire("UptimeFmt")
    temperature: float = _wire("Temperature")
    humidity: float = _wire("Humidity")
    motion_active: int = _wire("MotionActive")
    motion_active_time: int = _wire("MotionActiveTime")
    motion_active_count: int = _wire("MotionActiveCount")
    light_level: int = _wire("LightLevel")
    car_batt_level: float = _wire("CarBattLevel")

    @property
    def generation(self) -> int | None:
        return data_generation(self.msg_type)


def classify_packet_type(msg_type: str) -> PacketKind:
    """Return the :class:`PacketKind` declared by ``msg_type``.

    The markers are matched as case-insensitive substrings in the fixed
    order Bootup, DataGen0, DataGen1, DataGen2. A type string carrying
    several markers resolves to the first one in that order, regardless of
    where the markers appear in the string.
    """

    folded = msg_type.casefold()
    for kind in _CLASSIFY_ORDER:
        if kind.value.casefold() in folded:
            return kind
    return PacketKind.UNKNOWN


def data_generation(msg_type: str) -> int | None:
    """Return the data generation encoded in the last character of ``msg_type``.

    ``None`` signals an unknown generation and is never folded into ``0``.
    """

    if not msg_type:
        return None
    last = msg_type[-1]
    if last not in "0123456789":
        return None
    return int(last)


def validate_device_id(dev_id: int) -> int:
    """Return ``dev_id`` or raise :class:`InvalidDeviceId` when out of range."""

    if dev_id < 0 or dev_id >= MAX_DEVICES:
        raise InvalidDeviceId(dev_id)
    return dev_id


def _as_object(payload, error_cls: type[DecodeError]) -> Mapping:
    if isinstance(payload, Mapping):
        return payload
    try:
        return _load_json_object(payload)
    except ValueError as exc:
        raise error_cls(f"payload is not a JSON object: {exc}") from exc


def parse_envelope(payload) -> Envelope:
    """Parse the envelope fields of ``payload``.

    Parameters:
        payload: Raw JSON text, UTF-8 bytes or an already decoded mapping.

    Returns:
        The parsed :class:`Envelope`.

    Raises:
        MalformedEnvelope: When the payload is not a JSON object or a header
            field is missing or malformed. ``MsgType`` and ``DevID`` are
            required; the remaining header fields default to zero values.
    """

    obj = _as_object(payload, MalformedEnvelope)
    try:
        return Envelope(
            msg_id=_get_uint(obj, "MsgID"),
            msg_type=_get_str(obj, "MsgType", required=True),
            dev_id=_get_uint(obj, "DevID", required=True),
            rssi=_get_int(obj, "RSSI"),
            timestamp=_get_uint(obj, "TimeStamp"),
            timestamp_fmt=_get_str(obj, "TimeStampFmt"),
        )
    except FieldError as exc:
        raise MalformedEnvelope(str(exc)) from exc


def decode_bootup(payload) -> BootupRecord:
    """Decode ``payload`` into a :class:`BootupRecord`.

    Raises:
        BootupDecodeError: When a field carries a value of the wrong type.
    """

    obj = _as_object(payload, BootupDecodeError)
    try:
        return BootupRecord(
            msg_id=_get_uint(obj, "MsgID"),
            msg_type=_get_str(obj, "MsgType", required=True),
            timestamp=_get_uint(obj, "TimeStamp"),
            timestamp_fmt=_get_str(obj, "TimeStampFmt"),
            rssi=_get_int(obj, "RSSI"),
            dev_id=_get_uint(obj, "DevID", required=True),
            firmware_ver=_get_str(obj, "FirmwareVer"),
            data_pack_cycle_tm=_get_uint(obj, "DataPackCycleTm"),
            cfg_oled_display=_get_uint(obj, "CfgOledDisplay"),
            cfg_dht_sensor=_get_uint(obj, "CfgDhtSensor"),
            cfg_sr501_sensor=_get_uint(obj, "CfgSr501Sensor"),
            cfg_adc_light_sensor=_get_uint(obj, "CfgAdcLightSensor"),
            cfg_adc_car_bat_ain=_get_uint(obj, "CfgAdcCarBatAin"),
            cfg_async_lora_event=_get_uint(obj, "CfgAsyncLoraEvent"),
            sr501_pause_on_lora_tx=_get_uint(obj, "Sr501PauseOnLoraTx"),
            commissioning_mode=_get_uint(obj, "CommissioningMode"),
            lora_tx_power=_get_uint(obj, "LoraTxPower"),
            lora_spread_factor=_get_uint(obj, "LoraSpreadFactor"),
        )
    except FieldError as exc:
        raise BootupDecodeError(str(exc)) from exc


def decode_data(payload) -> DataRecord:
    """Decode ``payload`` into a :class:`DataRecord`.

    Raises:
        DataDecodeError: When a field carries a value of the wrong type.
    """

    obj = _as_object(payload, DataDecodeError)
    try:
        return DataRecord(
            msg_id=_get_uint(obj, "MsgID"),
            msg_type=_get_str(obj, "MsgType", required=True),
            timestamp=_get_uint(obj, "TimeStamp"),
            timestamp_fmt=_get_str(obj, "TimeStampFmt"),
            rssi=_get_int(obj, "RSSI"),
            dev_id=_get_uint(obj, "DevID", required=True),
            sequ_num=_get_uint(obj, "SequNum"),
            uptime=_get_uint(obj, "Uptime"),
            uptime_fmt=_get_str(obj, "UptimeFmt"),
            temperature=_get_float(obj, "Temperature"),
            humidity=_get_float(obj, "Humidity"),
            motion_active=_get_uint(obj, "MotionActive"),
            motion_active_time=_get_uint(obj, "MotionActiveTime"),
            motion_active_count=_get_uint(obj, "MotionActiveCount"),
            light_level=_get_uint(obj, "LightLevel"),
            car_batt_level=_get_float(obj, "CarBattLevel"),
        )
    except FieldError as exc:
        raise DataDecodeError(str(exc)) from exc


__all__ = [
    "BootupDecodeError",
    "BootupRecord",
    "DataDecodeError",
    "DataRecord",
    "DecodeError",
    "Envelope",
    "ErrorKind",
    "InvalidDeviceId",
    "MAX_DEVICES",
    "MalformedEnvelope",
    "PacketKind",
    "UnknownPacketType",
    "classify_packet_type",
    "data_generation",
    "decode_bootup",
    "decode_data",
    "parse_envelope",
    "validate_device_id",
]
