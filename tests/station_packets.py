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
"""Sample station packets shared by the ingestor test modules."""

from __future__ import annotations

import json
from typing import Any

BOOTUP_DEV1: dict[str, Any] = {
    "MsgID": 1,
    "MsgType": "StationBootup",
    "TimeStamp": 1678546265,
    "TimeStampFmt": "2023/03/11 - 15:51:05",
    "RSSI": -34,
    "DevID": 1,
    "FirmwareVer": "0.99",
    "DataPackCycleTm": 180,
    "CfgOledDisplay": 1,
    "CfgDhtSensor": 1,
    "CfgSr501Sensor": 1,
    "CfgAdcLightSensor": 1,
    "CfgAdcCarBatAin": 1,
    "CfgAsyncLoraEvent": 0,
    "Sr501PauseOnLoraTx": 1,
    "LoraTxPower": 20,
    "LoraSpreadFactor": 12,
}

DATA_GEN0_DEV1: dict[str, Any] = {
    "MsgID": 2,
    "MsgType": "StationDataGen0",
    "TimeStamp": 1678546328,
    "TimeStampFmt": "2023/03/11 - 15:52:08",
    "RSSI": -143,
    "DevID": 1,
    "SequNum": 1,
    "Uptime": 66,
    "UptimeFmt": "0d/00:01:06",
    "Temperature": 23.5,
    "Humidity": 41.0,
    "MotionActive": 1,
    "MotionActiveTime": 360,
    "MotionActiveCount": 6400,
    "LightLevel": 60,
    "CarBattLevel": 11.5,
}


def bootup(**overrides: Any) -> dict[str, Any]:
    """Return a bootup packet with ``overrides`` applied."""

    packet = dict(BOOTUP_DEV1)
    packet.update(overrides)
    return packet


def data(gen: int = 0, **overrides: Any) -> dict[str, Any]:
    """Return a data packet of generation ``gen`` with ``overrides`` applied."""

    packet = dict(DATA_GEN0_DEV1)
    packet["MsgType"] = f"StationDataGen{gen}"
    packet.update(overrides)
    return packet


def encode(packet: dict[str, Any], *, indent: int | None = 2) -> bytes:
    """Serialise ``packet`` the way the station gateway publishes it."""

    return json.dumps(packet, indent=indent).encode("utf-8")
