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

"""Per-device aggregation of bootup and data records.

The store keeps one slot per device identifier. It is mutated only from the
single processing stream (see :mod:`loramon.ingestor.queue`), so readers
reacting to change notifications observe a consistent state without locks.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .packets import MAX_DEVICES, BootupRecord, DataRecord, InvalidDeviceId


class _AllDevices(enum.Enum):
    ALL = "-[all]-"


ALL_DEVICES = _AllDevices.ALL
"""Selector for :meth:`DeviceStateStore.history_for` spanning every device."""


@dataclass
class DeviceState:
    """Aggregated state of a single device slot."""

    last_bootup: BootupRecord | None = None
    last_data: DataRecord | None = None
    history: list[DataRecord] = field(default_factory=list)

    def copy(self) -> "DeviceState":
        return DeviceState(self.last_bootup, self.last_data, list(self.history))


class DeviceStateStore:
    """Fixed-size container of :class:`DeviceState` slots.

    Besides the per-device histories the store owns the global arrival-ordered
    data list. :attr:`handlers.SessionState.data_records` reads it from here,
    which makes it the single copy that is persisted and replayed.
    """

    def __init__(self) -> None:
        self._slots: list[DeviceState] = []
        self._all_history: list[DataRecord] = []
        self.clear()

    def _slot(self, dev_id: int) -> DeviceState:
        if isinstance(dev_id, bool) or not isinstance(dev_id, int):
            raise TypeError(f"device id must be an int, got {dev_id!r}")
        if not 0 <= dev_id < MAX_DEVICES:
            raise InvalidDeviceId(dev_id)
        return self._slots[dev_id]

    def clear(self) -> None:
        """Reset every slot and drop all recorded history."""

        self._slots = [DeviceState() for _ in range(MAX_DEVICES)]
        self._all_history = []

    def apply_bootup(self, dev_id: int, record: BootupRecord) -> None:
        """Replace the stored bootup record of ``dev_id``.

        Applying the same record repeatedly leaves the store unchanged after
        the first application.
        """

        self._slot(dev_id).last_bootup = record

    def apply_data(self, dev_id: int, record: DataRecord) -> None:
        """Record ``record`` as the latest reading of ``dev_id``.

        The record is appended to the device history, which is never pruned
        within a session.
        """

        slot = self._slot(dev_id)
        slot.last_data = record
        slot.history.append(record)
        self._all_history.append(record)

    def last_bootup(self, dev_id: int) -> BootupRecord | None:
        return self._slot(dev_id).last_bootup

    def last_data(self, dev_id: int) -> DataRecord | None:
        return self._slot(dev_id).last_data

    def history_for(self, dev_id) -> list[DataRecord]:
        """Return the arrival-ordered data history of ``dev_id``.

        Parameters:
            dev_id: Device identifier or :data:`ALL_DEVICES` to obtain the
                chronological list of data records from every device.

        Returns:
            A new list; mutating it does not affect the store.
        """

        if dev_id is ALL_DEVICES:
            return list(self._all_history)
        return list(self._slot(dev_id).history)

    def device(self, dev_id: int) -> DeviceState:
        """Return a copy of the slot belonging to ``dev_id``."""

        return self._slot(dev_id).copy()

    def snapshot(self) -> list[DeviceState]:
        """Return copies of all slots indexed by device identifier."""

        return [slot.copy() for slot in self._slots]

    def active_devices(self) -> list[int]:
        """Return identifiers of slots holding at least one record."""

        return [
            dev_id
            for dev_id, slot in enumerate(self._slots)
            if slot.last_bootup is not None or slot.last_data is not None
        ]


__all__ = [
    "ALL_DEVICES",
    "DeviceState",
    "DeviceStateStore",
]
