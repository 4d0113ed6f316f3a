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

"""Packet dispatch: validate, decode, aggregate and notify."""

from __future__ import annotations

from dataclasses import dataclass, field

from pubsub import pub

from . import config
from .packets import (
    BootupRecord,
    DataRecord,
    DecodeError,
    ErrorKind,
    MalformedEnvelope,
    PacketKind,
    UnknownPacketType,
    data_generation,
    decode_bootup,
    decode_data,
    parse_envelope,
    validate_device_id,
)
from .serialization import _load_json_object
from .store import ALL_DEVICES, DeviceStateStore

TOPIC_COUNTER = "loramon.counter"
"""Pubsub topic carrying ``total`` after every received packet."""

TOPIC_APPLIED = "loramon.applied"
"""Pubsub topic carrying ``dev_id``, ``kind``, ``record`` and ``generation``."""

TOPIC_REJECTED = "loramon.rejected"
"""Pubsub topic carrying ``reason``, ``raw_topic`` and ``raw_payload``."""


@dataclass
class SessionState:
    """Mutable state of one ingest session."""

    store: DeviceStateStore = field(default_factory=DeviceStateStore)
    bootup_records: list[BootupRecord] = field(default_factory=list)
    packet_counter: int = 0
    last_msg_id: int | None = None
    last_dev_id: int | None = None

    @property
    def data_records(self) -> list[DataRecord]:
        """Data records of every device in arrival order.

        The list is read from the store's global history, so it always
        matches ``store.history_for(ALL_DEVICES)``.
        """

        return self.store.history_for(ALL_DEVICES)

    def timeline(self) -> list[BootupRecord | DataRecord]:
        """Return bootup and data records merged by ``TimeStamp``.

        Records with equal timestamps keep bootups ahead of data records and
        arrival order within each kind. The result is computed on demand and
        does not influence persistence.
        """

        merged: list[BootupRecord | DataRecord] = [
            *self.bootup_records,
            *self.data_records,
        ]
        return sorted(merged, key=lambda record: record.timestamp)


SESSION = SessionState()
"""Shared session state used by the daemon."""


@dataclass(frozen=True)
class RouteResult:
    """Outcome of routing a single packet."""

    counter: int
    kind: PacketKind | None = None
    record: BootupRecord | DataRecord | None = None
    generation: int | None = None
    reason: ErrorKind | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


def _payload_text(payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", "replace")
    return str(payload)


def _publish(topic: str, **data) -> None:
    """Send ``data`` on ``topic`` without letting listener errors escape."""

    try:
        pub.sendMessage(topic, **data)
    except Exception as exc:
        config._debug_log(
            "Notification listener failed",
            context="handlers.publish",
            severity="warn",
            topic=topic,
            error_class=exc.__class__.__name__,
            error_message=str(exc),
        )


def _reject(
    session: SessionState, reason: ErrorKind, topic, payload, error: Exception
) -> RouteResult:
    config._debug_log(
        "Rejected packet",
        context="handlers.route",
        severity="warn",
        counter=session.packet_counter,
        reason=reason.value,
        topic=topic,
        error_message=str(error),
    )
    _publish(TOPIC_REJECTED, reason=reason, raw_topic=topic, raw_payload=payload)
    return RouteResult(
        counter=session.packet_counter, reason=reason, error=str(error)
    )


def route(topic: str, payload, *, session: SessionState = SESSION) -> RouteResult:
    """Validate, decode and aggregate a single packet.

    Parameters:
        topic: Transport topic the packet arrived on, or the restore topic
            when replaying a saved session.
        payload: JSON text or UTF-8 bytes.
        session: Session state to update.

    Returns:
        A :class:`RouteResult`. Rejections are reported through the result
        and the ``loramon.rejected`` notification; no exception escapes for
        malformed packets.
    """

    session.packet_counter += 1
    _publish(TOPIC_COUNTER, total=session.packet_counter)

    if config.DEBUG:
        config._debug_log(
            f"Packet Counter: {session.packet_counter}",
            context="handlers.route",
            topic=topic,
            payload=_payload_text(payload),
        )

    try:
        try:
            packet = _load_json_object(payload)
        except ValueError as exc:
            raise MalformedEnvelope(str(exc)) from exc
        envelope = parse_envelope(packet)
        validate_device_id(envelope.dev_id)
        kind = envelope.kind
        if kind is PacketKind.UNKNOWN:
            raise UnknownPacketType(f"unexpected packet type {envelope.msg_type!r}")
        if kind is PacketKind.BOOTUP:
            record = decode_bootup(packet)
        else:
            record = decode_data(packet)
        # Records carry their own DevID field independent of the envelope.
        validate_device_id(record.dev_id)
    except DecodeError as exc:
        return _reject(session, exc.kind, topic, payload, exc)

    generation: int | None = None
    if isinstance(record, BootupRecord):
        session.store.apply_bootup(record.dev_id, record)
        session.bootup_records.append(record)
    else:
        generation = data_generation(record.msg_type)
        session.store.apply_data(record.dev_id, record)

    session.last_msg_id = envelope.msg_id
    session.last_dev_id = envelope.dev_id

    _publish(
        TOPIC_APPLIED,
        dev_id=record.dev_id,
        kind=kind,
        record=record,
        generation=generation,
    )
    return RouteResult(
        counter=session.packet_counter,
        kind=kind,
        record=record,
        generation=generation,
    )


def clear_all(session: SessionState = SESSION) -> None:
    """Reset counters, chronological lists and all device slots."""

    session.store.clear()
    session.bootup_records.clear()
    session.packet_counter = 0
    session.last_msg_id = None
    session.last_dev_id = None
    config._debug_log("Cleared all session data", context="handlers.clear_all")
    _publish(TOPIC_COUNTER, total=0)


def session_summary(session: SessionState = SESSION) -> dict:
    """Return a JSON-friendly overview of ``session``.

    Only devices that reported at least one record are listed.
    """

    devices: dict[str, dict] = {}
    for dev_id in session.store.active_devices():
        state = session.store.device(dev_id)
        entry: dict[str, object] = {"history_len": len(state.history)}
        if state.last_bootup is not None:
            entry["firmware_ver"] = state.last_bootup.firmware_ver
            entry["data_pack_cycle_tm"] = state.last_bootup.data_pack_cycle_tm
        if state.last_data is not None:
            last = state.last_data
            gen = last.generation
            entry.update(
                {
                    "msg_id": last.msg_id,
                    "timestamp_fmt": last.timestamp_fmt,
                    "rssi": last.rssi,
                    "generation": "?" if gen is None else gen,
                    "temperature": last.temperature,
                    "humidity": last.humidity,
                    "light_level": last.light_level,
                    "car_batt_level": last.car_batt_level,
                }
            )
        devices[str(dev_id)] = entry

    return {
        "packet_counter": session.packet_counter,
        "last_msg_id": session.last_msg_id,
        "last_dev_id": session.last_dev_id,
        "bootup_records": len(session.bootup_records),
        "data_records": len(session.data_records),
        "devices": devices,
    }


__all__ = [
    "RouteResult",
    "SESSION",
    "SessionState",
    "TOPIC_APPLIED",
    "TOPIC_COUNTER",
    "TOPIC_REJECTED",
    "clear_all",
    "route",
    "session_summary",
]
