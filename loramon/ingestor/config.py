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

"""Configuration helpers for the LoRa packet ingestor."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any

DEFAULT_MQTT_HOST = "127.0.0.1"
"""Broker host used when :envvar:`MQTT_HOST` is unset."""

DEFAULT_MQTT_PORT = 1883
"""Broker port used when :envvar:`MQTT_PORT` is unset."""

DEFAULT_MQTT_TOPIC = "LoraAmbMon/Data/#"
"""Topic filter the station gateway publishes packets under."""

DEFAULT_MQTT_KEEPALIVE_SECS = 60
"""Keep-alive period negotiated with the broker."""

DEFAULT_MQTT_CLIENT_PREFIX = "LoraPackView"
"""Prefix of the generated MQTT client identifier."""

DEFAULT_STATUS_SECS = 5
"""Interval, in seconds, between connection state checks."""

DEFAULT_RECONNECT_INITIAL_DELAY_SECS = 5.0
"""Initial reconnection delay applied after connection loss."""

DEFAULT_RECONNECT_MAX_DELAY_SECS = 60.0
"""Maximum reconnection backoff delay applied by the ingestor."""

DEFAULT_CLOSE_TIMEOUT_SECS = 5.0
"""Grace period for transport shutdown routines to complete."""

MQTT_HOST = os.environ.get("MQTT_HOST", DEFAULT_MQTT_HOST)
MQTT_PORT = int(os.environ.get("MQTT_PORT", str(DEFAULT_MQTT_PORT)))
MQTT_TOPIC = os.environ.get("MQTT_TOPIC", DEFAULT_MQTT_TOPIC)
MQTT_KEEPALIVE = int(
    os.environ.get("MQTT_KEEPALIVE", str(DEFAULT_MQTT_KEEPALIVE_SECS))
)
MQTT_CLIENT_PREFIX = os.environ.get("MQTT_CLIENT_PREFIX", DEFAULT_MQTT_CLIENT_PREFIX)

DEBUG = os.environ.get("DEBUG") == "1"

LOAD_FILE = os.environ.get("LORAMON_LOAD_FILE") or None
"""Optional session file replayed into a cleared store at startup."""

SAVE_FILE = os.environ.get("LORAMON_SAVE_FILE") or None
"""Optional session file written when the daemon shuts down."""

STATUS_SECS = DEFAULT_STATUS_SECS
"""Interval, in seconds, between connection state checks."""

_RECONNECT_INITIAL_DELAY_SECS = DEFAULT_RECONNECT_INITIAL_DELAY_SECS
_RECONNECT_MAX_DELAY_SECS = DEFAULT_RECONNECT_MAX_DELAY_SECS
_CLOSE_TIMEOUT_SECS = DEFAULT_CLOSE_TIMEOUT_SECS


def _debug_log(
    message: str,
    *,
    context: str | None = None,
    severity: str = "debug",
    always: bool = False,
    **metadata: Any,
) -> None:
    """Print ``message`` with a UTC timestamp when ``DEBUG`` is enabled.

    Parameters:
        message: Text to display when debug logging is active.
        context: Optional logical component emitting the message.
        severity: Log level label to embed in the formatted output.
        always: When ``True``, bypasses the :data:`DEBUG` guard.
        **metadata: Additional structured log metadata.
    """

    normalized_severity = severity.lower()

    if not DEBUG and not always and normalized_severity == "debug":
        return

    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    timestamp = timestamp.replace("+00:00", "Z")
    parts = [f"[{timestamp}]", "[loramon]", f"[{normalized_severity}]"]
    if context:
        parts.append(f"context={context}")
    for key, value in sorted(metadata.items()):
        parts.append(f"{key}={value!r}")
    parts.append(message)
    print(" ".join(parts))


__all__ = [
    "DEBUG",
    "LOAD_FILE",
    "MQTT_CLIENT_PREFIX",
    "MQTT_HOST",
    "MQTT_KEEPALIVE",
    "MQTT_PORT",
    "MQTT_TOPIC",
    "SAVE_FILE",
    "STATUS_SECS",
    "_CLOSE_TIMEOUT_SECS",
    "_RECONNECT_INITIAL_DELAY_SECS",
    "_RECONNECT_MAX_DELAY_SECS",
    "_debug_log",
]
