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

"""MQTT transport delivering station packets to the ingress stream."""

from __future__ import annotations

import uuid
from typing import Callable

import paho.mqtt.client as mqtt

from . import config


class TransportUnavailable(RuntimeError):
    """Raised when the MQTT broker cannot be reached."""


def _client_id(prefix: str) -> str:
    """Return a unique client identifier derived from ``prefix``."""

    return f"{prefix}_{str(uuid.uuid4())[:13]}"


class MqttTransport:
    """Thin wrapper around a paho-mqtt client.

    Parameters:
        on_message: Callable receiving ``(topic, payload)`` for every
            publish. It is invoked on paho's network thread.
        host: Broker host, defaults to :data:`config.MQTT_HOST`.
        port: Broker port, defaults to :data:`config.MQTT_PORT`.
        topic: Topic filter, defaults to :data:`config.MQTT_TOPIC`.
        keepalive: Keep-alive period in seconds.
        client_factory: Optional replacement for :class:`mqtt.Client`,
            primarily for tests.
    """

    def __init__(
        self,
        on_message: Callable[[str, bytes], None],
        *,
        host: str | None = None,
        port: int | None = None,
        topic: str | None = None,
        keepalive: int | None = None,
        client_factory: Callable[..., mqtt.Client] | None = None,
    ) -> None:
        self._on_message = on_message
        self.host = host if host is not None else config.MQTT_HOST
        self.port = port if port is not None else config.MQTT_PORT
        self.topic = topic if topic is not None else config.MQTT_TOPIC
        self.keepalive = keepalive if keepalive is not None else config.MQTT_KEEPALIVE
        self.client_id = _client_id(config.MQTT_CLIENT_PREFIX)
        self._client_factory = client_factory or mqtt.Client
        self._client: mqtt.Client | None = None

    def connect(self) -> None:
        """Connect to the broker and start the network loop.

        Raises:
            TransportUnavailable: When the connection attempt fails.
        """

        client = self._client_factory(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message

        config._debug_log(
            "Connecting to broker",
            context="interfaces.connect",
            severity="info",
            host=self.host,
            port=self.port,
            client_id=self.client_id,
        )
        try:
            client.connect(self.host, self.port, keepalive=self.keepalive)
        except (OSError, ValueError) as exc:
            raise TransportUnavailable(
                f"connecting to {self.host}:{self.port} failed: {exc}"
            ) from exc
        client.loop_start()
        self._client = client

    def _handle_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            config._debug_log(
                "Broker refused connection",
                context="interfaces.on_connect",
                severity="error",
                reason_code=str(reason_code),
            )
            return
        client.subscribe(self.topic, qos=0)
        config._debug_log(
            "Subscribed topic",
            context="interfaces.on_connect",
            severity="info",
            topic=self.topic,
        )

    def _handle_disconnect(
        self, client, userdata, flags, reason_code, properties=None
    ):
        config._debug_log(
            "Disconnected from broker",
            context="interfaces.on_disconnect",
            severity="warn",
            reason_code=str(reason_code),
        )

    def _handle_message(self, client, userdata, msg) -> None:
        self._on_message(msg.topic, msg.payload)

    def is_connected(self) -> bool:
        """Return ``True`` while the broker connection is alive."""

        if self._client is None:
            return False
        return bool(self._client.is_connected())

    def disconnect(self) -> None:
        """Disconnect from the broker and stop the network loop."""

        client = self._client
        if client is None:
            return
        self._client = None
        try:
            if client.is_connected():
                client.disconnect()
        finally:
            client.loop_stop()


__all__ = [
    "MqttTransport",
    "TransportUnavailable",
]
