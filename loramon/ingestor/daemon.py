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

"""Runtime entry point for the LoRa packet ingestor."""

from __future__ import annotations

import functools
import json
import signal
import threading
import time

from pubsub import pub

from . import config, handlers, interfaces, persistence, queue


def _log_applied(dev_id, kind, record, generation) -> None:
    """Pubsub listener tracing every accepted record."""

    config._debug_log(
        "Applied record",
        context="daemon.applied",
        dev_id=dev_id,
        kind=kind.value,
        msg_id=record.msg_id,
        generation="?" if generation is None else generation,
    )


_LOG_LISTENERS = ((_log_applied, handlers.TOPIC_APPLIED),)


def _subscribe_log_topics() -> list[str]:
    """Subscribe the trace listeners to the ingestor notification topics."""

    subscribed = []
    for listener, topic in _LOG_LISTENERS:
        try:
            pub.subscribe(listener, topic)
            subscribed.append(topic)
        except Exception as exc:  # pragma: no cover
            config._debug_log(f"failed to subscribe to {topic!r}: {exc}")
    return subscribed


class _LoggingProgress:
    """Progress observer reporting bulk operations through the debug log."""

    def __init__(self, context: str) -> None:
        self.context = context
        self.total = 0
        self.done = 0

    def begin(self, total: int) -> None:
        self.total = total
        self.done = 0
        config._debug_log(
            "Progress started", context=self.context, severity="info", total=total
        )

    def step(self) -> None:
        self.done += 1

    def end(self) -> None:
        config._debug_log(
            "Progress finished",
            context=self.context,
            severity="info",
            done=self.done,
            total=self.total,
        )


def _clear_and_load(path: str, session: handlers.SessionState) -> int:
    handlers.clear_all(session)
    return persistence.load_packet_lists(
        path, session=session, progress=_LoggingProgress("daemon.load")
    )


def _replay_file(
    path: str, session: handlers.SessionState, state: queue.IngressState
) -> bool:
    """Replay ``path`` into a cleared ``session`` on the processing stream."""

    try:
        queue.run_on_stream(_clear_and_load, path, session, state=state)
    except persistence.PersistenceError as exc:
        config._debug_log(
            "Loading session file failed",
            context="daemon.load",
            severity="error",
            path=path,
            error_message=str(exc),
        )
        return False
    return True


def _save_file(
    path: str, session: handlers.SessionState, state: queue.IngressState
) -> bool:
    """Save ``session`` to ``path`` on the processing stream."""

    try:
        queue.run_on_stream(
            persistence.save_session,
            path,
            session,
            _LoggingProgress("daemon.save"),
            state=state,
        )
    except persistence.PersistenceError as exc:
        config._debug_log(
            "Saving session file failed",
            context="daemon.save",
            severity="error",
            path=path,
            error_message=str(exc),
        )
        return False
    return True


def _close_transport(transport) -> None:
    """Disconnect ``transport`` while respecting configured timeouts."""

    if transport is None:
        return

    def _do_close() -> None:
        try:
            transport.disconnect()
        except Exception as exc:  # pragma: no cover
            config._debug_log(
                "Error closing transport",
                context="daemon.close",
                severity="warn",
                error_class=exc.__class__.__name__,
                error_message=str(exc),
            )

    if config._CLOSE_TIMEOUT_SECS <= 0:
        _do_close()
        return

    close_thread = threading.Thread(
        target=_do_close, name="loramon-close", daemon=True
    )
    close_thread.start()
    close_thread.join(config._CLOSE_TIMEOUT_SECS)
    if close_thread.is_alive():
        config._debug_log(
            "Transport close timed out",
            context="daemon.close",
            severity="warn",
            timeout_seconds=config._CLOSE_TIMEOUT_SECS,
        )


def _next_delay(retry_delay: float) -> float:
    if config._RECONNECT_MAX_DELAY_SECS <= 0:
        return retry_delay
    return min(
        retry_delay * 2 if retry_delay else config._RECONNECT_INITIAL_DELAY_SECS,
        config._RECONNECT_MAX_DELAY_SECS,
    )


def main(
    transport=None,
    *,
    session: handlers.SessionState = handlers.SESSION,
    state: queue.IngressState = queue.STATE,
    stop: threading.Event | None = None,
) -> None:
    """Run the ingestor until interrupted.

    Parameters:
        transport: Object exposing ``connect``, ``disconnect`` and
            ``is_connected``. Defaults to an :class:`interfaces.MqttTransport`
            feeding :func:`queue.on_message`.
        session: Session state packets are routed into.
        state: Processing stream shared by deliveries and file operations.
        stop: Optional event ending the run loop, primarily for tests.
    """

    subscribed = _subscribe_log_topics()
    if subscribed:
        config._debug_log(
            "Subscribed to notification topics",
            context="daemon.subscribe",
            topics=subscribed,
        )

    if config.LOAD_FILE:
        _replay_file(config.LOAD_FILE, session, state)

    if transport is None:
        transport = interfaces.MqttTransport(
            functools.partial(queue.on_message, state=state, session=session)
        )

    stop = stop or threading.Event()

    def handle_sigterm(*_args) -> None:
        stop.set()

    def handle_sigint(signum, frame) -> None:
        if stop.is_set():
            signal.default_int_handler(signum, frame)
            return
        stop.set()

    if threading.current_thread() == threading.main_thread():
        signal.signal(signal.SIGINT, handle_sigint)
        signal.signal(signal.SIGTERM, handle_sigterm)

    config._debug_log(
        "Ingestor starting",
        context="daemon.main",
        severity="info",
        host=config.MQTT_HOST,
        port=config.MQTT_PORT,
        topic=config.MQTT_TOPIC,
    )

    retry_delay = max(0.0, config._RECONNECT_INITIAL_DELAY_SECS)
    connected_at: float | None = None
    confirmed = False
    try:
        while not stop.is_set():
            if connected_at is None:
                try:
                    transport.connect()
                except interfaces.TransportUnavailable as exc:
                    config._debug_log(
                        "Failed to connect transport",
                        context="daemon.transport",
                        severity="warn",
                        error_message=str(exc),
                        retry_in=retry_delay,
                    )
                    stop.wait(retry_delay)
                    retry_delay = _next_delay(retry_delay)
                    continue
                connected_at = time.monotonic()
                confirmed = False
            elif transport.is_connected():
                if not confirmed:
                    # Backoff resets only once the broker has accepted us.
                    confirmed = True
                    retry_delay = max(0.0, config._RECONNECT_INITIAL_DELAY_SECS)
            elif confirmed:
                config._debug_log(
                    "Transport connection lost",
                    context="daemon.transport",
                    severity="warn",
                    online_secs=int(time.monotonic() - connected_at),
                )
                _close_transport(transport)
                connected_at = None
                continue
            else:
                config._debug_log(
                    "Transport never came up",
                    context="daemon.transport",
                    severity="warn",
                    retry_in=retry_delay,
                )
                _close_transport(transport)
                connected_at = None
                stop.wait(retry_delay)
                retry_delay = _next_delay(retry_delay)
                continue

            stop.wait(config.STATUS_SECS)
    except KeyboardInterrupt:  # pragma: no cover - interactive only
        config._debug_log(
            "Received KeyboardInterrupt; shutting down",
            context="daemon.main",
            severity="info",
        )
        stop.set()
    finally:
        _close_transport(transport)
        if config.SAVE_FILE:
            _save_file(config.SAVE_FILE, session, state)
        summary = queue.run_on_stream(handlers.session_summary, session, state=state)
        config._debug_log(
            json.dumps(summary, sort_keys=True),
            context="daemon.summary",
            severity="info",
        )


__all__ = [
    "main",
]
