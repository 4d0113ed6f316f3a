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

"""FIFO processing stream shared by transport deliveries and session jobs.

Transport callbacks arrive on a network thread while save, load and clear
are requested from the main thread. Every such operation is queued here and
executed one at a time, in submission order, by whichever thread finds the
stream idle.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from . import config, handlers


@dataclass
class _Job:
    seq: int
    func: Callable[..., Any]
    args: tuple
    kwargs: dict
    future: Future | None = None


@dataclass
class IngressState:
    """Mutable state for the ordered processing stream."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    queue: deque[_Job] = field(default_factory=deque)
    counter: Iterator[int] = field(default_factory=itertools.count)
    active: bool = False
    local: threading.local = field(default_factory=threading.local)


STATE = IngressState()


def _on_stream(state: IngressState) -> bool:
    """Return ``True`` when the calling thread is executing a stream job."""

    return getattr(state.local, "draining", False)


def _run_job(job: _Job) -> None:
    try:
        result = job.func(*job.args, **job.kwargs)
    except Exception as exc:
        if job.future is not None:
            job.future.set_exception(exc)
            return
        config._debug_log(
            "Stream job failed",
            context="queue.run_job",
            severity="warn",
            seq=job.seq,
            error_class=exc.__class__.__name__,
            error_message=str(exc),
        )
        return
    if job.future is not None:
        job.future.set_result(result)


def _drain(state: IngressState = STATE) -> None:
    """Execute queued jobs in FIFO order until the queue is empty.

    Parameters:
        state: Stream container holding pending jobs.
    """

    state.local.draining = True
    emptied = False
    try:
        while True:
            with state.lock:
                if not state.queue:
                    state.active = False
                    emptied = True
                    return
                job = state.queue.popleft()
            _run_job(job)
    finally:
        state.local.draining = False
        if not emptied:
            with state.lock:
                state.active = False


def _submit(
    func: Callable[..., Any],
    args: tuple,
    kwargs: dict,
    *,
    future: Future | None,
    state: IngressState,
) -> None:
    """Queue a job and drain the stream when no other thread is draining."""

    with state.lock:
        state.queue.append(
            _Job(next(state.counter), func, args, kwargs, future=future)
        )
        if state.active:
            return
        state.active = True
    _drain(state)


def on_message(
    topic: str,
    payload,
    *,
    state: IngressState = STATE,
    session: handlers.SessionState = handlers.SESSION,
) -> None:
    """Transport callback queueing a packet for :func:`handlers.route`.

    Safe to call from any thread. Deliveries are routed in the order they
    reach this function; none are dropped or duplicated.

    Parameters:
        topic: Transport topic of the packet.
        payload: Raw packet bytes or text.
        state: Stream state, injectable for testing.
        session: Session the packet is routed into.
    """

    _submit(
        handlers.route,
        (topic, payload),
        {"session": session},
        future=None,
        state=state,
    )


def run_on_stream(
    func: Callable[..., Any], *args, state: IngressState = STATE, **kwargs
) -> Any:
    """Run ``func`` as a stream job and return its result.

    The call blocks until every job queued before it, and ``func`` itself,
    have completed. Exceptions raised by ``func`` propagate to the caller.
    When invoked from inside a stream job, ``func`` runs inline.
    """

    if _on_stream(state):
        return func(*args, **kwargs)
    future: Future = Future()
    _submit(func, args, kwargs, future=future, state=state)
    return future.result()


def pending(state: IngressState = STATE) -> int:
    """Return the number of queued jobs not yet started."""

    with state.lock:
        return len(state.queue)


def _clear_queue(state: IngressState = STATE) -> None:
    """Drop pending jobs without running them.

    Parameters:
        state: Stream state to reset. Defaults to the global stream.
    """

    with state.lock:
        for job in state.queue:
            if job.future is not None:
                job.future.cancel()
        state.queue.clear()
        state.active = False


__all__ = [
    "IngressState",
    "STATE",
    "_clear_queue",
    "_drain",
    "on_message",
    "pending",
    "run_on_stream",
]
