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

"""Save and replay the chronological packet lists.

A session file is UTF-8 text holding one JSON object per block with blocks
separated by a blank line. All bootup records precede all data records.
Loading routes every block through :func:`handlers.route` with
:data:`RESTORE_TOPIC` as the topic.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Protocol

from . import config, handlers
from .packets import BootupRecord, DataRecord, ErrorKind
from .serialization import record_to_line

RECORD_DELIMITERS: tuple[str, ...] = ("\r\n\r\n", "\n\n")
"""Blank-line separators recognised between record blocks."""

RESTORE_TOPIC = "{Restore}"
"""Topic substituted for replayed records."""


class PersistenceError(OSError):
    """Raised when a session file cannot be created, written or read."""

    kind = ErrorKind.IO_ERROR


class ProgressReporter(Protocol):
    """Callbacks observing bulk save and load operations."""

    def begin(self, total: int) -> None: ...

    def step(self) -> None: ...

    def end(self) -> None: ...


class _NullProgress:
    def begin(self, total: int) -> None:
        pass

    def step(self) -> None:
        pass

    def end(self) -> None:
        pass


_DELIMITER_RE = re.compile("|".join(re.escape(d) for d in RECORD_DELIMITERS))


def _split_blocks(text: str) -> list[str]:
    """Split ``text`` on any delimiter in :data:`RECORD_DELIMITERS`.

    At each position the delimiters are tried in declaration order, so
    ``"\\r\\n\\r\\n"`` wins over ``"\\n\\n"``. Empty pieces are discarded.
    """

    return [block for block in _DELIMITER_RE.split(text) if block]


def save_packet_lists(
    path: str | Path,
    bootup_records: Iterable[BootupRecord],
    data_records: Iterable[DataRecord],
    progress: ProgressReporter | None = None,
) -> int:
    """Write both chronological lists to ``path``.

    Parameters:
        path: Destination file; created or truncated.
        bootup_records: Bootup records in arrival order.
        data_records: Data records in arrival order.
        progress: Optional progress observer.

    Returns:
        Number of records written.

    Raises:
        PersistenceError: When the file cannot be created or written. A
            partially written file may remain and should be discarded.
    """

    progress = progress or _NullProgress()
    bootups = list(bootup_records)
    data = list(data_records)
    total = len(bootups) + len(data)

    config._debug_log(
        "Saving session",
        context="persistence.save",
        severity="info",
        path=str(path),
        bootup_records=len(bootups),
        data_records=len(data),
    )
    try:
        handle = open(path, "w", encoding="utf-8", newline="\n")
    except OSError as exc:
        raise PersistenceError(f"creating {path} failed: {exc}") from exc

    progress.begin(total)
    try:
        with handle:
            for record in (*bootups, *data):
                handle.write(record_to_line(record))
                handle.write("\n\n")
                progress.step()
            handle.flush()
    except OSError as exc:
        raise PersistenceError(f"writing {path} failed: {exc}") from exc
    finally:
        progress.end()

    config._debug_log(
        "Saved session", context="persistence.save", severity="info", records=total
    )
    return total


def load_packet_lists(
    path: str | Path,
    *,
    session: handlers.SessionState = handlers.SESSION,
    progress: ProgressReporter | None = None,
) -> int:
    """Replay every record stored in ``path`` into ``session``.

    The session is not cleared first; call :func:`handlers.clear_all`
    beforehand for a clean replay. Blocks that fail validation are rejected
    exactly as live packets would be.

    Returns:
        Number of non-empty blocks routed.

    Raises:
        PersistenceError: When the file cannot be read or decoded as UTF-8.
    """

    progress = progress or _NullProgress()
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PersistenceError(f"loading {path} failed: {exc}") from exc

    blocks = _split_blocks(text)
    config._debug_log(
        "Loading session",
        context="persistence.load",
        severity="info",
        path=str(path),
        blocks=len(blocks),
    )

    routed = 0
    progress.begin(len(blocks))
    try:
        for block in blocks:
            packet = block.strip()
            if packet:
                handlers.route(RESTORE_TOPIC, packet, session=session)
                routed += 1
            progress.step()
    finally:
        progress.end()

    config._debug_log(
        "Loaded session",
        context="persistence.load",
        severity="info",
        routed=routed,
        packet_counter=session.packet_counter,
    )
    return routed


def save_session(
    path: str | Path,
    session: handlers.SessionState = handlers.SESSION,
    progress: ProgressReporter | None = None,
) -> int:
    """Save both chronological lists held by ``session``."""

    return save_packet_lists(
        path, session.bootup_records, session.data_records, progress
    )


__all__ = [
    "PersistenceError",
    "ProgressReporter",
    "RECORD_DELIMITERS",
    "RESTORE_TOPIC",
    "load_packet_lists",
    "save_packet_lists",
    "save_session",
]
