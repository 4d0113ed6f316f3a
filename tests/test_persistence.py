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
"""Tests for session files in :mod:`loramon.ingestor.persistence`."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from pubsub import pub

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from loramon.ingestor import config, handlers, persistence  # noqa: E402
from loramon.ingestor.packets import ErrorKind  # noqa: E402
from loramon.ingestor.store import ALL_DEVICES  # noqa: E402
from station_packets import bootup, data, encode  # noqa: E402

TOPIC = "LoraAmbMon/Data/Station01"


@pytest.fixture(autouse=True)
def reset_pubsub(monkeypatch):
    """Drop pubsub listeners and silence debug output between tests."""

    monkeypatch.setattr(config, "DEBUG", False)
    pub.unsubAll()
    yield
    pub.unsubAll()


class RecordingProgress:
    """Progress observer remembering every callback."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def begin(self, total: int) -> None:
        self.calls.append(("begin", total))

    def step(self) -> None:
        self.calls.append(("step",))

    def end(self) -> None:
        self.calls.append(("end",))


def _populated_session() -> handlers.SessionState:
    session = handlers.SessionState()
    handlers.route(TOPIC, encode(data(0, MsgID=2)), session=session)
    handlers.route(TOPIC, encode(bootup(MsgID=1)), session=session)
    handlers.route(TOPIC, encode(data(2, MsgID=3, DevID=4)), session=session)
    return session


def test_save_and_reload_restores_records(tmp_path):
    """A saved session replays into an equivalent cleared session."""

    original = _populated_session()
    path = tmp_path / "session.txt"

    written = persistence.save_session(path, original)

    restored = handlers.SessionState()
    handlers.route(TOPIC, encode(data(1, DevID=9)), session=restored)
    handlers.clear_all(restored)
    routed = persistence.load_packet_lists(path, session=restored)

    assert written == 3
    assert routed == 3
    assert len(restored.store.history_for(ALL_DEVICES)) == 2
    assert restored.store.last_bootup(1) == original.store.last_bootup(1)
    assert restored.bootup_records == original.bootup_records
    assert restored.data_records == original.data_records
    assert restored.store.history_for(9) == []
    assert restored.packet_counter == 3


def test_file_layout_puts_bootups_first(tmp_path):
    """Records are written as JSON blocks separated by blank lines."""

    session = _populated_session()
    path = tmp_path / "session.txt"

    persistence.save_session(path, session)

    text = path.read_text(encoding="utf-8")
    blocks = text.split("\n\n")
    assert blocks[-1] == ""
    decoded = [json.loads(block) for block in blocks[:-1]]
    assert [block["MsgID"] for block in decoded] == [1, 2, 3]
    assert decoded[0]["MsgType"] == "StationBootup"
    assert decoded[0]["CommissioningMode"] == 0
    assert decoded[2]["DevID"] == 4
    assert set(decoded[1]) >= {"Temperature", "CarBattLevel", "UptimeFmt"}


def test_round_trip_loses_interleaving(tmp_path):
    """Replay reorders records into bootups then data."""

    session = _populated_session()
    path = tmp_path / "session.txt"
    persistence.save_session(path, session)

    restored = handlers.SessionState()
    persistence.load_packet_lists(path, session=restored)

    assert restored.last_msg_id == 3
    assert [r.msg_id for r in restored.data_records] == [2, 3]


def test_load_accepts_crlf_delimiters(tmp_path):
    """Blocks separated by CRLF blank lines are split correctly."""

    path = tmp_path / "windows.txt"
    content = "\r\n\r\n".join(
        json.dumps(packet) for packet in (bootup(), data(0), data(1))
    )
    path.write_bytes((content + "\r\n\r\n").encode("utf-8"))

    session = handlers.SessionState()
    routed = persistence.load_packet_lists(path, session=session)

    assert routed == 3
    assert len(session.bootup_records) == 1
    assert len(session.data_records) == 2


def test_load_accepts_pretty_printed_blocks(tmp_path):
    """Multi-line JSON blocks are replayed as single packets."""

    path = tmp_path / "pretty.txt"
    content = "\n\n".join(json.dumps(packet, indent=2) for packet in (bootup(), data()))
    path.write_text(content + "\n\n\n\n", encoding="utf-8")

    session = handlers.SessionState()

    assert persistence.load_packet_lists(path, session=session) == 2
    assert session.store.last_data(1) is not None


def test_load_routes_with_restore_topic(tmp_path):
    """Replayed packets use the restore topic and keep rejections."""

    seen = []

    def on_rejected(reason, raw_topic, raw_payload):
        seen.append((reason, raw_topic))

    pub.subscribe(on_rejected, handlers.TOPIC_REJECTED)
    path = tmp_path / "mixed.txt"
    path.write_text(
        json.dumps(bootup()) + "\n\n" + "garbage" + "\n\n", encoding="utf-8"
    )

    session = handlers.SessionState()
    routed = persistence.load_packet_lists(path, session=session)

    assert routed == 2
    assert session.packet_counter == 2
    assert seen == [(ErrorKind.MALFORMED_ENVELOPE, persistence.RESTORE_TOPIC)]


def test_load_continues_past_deeply_nested_block(tmp_path):
    """A block nested beyond the decoder's depth is rejected, not fatal."""

    path = tmp_path / "nested.txt"
    path.write_text(
        "[" * 100000 + "]" * 100000 + "\n\n" + json.dumps(data(0)) + "\n\n",
        encoding="utf-8",
    )
    session = handlers.SessionState()

    routed = persistence.load_packet_lists(path, session=session)

    assert routed == 2
    assert session.packet_counter == 2
    assert len(session.data_records) == 1


def test_load_does_not_clear_existing_state(tmp_path):
    """Loading merges into whatever the session already holds."""

    path = tmp_path / "one.txt"
    path.write_text(json.dumps(data(0, DevID=2)) + "\n\n", encoding="utf-8")
    session = handlers.SessionState()
    handlers.route(TOPIC, encode(data(0, DevID=3)), session=session)

    persistence.load_packet_lists(path, session=session)

    assert len(session.store.history_for(ALL_DEVICES)) == 2
    assert session.packet_counter == 2


def test_progress_callbacks(tmp_path):
    """Save and load report begin, one step per record, and end."""

    session = _populated_session()
    path = tmp_path / "session.txt"
    save_progress = RecordingProgress()
    load_progress = RecordingProgress()

    persistence.save_session(path, session, save_progress)
    persistence.load_packet_lists(
        path, session=handlers.SessionState(), progress=load_progress
    )

    expected = [("begin", 3), ("step",), ("step",), ("step",), ("end",)]
    assert save_progress.calls == expected
    assert load_progress.calls == expected


def test_save_empty_session_writes_empty_file(tmp_path):
    """An empty session produces an empty file."""

    path = tmp_path / "empty.txt"

    assert persistence.save_session(path, handlers.SessionState()) == 0
    assert path.read_text(encoding="utf-8") == ""
    assert persistence.load_packet_lists(path, session=handlers.SessionState()) == 0


def test_save_to_unwritable_path_raises(tmp_path):
    """Creating the destination inside a missing directory fails."""

    progress = RecordingProgress()

    with pytest.raises(persistence.PersistenceError) as excinfo:
        persistence.save_session(
            tmp_path / "missing" / "session.txt", handlers.SessionState(), progress
        )

    assert excinfo.value.kind is ErrorKind.IO_ERROR
    assert isinstance(excinfo.value, OSError)
    assert progress.calls == []


def test_load_missing_file_raises(tmp_path):
    """Reading a file that does not exist fails with an I/O error."""

    with pytest.raises(persistence.PersistenceError):
        persistence.load_packet_lists(
            tmp_path / "absent.txt", session=handlers.SessionState()
        )


def test_load_directory_raises(tmp_path):
    """A directory is not a readable session file."""

    with pytest.raises(persistence.PersistenceError):
        persistence.load_packet_lists(tmp_path, session=handlers.SessionState())


def test_load_invalid_utf8_raises(tmp_path):
    """Undecodable bytes are reported as an I/O error."""

    path = tmp_path / "binary.txt"
    path.write_bytes(b"\xff\xfe\xfa")

    with pytest.raises(persistence.PersistenceError):
        persistence.load_packet_lists(path, session=handlers.SessionState())
