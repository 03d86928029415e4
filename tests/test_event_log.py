import json
from pathlib import Path

import pytest

from tether.event_log import EventLog, EventLogEntry


def test_record_and_tail_in_memory() -> None:
    log = EventLog(max_entries=3)
    for index in range(5):
        log.record("tick", f"event {index}")

    assert [entry.message for entry in log.tail()] == ["event 2", "event 3", "event 4"]
    assert [entry.message for entry in log.tail(1)] == ["event 4"]
    assert log.path is None


def test_record_drops_empty_metadata() -> None:
    log = EventLog()

    entry = log.record(
        "state_changed",
        "idle -> connecting",
        state="connecting",
        previous_state="idle",
        metadata={"ssid": "Phone", "error": None},
    )

    assert entry.metadata == {"ssid": "Phone"}
    payload = entry.to_dict()
    assert payload["state"] == "connecting"
    assert payload["previous_state"] == "idle"
    assert log.record("note", "plain").to_dict().keys() == {"timestamp", "event", "message"}


def test_entries_persist_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    log = EventLog(path)
    log.record("hotspot_attempt_started", "Connecting to Phone", metadata={"ssid": "Phone"})

    path.write_text(path.read_text(encoding="utf-8") + "garbage\n\n", encoding="utf-8")
    reloaded = EventLog(path)

    entries = reloaded.tail()
    assert len(entries) == 1
    assert entries[0].event == "hotspot_attempt_started"
    assert entries[0].metadata == {"ssid": "Phone"}
    line = path.read_text(encoding="utf-8").splitlines()[0]
    assert json.loads(line)["message"] == "Connecting to Phone"


def test_persisted_file_is_trimmed_on_load(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    log = EventLog(path, max_entries=10)
    for index in range(6):
        log.record("tick", f"event {index}")

    reloaded = EventLog(path, max_entries=3)

    assert [entry.message for entry in reloaded.tail()] == ["event 3", "event 4", "event 5"]
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["event 3", "event 4", "event 5"]

    reloaded.record("tick", "event 6")
    assert len(path.read_text(encoding="utf-8").splitlines()) == 4


def test_from_dict_rejects_incomplete_payloads() -> None:
    assert EventLogEntry.from_dict(["not", "a", "dict"]) is None
    assert EventLogEntry.from_dict({"event": "x"}) is None

    entry = EventLogEntry.from_dict({"event": "x", "message": "y", "timestamp": "bad"})

    assert entry is not None
    assert entry.timestamp > 0


def test_max_entries_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EventLog(max_entries=0)
