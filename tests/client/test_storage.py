from __future__ import annotations

from pathlib import Path

from heyso.client.storage import JsonFileStorage, MemoryStorage


def test_memory_storage_copies_values() -> None:
    storage = MemoryStorage()
    value = {"tags": ["a"]}

    storage.set("k", value)
    value["tags"].append("b")

    assert storage.get("k") == {"tags": ["a"]}
    storage.remove("k")
    storage.remove("k")
    assert storage.get("k") is None


def test_json_file_storage_round_trips_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "storage.json"

    JsonFileStorage(path).set("auth", {"accessToken": "t"})
    reopened = JsonFileStorage(path)

    assert reopened.get("auth") == {"accessToken": "t"}
    reopened.remove("auth")
    assert JsonFileStorage(path).get("auth") is None


def test_json_file_storage_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    storage = JsonFileStorage(path)

    assert storage.get("auth") is None
    storage.set("diaryToast:lastShownDate", "2025-06-01")
    assert storage.get("diaryToast:lastShownDate") == "2025-06-01"
