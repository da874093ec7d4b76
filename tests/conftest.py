from __future__ import annotations

import json
from typing import Any

import pytest

from presets.errors import ListingError, SourceReadError
from presets.models import SourceFile
from presets.store import RecordStore


def preset(*nodes: dict[str, Any]) -> dict[str, Any]:
    return {"body": {"objects": list(nodes)}}


class FakeSource:
    """In-memory source: name -> (change marker, JSON text)."""

    description = "fake://presets"

    def __init__(self) -> None:
        self.files: dict[str, tuple[str, str]] = {}
        self.broken: set[str] = set()
        self.fail_listing = False
        self.reads: list[str] = []

    def put(self, name: str, document: Any, marker: str = "v1") -> None:
        text = document if isinstance(document, str) else json.dumps(document)
        self.files[name] = (marker, text)

    def remove(self, name: str) -> None:
        del self.files[name]

    def list_files(self) -> list[SourceFile]:
        if self.fail_listing:
            raise ListingError("listing exploded")
        return [
            SourceFile(file_name=name, key=f"presets/{name}", last_modified=marker)
            for name, (marker, _) in sorted(self.files.items())
        ]

    def read_text(self, file: SourceFile) -> str:
        self.reads.append(file.file_name)
        if file.file_name in self.broken:
            raise SourceReadError(file.file_name, "download failed")
        return self.files[file.file_name][1]


@pytest.fixture
def source() -> FakeSource:
    src = FakeSource()
    src.put(
        "template_a.json",
        preset(
            {"type": "group", "name": "G", "objects": [{"type": "rect", "className": "Box"}]},
            {"type": "text", "controlTitle": "Team Name", "fontSize": 24},
        ),
    )
    src.put(
        "template_b.json",
        preset({"type": "image", "controlTitle": "Logo", "visible": True, "src": {"url": "x.png"}}),
    )
    return src


@pytest.fixture
def store(tmp_path) -> RecordStore:
    return RecordStore(tmp_path / "presets.db")
