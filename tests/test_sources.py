from __future__ import annotations

import io
import os
from datetime import UTC, datetime

import pytest

from presets.config import load_config
from presets.errors import ListingError, SourceReadError
from presets.models import SourceFile
from presets.sources import LocalDirectorySource, NameFilter, S3Source, make_source


def test_name_filter() -> None:
    accept = NameFilter(prefix="template_", exclude=["school_"])
    assert accept("template_team.json")
    assert not accept("template_school_team.json")
    assert not accept("other_team.json")
    assert not accept("template_team.txt")
    assert not accept("")
    assert NameFilter()("anything.json")


def test_local_listing_applies_filter(tmp_path) -> None:
    (tmp_path / "b.json").write_text("{}")
    (tmp_path / "a.json").write_text("{}")
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "dir.json").mkdir()
    files = LocalDirectorySource(tmp_path).list_files()
    assert [f.file_name for f in files] == ["a.json", "b.json"]
    assert files[0].key == str(tmp_path / "a.json")
    assert files[0].last_modified


def test_local_marker_changes_with_mtime(tmp_path) -> None:
    path = tmp_path / "a.json"
    path.write_text("{}")
    source = LocalDirectorySource(tmp_path)
    before = source.list_files()[0].last_modified
    os.utime(path, (1_000_000_000, 1_000_000_000))
    assert source.list_files()[0].last_modified != before


def test_local_missing_directory_is_a_listing_error(tmp_path) -> None:
    with pytest.raises(ListingError):
        LocalDirectorySource(tmp_path / "missing").list_files()


def test_local_read_errors(tmp_path) -> None:
    (tmp_path / "bad.json").write_bytes(b"\xff\xfe{")
    source = LocalDirectorySource(tmp_path)
    (file,) = source.list_files()
    with pytest.raises(SourceReadError) as info:
        source.read_text(file)
    assert info.value.file_name == "bad.json"
    with pytest.raises(SourceReadError):
        source.read_text(SourceFile("gone.json", str(tmp_path / "gone.json"), "x"))


class _Paginator:
    def __init__(self, pages) -> None:
        self.pages = pages
        self.calls: list[dict] = []

    def paginate(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.pages, Exception):
            raise self.pages
        return iter(self.pages)


class _S3Client:
    def __init__(self, pages, bodies=None) -> None:
        self.paginator = _Paginator(pages)
        self.bodies = bodies or {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self.paginator

    def get_object(self, Bucket, Key):
        if Key not in self.bodies:
            raise KeyError(Key)
        return {"Body": io.BytesIO(self.bodies[Key].encode("utf-8"))}


WHEN = datetime(2026, 1, 1, tzinfo=UTC)


def test_s3_listing_strips_prefix_and_filters() -> None:
    client = _S3Client([
        {"Contents": [
            {"Key": "p/template_a.json", "LastModified": WHEN},
            {"Key": "p/template_school_b.json", "LastModified": WHEN},
        ]},
        {"Contents": [{"Key": "p/readme.md", "LastModified": WHEN}]},
        {},
    ])
    source = S3Source("bucket", "p/", NameFilter(exclude=["school_"]), client=client)
    files = source.list_files()
    assert files == [SourceFile("template_a.json", "p/template_a.json", WHEN.isoformat())]
    assert client.paginator.calls == [{"Bucket": "bucket", "Prefix": "p/"}]
    assert source.description == "s3://bucket/p/"


def test_s3_listing_failure() -> None:
    source = S3Source("bucket", client=_S3Client(RuntimeError("denied")))
    with pytest.raises(ListingError):
        source.list_files()


def test_s3_read_text() -> None:
    client = _S3Client([], bodies={"p/a.json": '{"body": {}}'})
    source = S3Source("bucket", "p/", client=client)
    assert source.read_text(SourceFile("a.json", "p/a.json", "m")) == '{"body": {}}'
    with pytest.raises(SourceReadError):
        source.read_text(SourceFile("b.json", "p/b.json", "m"))


def test_s3_requires_bucket() -> None:
    with pytest.raises(ValueError):
        S3Source("", client=_S3Client([]))


def test_make_source_local(tmp_path) -> None:
    (tmp_path / "presets.toml").write_text('[source]\npath = "files"\nname_prefix = "template_"\n')
    source = make_source(load_config(tmp_path))
    assert isinstance(source, LocalDirectorySource)
    assert source.path == tmp_path / "files"
    assert source.name_filter.prefix == "template_"
