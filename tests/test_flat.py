"""Tests for the flat key/prefix directory helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from commander_store.providers._flat import (
    DEFAULT_PAGE_SIZE,
    as_utc,
    directory_key,
    has_children,
    page_limit,
    partition_listing,
    strip_etag,
)


class TestDirectoryKey:
    @pytest.mark.parametrize(("key", "expected"), [("a/b", "a/b/"), ("a/b/", "a/b/"), ("/a/", "a/"), ("", ""), ("/", "")])
    def test_normalized(self, key: str, expected: str) -> None:
        assert directory_key(key) == expected


class TestPartition:
    def test_one_level(self) -> None:
        partition = partition_listing(
            "a/",
            "/",
            [("a/", "marker"), ("a/x.txt", 1), ("a/z.txt", 2)],
            ["a/b/"],
        )
        assert [name for name, _ in partition.files] == ["x.txt", "z.txt"]
        assert partition.directories == [("b", "a/b/")]

    def test_deeper_keys_skipped(self) -> None:
        partition = partition_listing("", "/", [("top.txt", 1), ("d/deep.txt", 2), ("d/", 3)], [])
        assert [name for name, _ in partition.files] == ["top.txt"]

    def test_flat_listing_keeps_nested_keys(self) -> None:
        partition = partition_listing("a/", "", [("a/b/c.txt", 1), ("a/b/", 2)], [])
        assert [name for name, _ in partition.files] == ["b/c.txt"]
        assert partition.directories == []

    def test_duplicate_prefixes_collapsed(self) -> None:
        partition = partition_listing("", "/", [], ["d/", "d/", "e/"])
        assert [name for name, _ in partition.directories] == ["d", "e"]

    def test_foreign_prefix_ignored(self) -> None:
        partition = partition_listing("a/", "/", [("b/x", 1)], ["b/c/"])
        assert partition.files == []
        assert partition.directories == []


class TestPageLimit:
    def test_default(self) -> None:
        assert page_limit(None) == DEFAULT_PAGE_SIZE

    def test_explicit(self) -> None:
        assert page_limit(7) == 7

    @pytest.mark.parametrize("size", [0, -1])
    def test_non_positive(self, size: int) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            page_limit(size)


class TestHasChildren:
    def test_marker_only(self) -> None:
        assert has_children("d/", ["d/"]) is False

    def test_with_child(self) -> None:
        assert has_children("d/", ["d/", "d/x"]) is True

    def test_empty(self) -> None:
        assert has_children("d/", []) is False


class TestNormalizers:
    def test_strip_etag(self) -> None:
        assert strip_etag('"abc"') == "abc"
        assert strip_etag("abc") == "abc"
        assert strip_etag('""') is None
        assert strip_etag(None) is None

    def test_as_utc_naive(self) -> None:
        assert as_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_as_utc_converts_offset(self) -> None:
        value = datetime(2024, 1, 1, 2, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(value) == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert as_utc(value).tzinfo is timezone.utc  # type: ignore[union-attr]

    def test_as_utc_iso_string(self) -> None:
        assert as_utc("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", 12345])
    def test_as_utc_unusable(self, value: object) -> None:
        assert as_utc(value) is None
