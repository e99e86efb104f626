"""Provider conformance suite: the shared contract, run against every provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from commander_store._capabilities import Capability, CapabilitySet
from commander_store._errors import AlreadyExists, DirectoryNotEmpty, NotFound, UnsupportedOperation
from commander_store._models import ListResult, Obj
from commander_store._provider import ObjectStore, Scheme
from commander_store._uri import parse_uri

if TYPE_CHECKING:
    from pathlib import Path

    from tests.providers.conftest import StoreUnderTest


def _collect(store: StoreUnderTest, uri: str, **options: object) -> list[Obj]:
    items: list[Obj] = []
    token = None
    while True:
        page = store.provider.list(uri, page_token=token, **options)  # type: ignore[arg-type]
        items.extend(page.items)
        token = page.next_page_token
        if token is None:
            return items


class TestProviderIdentity:
    """Scheme, capabilities and protocol conformance."""

    def test_satisfies_protocol(self, store: StoreUnderTest) -> None:
        assert isinstance(store.provider, ObjectStore)

    def test_scheme_matches_root(self, store: StoreUnderTest) -> None:
        assert isinstance(store.provider.scheme, Scheme)
        assert store.provider.scheme.value == parse_uri(store.root).scheme

    def test_declares_core_capabilities(self, store: StoreUnderTest) -> None:
        caps = store.provider.capabilities
        assert isinstance(caps, CapabilitySet)
        for cap in (Capability.LIST, Capability.STAT, Capability.GET, Capability.PUT, Capability.DELETE):
            assert caps.supports(cap)


class TestPutGet:
    """Round trip through put and get."""

    def test_round_trip(self, store: StoreUnderTest, tmp_path: Path) -> None:
        payload = b"hello world\n" * 100
        store.provider.put(store.source(payload), store.uri("docs/a.txt"))
        dest = tmp_path / "out" / "nested" / "a.txt"
        store.provider.get(store.uri("docs/a.txt"), dest)
        assert dest.read_bytes() == payload

    def test_put_returns_file_obj(self, store: StoreUnderTest) -> None:
        obj = store.provider.put(store.source(b"12345"), store.uri("x.bin"))
        assert obj.is_dir is False
        assert obj.name == "x.bin"
        assert obj.size == 5

    def test_stat_size_after_put(self, store: StoreUnderTest) -> None:
        store.provider.put(store.source(b"0123456789"), store.uri("sized.txt"))
        assert store.provider.stat(store.uri("sized.txt")).size == 10

    def test_put_empty_file(self, store: StoreUnderTest, tmp_path: Path) -> None:
        store.provider.put(store.source(b""), store.uri("empty.txt"))
        dest = tmp_path / "empty.out"
        store.provider.get(store.uri("empty.txt"), dest)
        assert dest.read_bytes() == b""

    def test_put_overwrites(self, store: StoreUnderTest) -> None:
        store.add("over.txt", b"first")
        store.provider.put(store.source(b"second!"), store.uri("over.txt"))
        assert store.provider.stat(store.uri("over.txt")).size == 7

    def test_get_missing_raises(self, store: StoreUnderTest, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            store.provider.get(store.uri("missing.txt"), tmp_path / "x")

    def test_get_directory_raises(self, store: StoreUnderTest, tmp_path: Path) -> None:
        store.add("folder/inner.txt")
        with pytest.raises(UnsupportedOperation):
            store.provider.get(store.uri("folder/"), tmp_path / "x")

    def test_put_onto_directory_raises(self, store: StoreUnderTest) -> None:
        store.add("taken/inner.txt")
        with pytest.raises(AlreadyExists):
            store.provider.put(store.source(b"x"), store.uri("taken"))

    def test_put_missing_source_raises(self, store: StoreUnderTest, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            store.provider.put(tmp_path / "nope.bin", store.uri("a.bin"))


class TestStatExists:
    """stat() and exists() for files and directories."""

    def test_stat_file(self, store: StoreUnderTest) -> None:
        store.add("s/file.txt", b"abc")
        obj = store.provider.stat(store.uri("s/file.txt"))
        assert obj.is_dir is False
        assert obj.name == "file.txt"
        assert obj.uri == store.uri("s/file.txt")

    def test_stat_directory(self, store: StoreUnderTest) -> None:
        store.add("s/file.txt")
        obj = store.provider.stat(store.uri("s/"))
        assert obj.is_dir is True
        assert obj.size == 0
        assert obj.checksum is None
        assert obj.name == "s"

    def test_stat_missing_raises(self, store: StoreUnderTest) -> None:
        with pytest.raises(NotFound):
            store.provider.stat(store.uri("ghost.txt"))

    def test_exists(self, store: StoreUnderTest) -> None:
        assert store.provider.exists(store.uri("later.txt")) is False
        store.add("later.txt")
        assert store.provider.exists(store.uri("later.txt")) is True

    def test_exists_for_directory(self, store: StoreUnderTest) -> None:
        store.add("d/e.txt")
        assert store.provider.exists(store.uri("d/")) is True

    def test_last_modified_is_utc(self, store: StoreUnderTest) -> None:
        store.add("t.txt")
        modified = store.provider.stat(store.uri("t.txt")).last_modified
        assert modified is not None
        assert modified.utcoffset() is not None
        assert modified.utcoffset().total_seconds() == 0  # type: ignore[union-attr]


class TestList:
    """Listing partition, prefixes and pagination."""

    def test_partition(self, store: StoreUnderTest) -> None:
        for name in ("a/x.txt", "a/b/y.txt", "a/z.txt"):
            store.add(name)
        result = store.provider.list(store.uri("a/"))
        assert isinstance(result, ListResult)
        assert [d.name for d in result.directories] == ["b"]
        assert sorted(f.name for f in result.files) == ["x.txt", "z.txt"]

    def test_directory_entries_are_directories(self, store: StoreUnderTest) -> None:
        store.add("p/q/r.txt")
        (entry,) = store.provider.list(store.uri("p/")).items
        assert entry.is_dir is True
        assert entry.size == 0
        assert entry.uri.endswith("/")

    def test_prefix_filter(self, store: StoreUnderTest) -> None:
        for name in ("f/apple.txt", "f/apricot.txt", "f/banana.txt"):
            store.add(name)
        result = store.provider.list(store.uri("f/"), prefix="ap")
        assert sorted(obj.name for obj in result) == ["apple.txt", "apricot.txt"]

    def test_pagination_is_complete(self, store: StoreUnderTest) -> None:
        names = [f"page/item-{i}.txt" for i in range(5)]
        for name in names:
            store.add(name)
        first = store.provider.list(store.uri("page/"), page_size=2)
        assert len(first) <= 2
        assert first.next_page_token is not None
        items = _collect(store, store.uri("page/"), page_size=2)
        assert sorted(obj.name for obj in items) == [n.split("/")[1] for n in names]

    def test_last_page_has_no_token(self, store: StoreUnderTest) -> None:
        store.add("single/only.txt")
        assert store.provider.list(store.uri("single/")).next_page_token is None

    @pytest.mark.parametrize("page_size", [0, -3])
    def test_non_positive_page_size_rejected(self, store: StoreUnderTest, page_size: int) -> None:
        store.add("sized/a.txt")
        with pytest.raises(ValueError, match="page_size"):
            store.provider.list(store.uri("sized/"), page_size=page_size)


class TestMkdir:
    """mkdir() creates directories and is idempotent."""

    def test_mkdir_then_exists(self, store: StoreUnderTest) -> None:
        store.provider.mkdir(store.uri("made/"))
        assert store.provider.exists(store.uri("made/")) is True
        assert store.provider.stat(store.uri("made/")).is_dir is True

    def test_mkdir_is_idempotent(self, store: StoreUnderTest) -> None:
        store.provider.mkdir(store.uri("twice/"))
        store.provider.mkdir(store.uri("twice/"))
        listing = store.provider.list(store.root)
        assert [obj.name for obj in listing.directories].count("twice") == 1

    def test_mkdir_listed_in_parent(self, store: StoreUnderTest) -> None:
        store.provider.mkdir(store.uri("outer/inner/"))
        result = store.provider.list(store.uri("outer/"))
        assert [obj.name for obj in result.directories] == ["inner"]

    def test_empty_directory_lists_empty(self, store: StoreUnderTest) -> None:
        store.provider.mkdir(store.uri("hollow/"))
        assert store.provider.list(store.uri("hollow/")).items == []

    def test_mkdir_over_file_raises(self, store: StoreUnderTest) -> None:
        store.add("solid")
        with pytest.raises(AlreadyExists):
            store.provider.mkdir(store.uri("solid/"))


class TestDelete:
    """delete() for files and directories."""

    def test_delete_file(self, store: StoreUnderTest) -> None:
        store.add("gone.txt")
        store.provider.delete(store.uri("gone.txt"))
        assert store.provider.exists(store.uri("gone.txt")) is False

    def test_delete_missing_raises(self, store: StoreUnderTest) -> None:
        with pytest.raises(NotFound):
            store.provider.delete(store.uri("never.txt"))

    def test_non_empty_directory_guard(self, store: StoreUnderTest) -> None:
        store.add("full/one.txt")
        with pytest.raises(DirectoryNotEmpty):
            store.provider.delete(store.uri("full/"))
        assert store.provider.exists(store.uri("full/one.txt")) is True

    def test_recursive_delete(self, store: StoreUnderTest) -> None:
        for name in ("tree/a.txt", "tree/b/c.txt", "tree/b/d/e.txt"):
            store.add(name)
        store.provider.delete(store.uri("tree/"), recursive=True)
        assert store.provider.exists(store.uri("tree/")) is False
        assert store.provider.exists(store.uri("tree/b/c.txt")) is False

    def test_delete_empty_directory(self, store: StoreUnderTest) -> None:
        store.provider.mkdir(store.uri("vacant/"))
        store.provider.delete(store.uri("vacant/"))
        assert store.provider.exists(store.uri("vacant/")) is False


class TestCopyMove:
    """copy() and move() within one provider."""

    def test_copy(self, store: StoreUnderTest, tmp_path: Path) -> None:
        store.add("orig.txt", b"copy me")
        obj = store.provider.copy(store.uri("orig.txt"), store.uri("dup/copy.txt"))
        assert obj.name == "copy.txt"
        assert obj.size == 7
        assert store.provider.exists(store.uri("orig.txt")) is True
        dest = tmp_path / "copied"
        store.provider.get(store.uri("dup/copy.txt"), dest)
        assert dest.read_bytes() == b"copy me"

    def test_copy_missing_raises(self, store: StoreUnderTest) -> None:
        with pytest.raises(NotFound):
            store.provider.copy(store.uri("nothing.txt"), store.uri("dest.txt"))

    def test_copy_directory_raises(self, store: StoreUnderTest) -> None:
        store.add("dir/inside.txt")
        with pytest.raises(UnsupportedOperation):
            store.provider.copy(store.uri("dir/"), store.uri("dir-copy.txt"))

    def test_move(self, store: StoreUnderTest) -> None:
        store.add("from.txt", b"moving")
        obj = store.provider.move(store.uri("from.txt"), store.uri("to/dest.txt"))
        assert obj.size == 6
        assert store.provider.exists(store.uri("from.txt")) is False
        assert store.provider.exists(store.uri("to/dest.txt")) is True
