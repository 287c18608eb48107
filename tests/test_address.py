"""test_address.py - ストア / スレッドアドレスのテスト"""

from __future__ import annotations

import pytest

from rumi_space.address import (
    StoreAddress,
    address_space,
    belongs_to_space,
    build_address,
    is_valid_address,
    parse_address,
    space_store_name,
    thread_name,
)

ROOT = "1220" + "ab" * 32
LEGACY_ROOT = "Qm" + "Z" * 44


class TestParse:

    def test_parse_multihash_root(self):
        parsed = parse_address(f"/orbitdb/{ROOT}/rumi.thread.notes.general")
        assert parsed == StoreAddress(root=ROOT, path="rumi.thread.notes.general")
        assert str(parsed) == f"/orbitdb/{ROOT}/rumi.thread.notes.general"

    def test_parse_legacy_root(self):
        assert is_valid_address(f"/orbitdb/{LEGACY_ROOT}/rumi.thread.notes.general")

    @pytest.mark.parametrize("address", [
        None,
        "",
        "general",
        f"orbitdb/{ROOT}/x",
        f"/ipfs/{ROOT}/x",
        f"/orbitdb/{ROOT}/",
        f"/orbitdb/{ROOT}",
        "/orbitdb/1220abc/x",
        "/orbitdb/" + "Qm" + "0" * 44 + "/x",
        "/orbitdb/" + "1220" + "AB" * 32 + "/x",
    ])
    def test_invalid(self, address):
        assert parse_address(address) is None
        assert not is_valid_address(address)


class TestNames:

    def test_space_store_name(self):
        assert space_store_name("notes") == "rumi.space.notes.keyvalue"

    def test_thread_name(self):
        assert thread_name("notes", "general") == "rumi.thread.notes.general"

    def test_build_address_is_deterministic(self):
        first = build_address("did:rumi:abc", "rumi.space.notes.keyvalue")
        assert first == build_address("did:rumi:abc", "rumi.space.notes.keyvalue")
        assert first != build_address("did:rumi:def", "rumi.space.notes.keyvalue")
        assert is_valid_address(first)
        assert first.endswith("/rumi.space.notes.keyvalue")


class TestAddressSpace:

    def test_thread_address(self):
        assert address_space(f"/orbitdb/{ROOT}/rumi.thread.notes.general") == "notes"

    def test_store_address(self):
        assert address_space(f"/orbitdb/{ROOT}/rumi.space.notes.keyvalue") == "notes"

    def test_no_space_segment(self):
        assert address_space(f"/orbitdb/{ROOT}/rumi.thread") is None
        assert address_space("invalid") is None

    def test_belongs_to_space(self):
        address = f"/orbitdb/{ROOT}/rumi.thread.notes.general"
        assert belongs_to_space(address, "notes")
        assert not belongs_to_space(address, "note")
        assert not belongs_to_space(address, "other")
        assert not belongs_to_space("invalid", "notes")

    def test_own_store_address_belongs_to_space(self):
        address = f"/orbitdb/{ROOT}/rumi.space.notes.keyvalue"
        assert belongs_to_space(address, "notes")
        assert not belongs_to_space(address, "notesX")
