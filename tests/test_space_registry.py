"""test_space_registry.py - SpaceRegistry のテスト"""

from __future__ import annotations

import asyncio

import pytest

from rumi_space.identity import LocalIdentity
from rumi_space.space import SpaceState
from rumi_space.space_registry import SpaceRegistry, get_space_registry, reset_space_registry


def _run_async(coro):
    """asyncio.run のヘルパー"""
    return asyncio.run(coro)


class TestSpaceRegistry:

    def test_one_space_per_identity_and_name(self, engine, identity):
        registry = SpaceRegistry()
        root = engine.root_store()
        first = registry.get_or_create("notes", identity, engine, root)
        assert registry.get_or_create("notes", identity, engine, root) is first
        assert registry.get_or_create("other", identity, engine, root) is not first
        assert registry.get(identity, "notes") is first

    def test_identities_are_separate(self, engine, identity):
        registry = SpaceRegistry()
        stranger = LocalIdentity(b"9" * 64)
        mine = registry.get_or_create("notes", identity, engine, engine.root_store())
        theirs = registry.get_or_create("notes", stranger, engine, engine.root_store())
        assert mine is not theirs
        assert registry.list_spaces(identity) == {"notes": mine}
        assert registry.list_spaces(stranger) == {"notes": theirs}

    def test_open_space(self, engine, identity):
        registry = SpaceRegistry()
        consent = []

        async def main():
            space = await registry.open_space(
                "notes", identity, engine, engine.root_store(),
                consent_callback=lambda needed, name: consent.append(needed),
            )
            await space.wait_until_ready()
            again = await registry.open_space("notes", identity, engine, engine.root_store())
            return space, again
        space, again = _run_async(main())
        assert again is space
        assert space.state is SpaceState.READY
        assert consent == [True]

    def test_space_kwargs_forwarded(self, engine, identity):
        registry = SpaceRegistry()

        async def main():
            space = await registry.open_space(
                "notes", identity, engine, engine.root_store(),
                space_kwargs={"block_size": 8},
            )
            await space.private.set("k", "v")
            await space.wait_until_ready()
            return await space.private.get("k")
        assert _run_async(main()) == "v"

    def test_failed_open_is_evicted(self, engine, identity):
        registry = SpaceRegistry()

        def refuse(needed, name):
            raise PermissionError("denied")

        with pytest.raises(PermissionError):
            _run_async(registry.open_space(
                "notes", identity, engine, engine.root_store(), consent_callback=refuse,
            ))
        assert registry.get(identity, "notes") is None


class TestGlobalRegistry:

    def test_singleton(self):
        assert get_space_registry() is get_space_registry()

    def test_reset(self):
        first = get_space_registry()
        second = reset_space_registry()
        assert second is not first
        assert get_space_registry() is second
