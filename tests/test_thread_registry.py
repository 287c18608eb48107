"""
test_thread_registry.py - スレッド購読レジストリのテスト

テスト観点:
- subscribe_thread: 冪等、形式不正アドレスは I/O 前に InvalidAddress
- unsubscribe_thread: 未購読なら何もしない
- subscribed_threads: 旧形式レコードを除外
- join_thread: キャッシュ、既定 root_mod、別 space のアドレスはスレッド生成前に拒否
- 投稿時の自動購読と no_auto_sub
"""

from __future__ import annotations

import asyncio

import pytest

from rumi_space.address import build_address, thread_name
from rumi_space.error_messages import CrossSpaceError, InvalidAddress, StoreNotOpenError
from rumi_space.space import Space
from rumi_space.thread import LocalThread
from rumi_space.thread_registry import THREAD_KEY_PREFIX, thread_key

SPACE_NAME = "notes"


def _run_async(coro):
    """asyncio.run のヘルパー"""
    return asyncio.run(coro)


@pytest.fixture()
def thread_address(identity):
    return build_address(identity.did, thread_name(SPACE_NAME, "general"))


@pytest.fixture()
def make_space(engine, identity):
    def _make(**kwargs):
        return Space(SPACE_NAME, identity, engine, engine.root_store(), **kwargs)
    return _make


@pytest.fixture()
def recording_factory():
    """生成されたスレッドを記録するだけの thread_factory"""
    created = []

    class _RecordingThread:
        def __init__(self, engine, name, identity, members_only, root_mod, subscribe, ensure_connected):
            self.name = name
            self.members_only = members_only
            self.root_mod = root_mod
            self.subscribe = subscribe
            self.ensure_connected = ensure_connected
            self.loaded_with = "not-loaded"
            self.address = None
            created.append(self)

        async def load(self, address=None):
            self.loaded_with = address
            self.address = address or build_address("peer", self.name)

    return _RecordingThread, created


async def _open(space):
    await space.open()
    await space.wait_until_ready()
    return space


# ======================================================================
# subscribe / unsubscribe
# ======================================================================

class TestSubscribe:

    def test_subscribe_is_idempotent(self, make_space, engine, thread_address):
        async def main():
            space = await _open(make_space())
            await space.subscribe_thread(thread_address, {"name": "general"})
            await space.subscribe_thread(thread_address, {"name": "renamed"})
            return await space.subscribed_threads()
        threads = _run_async(main())
        assert threads == [{"name": "general", "address": thread_address}]

        store = engine.key_value_store("rumi.space.notes.keyvalue")
        writes = [e for e in store.log if e.key == "pub_" + thread_key(thread_address)]
        assert len(writes) == 1

    def test_subscribe_without_config(self, make_space, thread_address):
        async def main():
            space = await _open(make_space())
            await space.subscribe_thread(thread_address)
            return await space.subscribed_threads()
        assert _run_async(main()) == [{"address": thread_address}]

    @pytest.mark.parametrize("address", [
        "general",
        "/orbitdb/not-a-hash/rumi.thread.notes.general",
        "/ipfs/1220" + "0" * 64 + "/x",
        "",
    ])
    def test_invalid_address_rejected(self, make_space, engine, address):
        async def main():
            space = await _open(make_space())
            before = len(engine.key_value_store("rumi.space.notes.keyvalue").log)
            with pytest.raises(InvalidAddress):
                await space.subscribe_thread(address)
            return before
        before = _run_async(main())
        assert len(engine.key_value_store("rumi.space.notes.keyvalue").log) == before

    def test_validation_before_open_check(self, make_space, thread_address):
        space = make_space()
        with pytest.raises(InvalidAddress):
            _run_async(space.subscribe_thread("bad"))
        with pytest.raises(StoreNotOpenError):
            _run_async(space.subscribe_thread(thread_address))

    def test_legacy_hash_accepted(self, make_space):
        legacy = "/orbitdb/Qm" + "a" * 44 + "/rumi.thread.notes.old"

        async def main():
            space = await _open(make_space())
            await space.subscribe_thread(legacy)
            return await space.subscribed_threads()
        assert _run_async(main()) == [{"address": legacy}]

    def test_unsubscribe(self, make_space, thread_address):
        async def main():
            space = await _open(make_space())
            await space.subscribe_thread(thread_address)
            await space.unsubscribe_thread(thread_address)
            return await space.subscribed_threads()
        assert _run_async(main()) == []

    def test_unsubscribe_unknown_is_noop(self, make_space, engine, thread_address):
        async def main():
            space = await _open(make_space())
            store = engine.key_value_store("rumi.space.notes.keyvalue")
            before = len(store.log)
            await space.unsubscribe_thread(thread_address)
            return before, len(store.log)
        before, after = _run_async(main())
        assert before == after

    def test_resubscribe_after_unsubscribe(self, make_space, thread_address):
        async def main():
            space = await _open(make_space())
            await space.subscribe_thread(thread_address, {"name": "a"})
            await space.unsubscribe_thread(thread_address)
            await space.subscribe_thread(thread_address, {"name": "b"})
            return await space.subscribed_threads()
        assert _run_async(main()) == [{"name": "b", "address": thread_address}]


class TestSubscribedThreads:

    def test_legacy_records_are_skipped(self, make_space, thread_address):
        async def main():
            space = await _open(make_space())
            await space.public.set(THREAD_KEY_PREFIX + "legacy-thread-name", {"name": "old"})
            await space.public.set(THREAD_KEY_PREFIX + "/orbitdb/bad/x", {"name": "broken"})
            await space.public.set("threads", {"name": "not a record"})
            await space.subscribe_thread(thread_address, {"name": "general"})
            return await space.subscribed_threads()
        assert _run_async(main()) == [{"name": "general", "address": thread_address}]

    def test_empty(self, make_space):
        async def main():
            space = await _open(make_space())
            return await space.subscribed_threads()
        assert _run_async(main()) == []


# ======================================================================
# join_thread
# ======================================================================

class TestJoinThread:

    def test_join_by_name(self, make_space, identity):
        async def main():
            space = await _open(make_space())
            thread = await space.join_thread("general")
            again = await space.join_thread("general")
            return space, thread, again
        space, thread, again = _run_async(main())
        assert isinstance(thread, LocalThread)
        assert again is thread
        assert thread.name == thread_name(SPACE_NAME, "general")
        assert thread.address == build_address(identity.did, thread.name)
        assert space.active_threads == {"general": thread}

    def test_default_root_mod_is_sub_did(self, make_space, identity):
        async def main():
            space = await _open(make_space())
            return await space.join_thread("general")
        thread = _run_async(main())
        assert thread.root_mod == identity.get_sub_did(SPACE_NAME)
        assert thread.members_only is False

    def test_explicit_options(self, make_space):
        async def main():
            space = await _open(make_space())
            return await space.join_thread("mods", members_only=True, root_mod="did:rumi:mod")
        thread = _run_async(main())
        assert thread.root_mod == "did:rumi:mod"
        assert thread.members_only is True

    def test_join_own_space_address(self, make_space, recording_factory, thread_address):
        factory, created = recording_factory

        async def main():
            space = await _open(make_space(thread_factory=factory))
            return await space.join_thread(thread_address)
        thread = _run_async(main())
        assert created == [thread]
        assert thread.loaded_with == thread_address
        assert thread.address == thread_address

    def test_join_own_store_address(self, make_space, recording_factory, identity):
        factory, created = recording_factory
        address = build_address(identity.did, "rumi.space.notes.keyvalue")

        async def main():
            space = await _open(make_space(thread_factory=factory))
            return await space.join_thread(address)
        thread = _run_async(main())
        assert created == [thread]
        assert thread.loaded_with == address

    def test_join_by_name_loads_without_address(self, make_space, recording_factory):
        factory, created = recording_factory

        async def main():
            space = await _open(make_space(thread_factory=factory))
            return await space.join_thread("general")
        thread = _run_async(main())
        assert thread.loaded_with is None
        assert thread.name == thread_name(SPACE_NAME, "general")

    @pytest.mark.parametrize("foreign", [
        thread_name("other", "general"),
        thread_name("notesX", "general"),
        "rumi.space.other.keyvalue",
    ])
    def test_cross_space_rejected_before_creation(self, make_space, recording_factory, identity, foreign):
        factory, created = recording_factory
        address = build_address(identity.did, foreign)

        async def main():
            space = await _open(make_space(thread_factory=factory))
            with pytest.raises(CrossSpaceError):
                await space.join_thread(address)
            return space
        space = _run_async(main())
        assert created == []
        assert space.active_threads == {}

    def test_cross_space_message_names_other_space(self, make_space, identity):
        address = build_address(identity.did, thread_name("other", "general"))

        async def main():
            space = await _open(make_space())
            with pytest.raises(CrossSpaceError) as exc_info:
                await space.join_thread(address)
            return exc_info.value
        error = _run_async(main())
        assert "'other'" in error.message
        assert "'notes'" in error.message
        assert error.details == {"address": address}

    def test_ensure_connected_passed_to_thread(self, make_space, recording_factory):
        factory, created = recording_factory

        def ensure_connected():
            return None

        async def main():
            space = await _open(make_space(thread_factory=factory, ensure_connected=ensure_connected))
            await space.join_thread("general")
        _run_async(main())
        assert created[0].ensure_connected is ensure_connected


# ======================================================================
# 自動購読
# ======================================================================

class TestAutoSubscribe:

    def test_post_subscribes_once(self, make_space, identity):
        async def main():
            space = await _open(make_space())
            thread = await space.join_thread("general")
            await thread.post("hello")
            await thread.post("again")
            return thread, await space.subscribed_threads(), await thread.get_posts()
        thread, threads, posts = _run_async(main())
        assert threads == [{
            "name": thread_name(SPACE_NAME, "general"),
            "root_mod": identity.get_sub_did(SPACE_NAME),
            "members": False,
            "address": thread.address,
        }]
        assert [p["message"] for p in posts] == ["hello", "again"]
        assert all(p["author"] == identity.did for p in posts)

    def test_no_auto_sub(self, make_space):
        async def main():
            space = await _open(make_space())
            thread = await space.join_thread("quiet", no_auto_sub=True)
            await thread.post("hello")
            return await space.subscribed_threads()
        assert _run_async(main()) == []

    def test_join_alone_does_not_subscribe(self, make_space):
        async def main():
            space = await _open(make_space())
            await space.join_thread("general")
            return await space.subscribed_threads()
        assert _run_async(main()) == []

    def test_post_calls_ensure_connected(self, make_space):
        calls = []

        async def ensure_connected():
            calls.append(True)

        async def main():
            space = await _open(make_space(ensure_connected=ensure_connected))
            thread = await space.join_thread("general", no_auto_sub=True)
            await thread.post("hi")
        _run_async(main())
        assert calls == [True]
