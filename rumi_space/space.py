"""
space.py - Space（identity × アプリ名ごとの論理ストレージ）

1 本の append-only ログ上に public / private の 2 ビューと
スレッド購読レジストリを載せる。

ライフサイクル（前進のみ）:
  UNINITIALIZED → LOADING → SYNCING → READY

open() の流れ:
  1. identity に keyring 初期化を依頼し、consent_callback(consent_needed, name) を呼ぶ
  2. ログストアを load してアドレスを得る
  3. ルートレジストリにアドレスを登録（同じストア名を含むエントリがあれば追加しない）
  4. 同期をバックグラウンドタスクとして開始（num_entries_messages のヒント付き）
  5. public / private ビューを構築（ローカルの読み書きはこの時点で可能）
  6. 同期完了後、"proof_did" が無ければ署名済み JWT を書き込む → READY

open() は冪等。ビュー構築まで済んでいれば何もしない。
途中で失敗した場合は同じインスタンスで open() をやり直せる。
"""

from __future__ import annotations

import asyncio
import enum
import inspect
from typing import Any, Callable, Dict, List, Optional

from .address import space_store_name
from .error_messages import (
    STORE_BACKWARD_TRANSITION,
    STORE_NOT_OPEN,
    format_error,
    throw_if_undefined,
)
from .interfaces import Identity, LogEngine, LogStore, RootStore, Thread, ThreadFactory
from .logging_utils import get_structured_logger
from .store_view import PrivateView, PublicView
from .thread import LocalThread
from .thread_registry import ThreadRegistry

logger = get_structured_logger("rumi.space.lifecycle")

PROOF_DID_KEY = "proof_did"


class SpaceState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    SYNCING = "syncing"
    READY = "ready"


_STATE_ORDER = [
    SpaceState.UNINITIALIZED,
    SpaceState.LOADING,
    SpaceState.SYNCING,
    SpaceState.READY,
]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class Space:
    """
    space の本体。Space インスタンスは (identity, name) ごとに 1 つ。

    同一インスタンスへの操作は 1 つのイベントループから行う前提。
    """

    def __init__(
        self,
        name: str,
        identity: Identity,
        engine: LogEngine,
        root_store: RootStore,
        ensure_connected: Optional[Callable[..., Any]] = None,
        thread_factory: ThreadFactory = LocalThread,
        block_size: Optional[int] = None,
    ):
        throw_if_undefined(name, "name")
        self._name = name
        self._identity = identity
        self._engine = engine
        self._root_store = root_store
        self._ensure_connected = ensure_connected
        self._thread_factory = thread_factory
        self._block_size = block_size
        self._store: LogStore = engine.key_value_store(space_store_name(name))
        self._state = SpaceState.UNINITIALIZED
        self._sync_task: Optional[asyncio.Task] = None
        self._publish_task: Optional[asyncio.Task] = None
        self._public: Optional[PublicView] = None
        self._private: Optional[PrivateView] = None
        self._threads = ThreadRegistry(self)
        self._log = logger.bind(space=name)

    # ------------------------------------------------------------------ #
    # プロパティ
    # ------------------------------------------------------------------ #

    @property
    def name(self) -> str:
        return self._name

    @property
    def store_name(self) -> str:
        return space_store_name(self._name)

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def engine(self) -> LogEngine:
        return self._engine

    @property
    def ensure_connected(self) -> Optional[Callable[..., Any]]:
        return self._ensure_connected

    @property
    def thread_factory(self) -> ThreadFactory:
        return self._thread_factory

    @property
    def state(self) -> SpaceState:
        return self._state

    @property
    def address(self) -> Optional[str]:
        return self._store.address

    @property
    def public(self) -> PublicView:
        if self._public is None:
            raise format_error(STORE_NOT_OPEN, space=self._name)
        return self._public

    @property
    def private(self) -> PrivateView:
        if self._private is None:
            raise format_error(STORE_NOT_OPEN, space=self._name)
        return self._private

    @property
    def active_threads(self) -> Dict[str, Thread]:
        return self._threads.active_threads

    # ------------------------------------------------------------------ #
    # ライフサイクル
    # ------------------------------------------------------------------ #

    def _transition(self, target: SpaceState) -> None:
        if _STATE_ORDER.index(target) <= _STATE_ORDER.index(self._state):
            raise format_error(
                STORE_BACKWARD_TRANSITION,
                space=self._name,
                current=self._state.value,
                target=target.value,
            )
        self._log.debug("State transition", current=self._state.value, target=target.value)
        self._state = target

    async def open(
        self,
        consent_callback: Optional[Callable[[bool, str], Any]] = None,
        on_sync_done: Optional[Callable[[], Any]] = None,
        num_entries_messages: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        """
        space を開く。

        Args:
            consent_callback: (consent_needed, space_name) で呼ばれる
            on_sync_done: バックグラウンド同期の完了時に呼ばれる
            num_entries_messages: {address: {"num_entries": n}} 形式の同期ヒント
        """
        if self._public is not None:
            return

        # 途中で失敗した open() の再試行は LOADING から続ける
        if self._state is SpaceState.UNINITIALIZED:
            self._transition(SpaceState.LOADING)
        consent_needed = await self._identity.init_keyring_by_name(self._name)
        if consent_callback is not None:
            await _maybe_await(consent_callback(consent_needed, self._name))

        address = await self._store.load()
        await self._register_address(address)

        num_entries = None
        if num_entries_messages and address in num_entries_messages:
            num_entries = num_entries_messages[address].get("num_entries")

        self._transition(SpaceState.SYNCING)
        self._sync_task = asyncio.ensure_future(self._sync(num_entries, on_sync_done))
        self._sync_task.add_done_callback(self._log_task_failure)

        self._public = PublicView(self._store)
        self._private = PrivateView(
            self._store,
            self._identity.get_keyring_by_space_name(self.store_name),
            self._block_size,
        )

        self._publish_task = asyncio.ensure_future(self._ensure_did_published())
        self._publish_task.add_done_callback(self._log_task_failure)
        self._log.info("Space opened", address=address, consent_needed=consent_needed)

    async def _register_address(self, address: str) -> None:
        entries = self._root_store.iterator(limit=-1).collect()
        store_name = self.store_name
        if any(store_name in str(entry.value.get("odb_address", "")) for entry in entries):
            return
        await self._root_store.add({"odb_address": address})
        self._log.info("Registered space in root store", address=address)

    async def _sync(self, num_entries: Optional[int], on_sync_done: Optional[Callable[[], Any]]) -> None:
        await self._store.sync(num_entries)
        self._log.info("Space synced", hint=num_entries)
        if on_sync_done is not None:
            await _maybe_await(on_sync_done())

    async def _ensure_did_published(self) -> None:
        await self.wait_for_sync()
        if not await self.public.get(PROOF_DID_KEY):
            # 空の JWT への署名がこの DID を所有していることの証明になる
            token = await self._identity.sign_jwt({}, space=self._name)
            await self.public.set(PROOF_DID_KEY, token, no_link=True)
            self._log.info("Published DID proof")
        self._transition(SpaceState.READY)

    def _log_task_failure(self, task: "asyncio.Task") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("Background task failed", error=repr(exc))

    async def wait_for_sync(self) -> None:
        """バックグラウンド同期の完了を待つ。失敗していればその例外を送出する。"""
        if self._sync_task is None:
            raise format_error(STORE_NOT_OPEN, space=self._name)
        await self._sync_task

    async def wait_until_ready(self) -> None:
        """同期と DID の自己公開が終わり READY になるまで待つ。"""
        if self._publish_task is None:
            raise format_error(STORE_NOT_OPEN, space=self._name)
        await self._publish_task

    # ------------------------------------------------------------------ #
    # スレッド
    # ------------------------------------------------------------------ #

    async def join_thread(
        self,
        name: str,
        members_only: bool = False,
        root_mod: Optional[str] = None,
        no_auto_sub: bool = False,
    ) -> Thread:
        return await self._threads.join_thread(
            name, members_only=members_only, root_mod=root_mod, no_auto_sub=no_auto_sub,
        )

    async def subscribe_thread(self, address: str, config: Optional[Dict[str, Any]] = None) -> None:
        await self._threads.subscribe_thread(address, config)

    async def unsubscribe_thread(self, address: str) -> None:
        await self._threads.unsubscribe_thread(address)

    async def subscribed_threads(self) -> List[Dict[str, Any]]:
        return await self._threads.subscribed_threads()
