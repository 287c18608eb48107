"""
thread_registry.py - space 内のスレッド購読レジストリ

購読は public ビューのキー "thread-<address>" として保存する。
  値: {"name"?, "root_mod"?, "members"?, "address"}

- subscribe_thread: 同期完了を待ってから、未登録の場合のみ書き込む（冪等）
- unsubscribe_thread: 登録済みなら削除、なければ何もしない
- subscribed_threads: 接尾辞が正しいアドレスのものだけ返す。
  旧形式のレコードはエラーにせず除外する（想定内の残骸であり破損ではない）
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .address import address_space, belongs_to_space, is_valid_address, thread_name
from .error_messages import ADDR_CROSS_SPACE, ADDR_INVALID, format_error
from .interfaces import Thread
from .logging_utils import get_structured_logger

if TYPE_CHECKING:
    from .space import Space

logger = get_structured_logger("rumi.space.threads")

THREAD_KEY_PREFIX = "thread-"


def thread_key(address: str) -> str:
    return THREAD_KEY_PREFIX + address


async def _no_subscribe(*args: Any, **kwargs: Any) -> None:
    return None


class ThreadRegistry:
    def __init__(self, space: "Space"):
        self._space = space
        self._active_threads: Dict[str, Thread] = {}
        self._log = logger.bind(space=space.name)

    @property
    def active_threads(self) -> Dict[str, Thread]:
        return dict(self._active_threads)

    async def join_thread(
        self,
        name: str,
        members_only: bool = False,
        root_mod: Optional[str] = None,
        no_auto_sub: bool = False,
    ) -> Thread:
        """
        スレッドに参加する。既に参加済みならキャッシュを返す。

        name がフルアドレスの場合は、この space のスレッドであることを
        スレッドを作る前に検証する（CrossSpaceError）。
        """
        if name in self._active_threads:
            return self._active_threads[name]

        space = self._space
        by_address = is_valid_address(name)
        if by_address and not belongs_to_space(name, space.name):
            raise format_error(
                ADDR_CROSS_SPACE,
                space=space.name,
                other=address_space(name) or name,
                details={"address": name},
            )

        subscribe_fn = _no_subscribe if no_auto_sub else self.subscribe_thread
        if root_mod is None:
            root_mod = space.identity.get_sub_did(space.name)

        thread = space.thread_factory(
            space.engine,
            thread_name(space.name, name),
            space.identity,
            members_only,
            root_mod,
            subscribe_fn,
            space.ensure_connected,
        )
        if by_address:
            await thread.load(name)
        else:
            await thread.load()

        self._active_threads[name] = thread
        self._log.info("Joined thread", thread=name, address=thread.address)
        return thread

    async def subscribe_thread(self, address: str, config: Optional[Dict[str, Any]] = None) -> None:
        if not is_valid_address(address):
            raise format_error(ADDR_INVALID, operation="subscribeThread", address=address)

        key = thread_key(address)
        await self._space.wait_for_sync()
        public = self._space.public
        if not await public.get(key):
            record = dict(config or {})
            record["address"] = address
            await public.set(key, record)
            self._log.info("Subscribed to thread", address=address)

    async def unsubscribe_thread(self, address: str) -> None:
        key = thread_key(address)
        public = self._space.public
        if await public.get(key):
            await public.remove(key)
            self._log.info("Unsubscribed from thread", address=address)

    async def subscribed_threads(self) -> List[Dict[str, Any]]:
        entries = await self._space.public.all()
        threads = []
        for key, value in entries.items():
            if not key.startswith(THREAD_KEY_PREFIX):
                continue
            if is_valid_address(key[len(THREAD_KEY_PREFIX):]):
                threads.append(value)
        return threads
