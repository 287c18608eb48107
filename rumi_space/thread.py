"""
thread.py - 最小限のスレッド参照実装

スレッドのメッセージ形式はこのパッケージの関心外。LocalThread は
Space.join_thread() が要求するコンストラクタ引数と load() を満たし、
投稿を自前のログストアに追記するだけの単純な実装。

最初の投稿時に subscribe コールバックを呼ぶ（自動購読）。
"""

from __future__ import annotations

import inspect
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .address import parse_address
from .error_messages import STORE_NOT_LOADED, format_error, throw_if_undefined
from .interfaces import Identity, LogEngine, LogStore
from .logging_utils import get_structured_logger

logger = get_structured_logger("rumi.space.thread")


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class LocalThread:
    def __init__(
        self,
        engine: LogEngine,
        name: str,
        identity: Identity,
        members_only: bool = False,
        root_mod: Optional[str] = None,
        subscribe: Optional[Callable[..., Any]] = None,
        ensure_connected: Optional[Callable[..., Any]] = None,
    ):
        self._engine = engine
        self._name = name
        self._identity = identity
        self._members_only = bool(members_only)
        self._root_mod = root_mod
        self._subscribe = subscribe
        self._ensure_connected = ensure_connected
        self._store: Optional[LogStore] = None
        self._address: Optional[str] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def members_only(self) -> bool:
        return self._members_only

    @property
    def root_mod(self) -> Optional[str]:
        return self._root_mod

    async def load(self, address: Optional[str] = None) -> None:
        parsed = parse_address(address) if address else None
        store_name = parsed.path if parsed is not None else self._name
        self._store = self._engine.key_value_store(store_name)
        loaded_address = await self._store.load()
        self._address = address or loaded_address
        logger.debug("Thread loaded", thread=self._name, address=self._address)

    def _require_store(self) -> LogStore:
        if self._store is None:
            raise format_error(STORE_NOT_LOADED, name=self._name)
        return self._store

    async def post(self, message: Any) -> str:
        throw_if_undefined(message, "message")
        store = self._require_store()
        if self._ensure_connected is not None:
            await _maybe_await(self._ensure_connected())

        post_id = uuid.uuid4().hex
        await store.set(post_id, {
            "message": message,
            "author": self._identity.did,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        })
        if self._subscribe is not None:
            await _maybe_await(self._subscribe(self._address, {
                "name": self._name,
                "root_mod": self._root_mod,
                "members": self._members_only,
            }))
        return post_id

    async def get_posts(self) -> List[Dict[str, Any]]:
        store = self._require_store()
        entries = await store.all()
        posts = [{"post_id": post_id, **value} for post_id, value in entries.items()]
        return sorted(posts, key=lambda p: p.get("timestamp", ""))
