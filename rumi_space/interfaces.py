"""
interfaces.py - 外部コラボレータとの境界

ログストア / ルートレジストリ / identity・keyring / スレッドの
インターフェースと、ログエンジンが返すイミュータブルなレコード型を定義する。

同梱の参照実装:
- log_store.LogStoreProvider / SqliteLogStore / SqliteFeedStore
- identity.LocalIdentity / LocalKeyring
- thread.LocalThread
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

OP_PUT = "PUT"
OP_DEL = "DEL"


@dataclass(frozen=True)
class LogEntry:
    """ログエンジンが返すエントリ。書き換えは禁止（replace で新しいレコードを作る）。"""
    op: str
    key: Optional[str]
    value: Any
    hash: str
    identity: str
    timestamp: str

    def metadata(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "identity": self.identity,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class FeedEntry:
    hash: str
    value: Dict[str, Any]


@runtime_checkable
class LogStore(Protocol):
    """append-only なキーバリューログ（物理キー空間）。"""

    @property
    def is_loaded(self) -> bool: ...

    @property
    def address(self) -> Optional[str]: ...

    async def load(self) -> str: ...

    async def sync(self, num_entries: Optional[int] = None) -> None: ...

    async def get(self, key: str, metadata: bool = False) -> Any: ...

    async def get_metadata(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def set(self, key: str, value: Any, no_link: bool = False) -> str: ...

    async def set_multiple(self, keys: Sequence[str], values: Sequence[Any]) -> List[str]: ...

    async def remove(self, key: str) -> Optional[str]: ...

    async def all(self, metadata: bool = False) -> Dict[str, Any]: ...

    @property
    def log(self) -> List[LogEntry]: ...


@runtime_checkable
class LogEngine(Protocol):
    """名前ごとに LogStore を払い出すログエンジン。"""

    def key_value_store(self, name: str) -> LogStore: ...


class FeedIterator(Protocol):
    def collect(self) -> List[FeedEntry]: ...


@runtime_checkable
class RootStore(Protocol):
    """space アドレスを登録する共有の append-only フィード。"""

    async def add(self, value: Dict[str, Any]) -> str: ...

    def iterator(self, limit: int = -1) -> FeedIterator: ...


@runtime_checkable
class Keyring(Protocol):
    """space ごとの鍵素材。"""

    def get_db_salt(self) -> str: ...

    def sym_encrypt(self, plaintext: str) -> Dict[str, str]: ...

    def sym_decrypt(self, ciphertext: str, nonce: str) -> str: ...


@runtime_checkable
class Identity(Protocol):
    """identity / keyring サービス。"""

    @property
    def did(self) -> str: ...

    async def init_keyring_by_name(self, name: str) -> bool: ...

    def get_keyring_by_space_name(self, store_name: str) -> Keyring: ...

    def get_sub_did(self, name: str) -> str: ...

    async def sign_jwt(self, payload: Dict[str, Any], space: Optional[str] = None) -> str: ...


@runtime_checkable
class Thread(Protocol):
    @property
    def address(self) -> Optional[str]: ...

    async def load(self, address: Optional[str] = None) -> None: ...


# (engine, thread_name, identity, members_only, root_mod, subscribe_fn, ensure_connected)
ThreadFactory = Callable[
    [LogEngine, str, Identity, bool, Optional[str], Callable[..., Any], Optional[Callable[..., Any]]],
    Thread,
]
