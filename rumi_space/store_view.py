"""
store_view.py - 1 本のログ上の public / private ビュー

同じ LogStore を 2 つの射影として見せる。

  PublicView  : "pub_"  + 論理キー、値は平文
  PrivateView : "priv_" + hash(salt + 論理キー)、値は暗号化エンベロープ

不変条件:
- 各ビューは自分の prefix を持つ物理キーしか見ない（prefix フィルタは排他的）
- private の論理キーは復号したエンベロープから取り出す（物理キーからは戻せない）
- log / all での復号失敗は DecryptionError として伝播させる（黙って捨てない）
- ログエンジンが返したエントリは書き換えない。DecodedEntry を新しく作る
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .codec import EntryCodec
from .error_messages import throw_if_not_equal_len, throw_if_undefined
from .interfaces import OP_PUT, Keyring, LogEntry, LogStore
from .key_transform import (
    PRIVATE_PREFIX,
    PUBLIC_PREFIX,
    private_db_key,
    public_db_key,
    strip_public_prefix,
)


@dataclass(frozen=True)
class DecodedEntry:
    """ビュー側で復元したログエントリ。key は論理キー（不明な DEL は None）。"""
    op: str
    key: Optional[str]
    value: Any
    hash: str
    identity: str
    timestamp: str


class StoreView(abc.ABC):
    """public / private 共通のビュー。物理キー変換と値の encode / decode を差し替える。"""

    prefix: str = ""

    def __init__(self, store: LogStore):
        self._store = store

    # --- サブクラスが実装する変換 -------------------------------------

    @abc.abstractmethod
    def _db_key(self, key: str) -> str:
        ...

    @abc.abstractmethod
    def _encode(self, key: str, value: Any) -> Any:
        ...

    @abc.abstractmethod
    def _decode(self, db_key: str, raw: Any) -> Tuple[str, Any]:
        """物理キーと保存値から (論理キー, 値) を返す。"""

    def _owns(self, db_key: Optional[str]) -> bool:
        return isinstance(db_key, str) and db_key.startswith(self.prefix)

    # --- 公開 API ---------------------------------------------------------

    async def get(self, key: str, metadata: bool = False) -> Any:
        db_key = self._db_key(key)
        entry = await self._store.get(db_key, metadata=metadata)
        if entry is None:
            return None
        if metadata:
            _, value = self._decode(db_key, entry["value"])
            return {**entry, "value": value}
        _, value = self._decode(db_key, entry)
        return value

    async def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        return await self._store.get_metadata(self._db_key(key))

    async def set(self, key: str, value: Any, no_link: bool = False) -> str:
        db_key = self._db_key(key)
        return await self._store.set(db_key, self._encode(key, value), no_link=no_link)

    async def set_multiple(self, keys: Sequence[str], values: Sequence[Any]) -> List[str]:
        throw_if_not_equal_len(keys, values)
        db_keys = [self._db_key(k) for k in keys]
        encoded = [self._encode(k, v) for k, v in zip(keys, values)]
        return await self._store.set_multiple(db_keys, encoded)

    async def remove(self, key: str) -> Optional[str]:
        return await self._store.remove(self._db_key(key))

    async def all(self, metadata: bool = False) -> Dict[str, Any]:
        entries = await self._store.all(metadata=metadata)
        result: Dict[str, Any] = {}
        for db_key, entry in entries.items():
            if not self._owns(db_key):
                continue
            if metadata:
                key, value = self._decode(db_key, entry["value"])
                result[key] = {**entry, "value": value}
            else:
                key, value = self._decode(db_key, entry)
                result[key] = value
        return result

    @property
    def log(self) -> List[DecodedEntry]:
        decoded: List[DecodedEntry] = []
        # DEL エントリは値を持たないので、同じ物理キーの直前の PUT から論理キーを引く
        known_keys: Dict[str, str] = {}
        for entry in self._store.log:
            if not self._owns(entry.key):
                continue
            if entry.op == OP_PUT:
                key, value = self._decode(entry.key, entry.value)
                known_keys[entry.key] = key
            else:
                key, value = self._tombstone_key(entry, known_keys), None
            decoded.append(DecodedEntry(
                op=entry.op,
                key=key,
                value=value,
                hash=entry.hash,
                identity=entry.identity,
                timestamp=entry.timestamp,
            ))
        return decoded

    def _tombstone_key(self, entry: LogEntry, known_keys: Dict[str, str]) -> Optional[str]:
        return known_keys.get(entry.key)


class PublicView(StoreView):
    prefix = PUBLIC_PREFIX

    def _db_key(self, key: str) -> str:
        return public_db_key(key)

    def _encode(self, key: str, value: Any) -> Any:
        return value

    def _decode(self, db_key: str, raw: Any) -> Tuple[str, Any]:
        return strip_public_prefix(db_key), raw

    def _tombstone_key(self, entry: LogEntry, known_keys: Dict[str, str]) -> Optional[str]:
        return strip_public_prefix(entry.key)


class PrivateView(StoreView):
    prefix = PRIVATE_PREFIX

    def __init__(self, store: LogStore, keyring: Keyring, block_size: Optional[int] = None):
        super().__init__(store)
        self._salt = keyring.get_db_salt()
        self._codec = EntryCodec(keyring) if block_size is None else EntryCodec(keyring, block_size)

    def _db_key(self, key: str) -> str:
        return private_db_key(self._salt, key)

    def _encode(self, key: str, value: Any) -> Any:
        throw_if_undefined(key, "key")
        return self._codec.encrypt_entry(key, value)

    def _decode(self, db_key: str, raw: Any) -> Tuple[str, Any]:
        envelope = self._codec.decrypt_entry(raw)
        return envelope.key, envelope.value
