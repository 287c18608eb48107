"""
key_transform.py - 論理キー → 物理ログキー変換

public:  "pub_"  + 論理キー              （可逆: prefix を外すだけ）
private: "priv_" + sha256-multihash(salt + 論理キー)  （不可逆）

private の論理キーは物理キーからは復元できない。
復号したエンベロープの "key" フィールドが常に正となる。
"""

from __future__ import annotations

import hashlib
from typing import Optional

from .error_messages import throw_if_undefined

PUBLIC_PREFIX = "pub_"
PRIVATE_PREFIX = "priv_"

# multihash: 0x12 = sha2-256, 0x20 = 32 bytes
_SHA256_MULTIHASH_PREFIX = "1220"


def sha256_multihash(data: str) -> str:
    """SHA-256 multihash を hex 文字列で返す。"""
    digest = hashlib.sha256(data.encode("utf-8")).hexdigest()
    return _SHA256_MULTIHASH_PREFIX + digest


def public_db_key(key: str) -> str:
    throw_if_undefined(key, "key")
    return PUBLIC_PREFIX + key


def private_db_key(salt: str, key: str) -> str:
    throw_if_undefined(key, "key")
    return PRIVATE_PREFIX + sha256_multihash(salt + key)


def is_public_db_key(db_key: str) -> bool:
    return db_key.startswith(PUBLIC_PREFIX)


def is_private_db_key(db_key: str) -> bool:
    return db_key.startswith(PRIVATE_PREFIX)


def strip_public_prefix(db_key: str) -> Optional[str]:
    """public 物理キーから論理キーを返す。public キーでなければ None。"""
    if not is_public_db_key(db_key):
        return None
    return db_key[len(PUBLIC_PREFIX):]
