"""
address.py - ストア / スレッドアドレス

形式: /orbitdb/<root>/<name>
  root: "1220" + sha256 hex (multihash) または 旧形式の base58 "Qm..." ハッシュ
  name: ストア名。space は "rumi.space.<space>.keyvalue"、
        スレッドは "rumi.thread.<space>.<thread>"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .key_transform import sha256_multihash

ADDRESS_PREFIX = "orbitdb"

_ROOT_PATTERN = re.compile(r'^(1220[0-9a-f]{64}|Qm[1-9A-HJ-NP-Za-km-z]{44})$')

SPACE_NAMESPACE = "rumi.space"
THREAD_NAMESPACE = "rumi.thread"


@dataclass(frozen=True)
class StoreAddress:
    root: str
    path: str

    def __str__(self) -> str:
        return f"/{ADDRESS_PREFIX}/{self.root}/{self.path}"


def parse_address(address: Optional[str]) -> Optional[StoreAddress]:
    """アドレス文字列をパースする。形式不正なら None。"""
    if not isinstance(address, str):
        return None
    parts = address.split("/")
    # ["", "orbitdb", root, path...]
    if len(parts) < 4 or parts[0] != "" or parts[1] != ADDRESS_PREFIX:
        return None
    root = parts[2]
    path = "/".join(parts[3:])
    if not _ROOT_PATTERN.match(root) or not path:
        return None
    return StoreAddress(root=root, path=path)


def is_valid_address(address: Optional[str]) -> bool:
    return parse_address(address) is not None


def build_address(owner: str, name: str) -> str:
    """owner + name からアドレスを決定的に導出する。"""
    return str(StoreAddress(root=sha256_multihash(f"{owner}/{name}"), path=name))


def space_store_name(space: str) -> str:
    return f"{SPACE_NAMESPACE}.{space}.keyvalue"


def thread_name(space: str, thread: str) -> str:
    return f"{THREAD_NAMESPACE}.{space}.{thread}"


def address_space(address: str) -> Optional[str]:
    """
    アドレスのストア名から space 名を取り出す。

    "rumi.thread.<space>.<thread>" と "rumi.space.<space>.keyvalue" のどちらも
    ドット区切り 3 番目が space 名（ドットを含まない space 名を想定）。
    形式不正なら None。
    """
    parsed = parse_address(address)
    if parsed is None:
        return None
    parts = parsed.path.split(".")
    return parts[2] if len(parts) > 2 else None


def belongs_to_space(address: str, space: str) -> bool:
    return address_space(address) == space
