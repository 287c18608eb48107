"""
codec.py - private ビュー用エンベロープ codec

エンベロープ {"key": 論理キー, "value": 値} を
  決定的 JSON → NUL パディング → keyring.sym_encrypt
の順に変換し、{"ciphertext", "nonce"} としてログに書き込む。

復号は逆順。認証失敗・デシリアライズ失敗は DecryptionError。

既知の制約:
  unpad は末尾の NUL を全て取り除く。シリアライズ結果そのものが NUL で
  終わる場合は復元できない。JSON 出力は NUL で終わらないため実害はない。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict

from .error_messages import (
    CRYPT_DECRYPT_FAILED,
    CRYPT_MALFORMED_ENVELOPE,
    format_error,
)
from .interfaces import Keyring

ENC_BLOCK_SIZE = 24
PAD_CHAR = "\0"


def pad(val: str, block_size: int = ENC_BLOCK_SIZE) -> str:
    """長さが block_size の倍数になる最小数の NUL を末尾に足す。"""
    block_diff = (block_size - (len(val) % block_size)) % block_size
    return val + PAD_CHAR * block_diff


def unpad(padded: str) -> str:
    return padded.rstrip(PAD_CHAR)


def serialize_envelope(key: str, value: Any) -> str:
    """エンベロープを決定的な JSON 文字列にする（キー順固定・空白なし）。"""
    return json.dumps(
        {"key": key, "value": value},
        sort_keys=True, ensure_ascii=False, separators=(",", ":"),
    )


@dataclass(frozen=True)
class Envelope:
    key: str
    value: Any


class EntryCodec:
    """
    1 space 分の keyring に束縛された暗号化 codec。

    keyring はコンストラクタで注入する（プロセス全体の singleton は持たない）。
    """

    def __init__(self, keyring: Keyring, block_size: int = ENC_BLOCK_SIZE):
        self._keyring = keyring
        self._block_size = block_size

    @property
    def block_size(self) -> int:
        return self._block_size

    def encrypt_entry(self, key: str, value: Any) -> Dict[str, str]:
        plaintext = pad(serialize_envelope(key, value), self._block_size)
        return self._keyring.sym_encrypt(plaintext)

    def decrypt_entry(self, payload: Any) -> Envelope:
        if not isinstance(payload, dict) or "ciphertext" not in payload or "nonce" not in payload:
            raise format_error(
                CRYPT_MALFORMED_ENVELOPE,
                reason="payload is not a {ciphertext, nonce} object",
            )

        try:
            plaintext = self._keyring.sym_decrypt(payload["ciphertext"], payload["nonce"])
        except Exception as e:
            raise format_error(
                CRYPT_DECRYPT_FAILED, reason=type(e).__name__,
            ) from e

        try:
            data = json.loads(unpad(plaintext))
        except (TypeError, ValueError) as e:
            raise format_error(
                CRYPT_MALFORMED_ENVELOPE, reason=type(e).__name__,
            ) from e

        if not isinstance(data, dict) or "key" not in data:
            raise format_error(CRYPT_MALFORMED_ENVELOPE, reason="missing 'key' field")

        return Envelope(key=data["key"], value=data.get("value"))
