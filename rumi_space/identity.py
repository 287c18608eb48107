"""
identity.py - identity / keyring の参照実装

マスター seed から space ごとの鍵素材を HKDF-SHA256 で導出する。

- LocalKeyring: AES-256-GCM による sym_encrypt / sym_decrypt と DB salt
- LocalIdentity: consent 管理、sub-DID、HS256 JWT の署名と検証

seed の優先順位:
1. 引数 / 環境変数 (RUMI_SPACE_SEED)
2. seed ファイル
3. 新規生成して seed ファイルに atomic write (0o600)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .address import space_store_name
from .config import SpaceConfig
from .logging_utils import get_structured_logger

logger = get_structured_logger("rumi.space.identity")

KEY_SIZE = 32
NONCE_SIZE = 12
SALT_SIZE = 16
MIN_SEED_LENGTH = 32
DID_METHOD = "did:rumi"


# ======================================================================
# ユーティリティ
# ======================================================================

def derive_key(secret: bytes, info: str, length: int = KEY_SIZE) -> bytes:
    """HKDF-SHA256 で info ごとに独立した鍵を導出する。"""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=b"\x00" * SALT_SIZE,
        info=info.encode("utf-8"),
    )
    return hkdf.derive(secret)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def generate_or_load_seed(seed_path: Path, seed: Optional[str] = None) -> bytes:
    """
    マスター seed をロードまたは生成する。

    Args:
        seed_path: seed ファイルのパス
        seed:      明示指定の seed（32 文字以上なら最優先）

    Returns:
        seed (bytes)
    """
    if seed and len(seed) >= MIN_SEED_LENGTH:
        return seed.encode("utf-8")
    if seed:
        logger.warning("Provided seed is too short; falling back to seed file", length=len(seed))

    if seed_path.exists():
        data = seed_path.read_text(encoding="utf-8").strip()
        if len(data) >= MIN_SEED_LENGTH:
            return data.encode("utf-8")
        logger.warning("Seed file is too short; regenerating", path=str(seed_path))

    new_seed = hashlib.sha256(os.urandom(32)).hexdigest()
    seed_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=str(seed_path.parent), prefix=".space_seed_tmp_")
    try:
        os.write(fd, new_seed.encode("utf-8"))
        os.close(fd)
        fd = -1
        os.replace(tmp_path, str(seed_path))
        try:
            os.chmod(str(seed_path), 0o600)
        except (OSError, AttributeError):
            pass
    except Exception:
        if fd >= 0:
            try:
                os.close(fd)
            except OSError:
                pass
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise

    logger.info("Generated new identity seed", path=str(seed_path))
    return new_seed.encode("utf-8")


# ======================================================================
# LocalKeyring
# ======================================================================

class LocalKeyring:
    """1 space 分の対称鍵と DB salt。"""

    def __init__(self, enc_key: bytes, salt: str):
        if len(enc_key) != KEY_SIZE:
            raise ValueError(f"enc_key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(enc_key)
        self._salt = salt

    def get_db_salt(self) -> str:
        return self._salt

    def sym_encrypt(self, plaintext: str) -> Dict[str, str]:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return {
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
            "nonce": base64.b64encode(nonce).decode("ascii"),
        }

    def sym_decrypt(self, ciphertext: str, nonce: str) -> str:
        # 認証失敗は cryptography.exceptions.InvalidTag
        plaintext = self._aead.decrypt(
            base64.b64decode(nonce, validate=True),
            base64.b64decode(ciphertext, validate=True),
            None,
        )
        return plaintext.decode("utf-8")


# ======================================================================
# LocalIdentity
# ======================================================================

class LocalIdentity:
    """
    単一ユーザーの identity。

    init_keyring_by_name() は、その space 名に対して初めて呼ばれたとき
    consent が必要 (True) を返し、以降は False を返す。
    """

    def __init__(self, seed: bytes):
        if len(seed) < MIN_SEED_LENGTH:
            raise ValueError(f"seed must be at least {MIN_SEED_LENGTH} bytes")
        self._seed = seed
        self._did = f"{DID_METHOD}:{derive_key(seed, 'did').hex()}"
        self._consented: set = set()
        self._keyrings: Dict[str, LocalKeyring] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: SpaceConfig) -> "LocalIdentity":
        return cls(generate_or_load_seed(config.resolved_seed_file, config.seed))

    @property
    def did(self) -> str:
        return self._did

    async def init_keyring_by_name(self, name: str) -> bool:
        with self._lock:
            consent_needed = name not in self._consented
            self._consented.add(name)
        self.get_keyring_by_space_name(space_store_name(name))
        return consent_needed

    def get_keyring_by_space_name(self, store_name: str) -> LocalKeyring:
        with self._lock:
            keyring = self._keyrings.get(store_name)
            if keyring is None:
                keyring = LocalKeyring(
                    enc_key=derive_key(self._seed, f"enc:{store_name}"),
                    salt=derive_key(self._seed, f"salt:{store_name}", SALT_SIZE).hex(),
                )
                self._keyrings[store_name] = keyring
            return keyring

    def get_sub_did(self, name: str) -> str:
        return f"{DID_METHOD}:{derive_key(self._seed, f'subdid:{name}').hex()}"

    def _signing_key(self, space: Optional[str]) -> bytes:
        return derive_key(self._seed, f"jwt:{space or ''}")

    def _issuer(self, space: Optional[str]) -> str:
        return self.get_sub_did(space) if space else self._did

    async def sign_jwt(self, payload: Dict[str, Any], space: Optional[str] = None) -> str:
        """HS256 の compact JWT を返す。space 指定時は issuer がその space の sub-DID。"""
        header = {"alg": "HS256", "typ": "JWT"}
        claims = dict(payload)
        claims.setdefault("iat", int(time.time()))
        claims["iss"] = self._issuer(space)

        signing_input = ".".join(
            _b64url(json.dumps(part, sort_keys=True, separators=(",", ":")).encode("utf-8"))
            for part in (header, claims)
        )
        signature = hmac.new(
            self._signing_key(space), signing_input.encode("ascii"), hashlib.sha256,
        ).digest()
        return f"{signing_input}.{_b64url(signature)}"

    def verify_jwt(self, token: str, space: Optional[str] = None) -> Dict[str, Any]:
        """
        sign_jwt() で作られたトークンを検証して claims を返す。

        署名不一致・形式不正・issuer 不一致は ValueError。
        """
        parts = token.split(".") if isinstance(token, str) else []
        if len(parts) != 3:
            raise ValueError("JWT must have three segments")

        signing_input = f"{parts[0]}.{parts[1]}"
        expected = hmac.new(
            self._signing_key(space), signing_input.encode("ascii"), hashlib.sha256,
        ).digest()
        if not hmac.compare_digest(expected, _b64url_decode(parts[2])):
            raise ValueError("JWT signature mismatch")

        header = json.loads(_b64url_decode(parts[0]))
        if header.get("alg") != "HS256":
            raise ValueError(f"Unsupported JWT alg: {header.get('alg')!r}")

        claims = json.loads(_b64url_decode(parts[1]))
        if claims.get("iss") != self._issuer(space):
            raise ValueError("JWT issuer mismatch")
        return claims
