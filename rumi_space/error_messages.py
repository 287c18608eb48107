"""
error_messages.py - 統一エラーメッセージ基盤 (rumi_space)

エラーコード体系、SpaceError 例外階層、ヘルパー関数を提供する。

エラーコード形式: RUMI-{カテゴリ}-{3桁番号}
カテゴリ: VAL, ADDR, CRYPT, STORE, SYS

設計原則:
- stdlib のみに依存（循環参照を作らない）
- バリデーションエラーは I/O の前に送出する
- 外部コラボレータ（ログストア / identity）の例外はラップせずそのまま伝播させる
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type


# ======================================================================
# エラーコード形式
# ======================================================================

# RUMI-{CATEGORY(2-5大文字)}-{3桁番号}
ERROR_CODE_PATTERN = re.compile(r'^RUMI-[A-Z]{2,5}-\d{3}$')


# ======================================================================
# カテゴリ列挙型
# ======================================================================

class ErrorCategory(enum.Enum):
    """エラーカテゴリ。

    VAL  : 引数バリデーション
    ADDR : スレッド / ストアアドレス
    CRYPT: private ビューの復号
    STORE: ストア / ライフサイクル状態
    SYS  : システム全般
    """

    VAL = "VAL"
    ADDR = "ADDR"
    CRYPT = "CRYPT"
    STORE = "STORE"
    SYS = "SYS"


# ======================================================================
# ErrorCode データクラス（定数テンプレート）
# ======================================================================

@dataclass(frozen=True)
class ErrorCode:
    """エラーコード定数。テンプレート文字列とデフォルト suggestion を保持する。

    Attributes:
        code: RUMI-{CAT}-{NNN} 形式のコード文字列。
        template: ``str.format()`` 対応のメッセージテンプレート。
        suggestion: デフォルトの解決策提案（format_error でオーバーライド可）。
        category: 所属カテゴリ。
    """

    code: str
    template: str
    suggestion: Optional[str] = None
    category: Optional[ErrorCategory] = None

    def __post_init__(self) -> None:
        if not ERROR_CODE_PATTERN.match(self.code):
            raise ValueError(
                f"Invalid error code format: {self.code!r}. "
                f"Expected RUMI-{{CATEGORY}}-{{NNN}}"
            )


# ======================================================================
# 例外クラス
# ======================================================================

class SpaceError(Exception):
    """rumi_space の基底エラークラス。

    Attributes:
        code: エラーコード文字列。
        message: 人間可読メッセージ。
        details: 追加情報の dict（任意）。
        suggestion: 解決策の提案（任意）。
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details
        self.suggestion = suggestion
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        parts = [f"code={self.code!r}", f"message={self.message!r}"]
        if self.details is not None:
            parts.append(f"details={self.details!r}")
        if self.suggestion is not None:
            parts.append(f"suggestion={self.suggestion!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Any]:
        """JSON シリアライズ可能な dict を返す。

        ``details`` / ``suggestion`` が ``None`` の場合はキー自体を含めない。
        """
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        return result


class InvalidArgument(SpaceError, ValueError):
    """未定義キー、長さ不一致の配列など。"""


class InvalidAddress(SpaceError, ValueError):
    """スレッドアドレスの形式不正。"""


class CrossSpaceError(SpaceError):
    """別 space に属するスレッドアドレスを join しようとした。"""


class DecryptionError(SpaceError):
    """private エントリの認証失敗またはデシリアライズ失敗。"""


class StoreNotOpenError(SpaceError):
    """open() 前にビューへアクセスした。"""


class InvalidStateTransition(SpaceError):
    """ライフサイクルの後退遷移。"""


# ======================================================================
# エラーコード定数: VAL (引数バリデーション)
# ======================================================================

VAL_UNDEFINED = ErrorCode(
    code="RUMI-VAL-001",
    template="Argument {name!r} must be defined",
    suggestion="Pass a non-empty value.",
    category=ErrorCategory.VAL,
)

VAL_LENGTH_MISMATCH = ErrorCode(
    code="RUMI-VAL-002",
    template="Arrays must be of the same length (got {left} and {right})",
    suggestion="Provide exactly one value per key.",
    category=ErrorCategory.VAL,
)

# ======================================================================
# エラーコード定数: ADDR (アドレス)
# ======================================================================

ADDR_INVALID = ErrorCode(
    code="RUMI-ADDR-001",
    template="{operation}: must subscribe to valid thread address (got {address!r})",
    suggestion="Use a full address of the form /orbitdb/<root>/<name>.",
    category=ErrorCategory.ADDR,
)

ADDR_CROSS_SPACE = ErrorCode(
    code="RUMI-ADDR-002",
    template="joinThread: attempting to open thread from space {other!r} within space {space!r}",
    suggestion="Open the thread within the space it belongs to.",
    category=ErrorCategory.ADDR,
)

# ======================================================================
# エラーコード定数: CRYPT (復号)
# ======================================================================

CRYPT_DECRYPT_FAILED = ErrorCode(
    code="RUMI-CRYPT-001",
    template="Failed to decrypt private entry: {reason}",
    suggestion="The keyring does not match the entry or the entry is corrupted.",
    category=ErrorCategory.CRYPT,
)

CRYPT_MALFORMED_ENVELOPE = ErrorCode(
    code="RUMI-CRYPT-002",
    template="Decrypted private entry is not a valid envelope: {reason}",
    suggestion="The entry is corrupted.",
    category=ErrorCategory.CRYPT,
)

# ======================================================================
# エラーコード定数: STORE (ストア / ライフサイクル)
# ======================================================================

STORE_NOT_OPEN = ErrorCode(
    code="RUMI-STORE-001",
    template="Space {space!r} is not open",
    suggestion="Call and await Space.open() first.",
    category=ErrorCategory.STORE,
)

STORE_BACKWARD_TRANSITION = ErrorCode(
    code="RUMI-STORE-002",
    template="Invalid lifecycle transition for space {space!r}: {current} -> {target}",
    suggestion=None,
    category=ErrorCategory.STORE,
)

STORE_NOT_LOADED = ErrorCode(
    code="RUMI-STORE-003",
    template="Log store {name!r} is not loaded",
    suggestion="Call load() on the store before using it.",
    category=ErrorCategory.STORE,
)


# ======================================================================
# レジストリ
# ======================================================================

_ALL_ERROR_CODES: Dict[str, ErrorCode] = {}

_EXCEPTION_TYPES: Dict[ErrorCode, Type[SpaceError]] = {
    VAL_UNDEFINED: InvalidArgument,
    VAL_LENGTH_MISMATCH: InvalidArgument,
    ADDR_INVALID: InvalidAddress,
    ADDR_CROSS_SPACE: CrossSpaceError,
    CRYPT_DECRYPT_FAILED: DecryptionError,
    CRYPT_MALFORMED_ENVELOPE: DecryptionError,
    STORE_NOT_OPEN: StoreNotOpenError,
    STORE_BACKWARD_TRANSITION: InvalidStateTransition,
    STORE_NOT_LOADED: StoreNotOpenError,
}


def _register_all() -> None:
    """モジュール内の全 ErrorCode インスタンスを自動収集して登録する。"""
    import sys

    module = sys.modules[__name__]
    for name in dir(module):
        obj = getattr(module, name)
        if isinstance(obj, ErrorCode):
            if obj.code in _ALL_ERROR_CODES:
                raise ValueError(f"Duplicate error code: {obj.code}")
            _ALL_ERROR_CODES[obj.code] = obj


_register_all()


def get_all_error_codes() -> Dict[str, ErrorCode]:
    """登録済みの全エラーコードを ``{code: ErrorCode}`` dict で返す。"""
    return dict(_ALL_ERROR_CODES)


def get_error_code(code: str) -> Optional[ErrorCode]:
    """コード文字列から ErrorCode を取得する。見つからなければ ``None``。"""
    return _ALL_ERROR_CODES.get(code)


def format_error(
    code: ErrorCode,
    *,
    details: Optional[Dict[str, Any]] = None,
    suggestion: Optional[str] = None,
    **kwargs: Any,
) -> SpaceError:
    """テンプレート文字列にパラメータを埋め込んで例外インスタンスを返す。

    ErrorCode ごとに対応する SpaceError サブクラスが選ばれる。

    Example::

        raise format_error(VAL_UNDEFINED, name="key")
        # => InvalidArgument(code='RUMI-VAL-001', message="Argument 'key' must be defined", ...)
    """
    try:
        message = code.template.format(**kwargs)
    except KeyError as exc:
        message = f"{code.template} (missing parameter: {exc})"

    resolved_suggestion = suggestion if suggestion is not None else code.suggestion
    exc_type = _EXCEPTION_TYPES.get(code, SpaceError)

    return exc_type(
        code=code.code,
        message=message,
        details=details,
        suggestion=resolved_suggestion,
    )


# ======================================================================
# バリデーションヘルパー
# ======================================================================

def throw_if_undefined(value: Any, name: str) -> None:
    """value が None または空文字列なら InvalidArgument を送出する。"""
    if value is None or value == "":
        raise format_error(VAL_UNDEFINED, name=name)


def throw_if_not_equal_len(left: Any, right: Any) -> None:
    """2 つのシーケンスの長さが異なれば InvalidArgument を送出する。"""
    if left is None or right is None or len(left) != len(right):
        raise format_error(
            VAL_LENGTH_MISMATCH,
            left=None if left is None else len(left),
            right=None if right is None else len(right),
        )
