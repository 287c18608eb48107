"""
rumi_space package

identity × アプリ名ごとの論理ストレージ（space）。
1 本の append-only ログ上に public / private の 2 ビューと
スレッド購読レジストリを提供する。
"""

from .codec import ENC_BLOCK_SIZE, EntryCodec, Envelope, pad, unpad
from .config import SpaceConfig
from .error_messages import (
    CrossSpaceError,
    DecryptionError,
    InvalidAddress,
    InvalidArgument,
    InvalidStateTransition,
    SpaceError,
    StoreNotOpenError,
)
from .identity import LocalIdentity, LocalKeyring
from .log_store import LogStoreProvider, SqliteFeedStore, SqliteLogStore
from .logging_utils import configure_logging, get_structured_logger
from .space import PROOF_DID_KEY, Space, SpaceState
from .space_registry import SpaceRegistry, get_space_registry, reset_space_registry
from .store_view import DecodedEntry, PrivateView, PublicView, StoreView
from .thread import LocalThread
from .thread_registry import THREAD_KEY_PREFIX, ThreadRegistry

__all__ = [
    "ENC_BLOCK_SIZE",
    "EntryCodec",
    "Envelope",
    "pad",
    "unpad",
    "SpaceConfig",
    "SpaceError",
    "InvalidArgument",
    "InvalidAddress",
    "CrossSpaceError",
    "DecryptionError",
    "StoreNotOpenError",
    "InvalidStateTransition",
    "LocalIdentity",
    "LocalKeyring",
    "LogStoreProvider",
    "SqliteLogStore",
    "SqliteFeedStore",
    "configure_logging",
    "get_structured_logger",
    "PROOF_DID_KEY",
    "Space",
    "SpaceState",
    "SpaceRegistry",
    "get_space_registry",
    "reset_space_registry",
    "DecodedEntry",
    "StoreView",
    "PublicView",
    "PrivateView",
    "LocalThread",
    "THREAD_KEY_PREFIX",
    "ThreadRegistry",
]
