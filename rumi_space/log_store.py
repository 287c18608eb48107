"""
log_store.py - append-only ログストアの参照実装 (SQLite)

外部のレプリケーション型ログエンジンと同じ契約を、単一ノードの SQLite で満たす。
space 層はこの実装に依存せず interfaces.LogStore / RootStore 越しに使う。

永続化: SQLite (WAL モード)
- oplog テーブル: (store, seq) ごとに 1 エントリ。UPDATE / DELETE は一切しない
- feed テーブル: ルートレジストリ用の追記専用フィード

ハッシュ: 直前エントリの hash + エントリ本体の正規化 JSON の sha256 multihash
sync(num_entries):
- ローカルのエントリ数がヒント以上ならそのまま（fast path）
- それ以外は oplog を読み直して materialized index を再構築（full replay）。
  同じ DB ファイルに別プロセスが書いたエントリはここで取り込まれる
"""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .address import build_address
from .error_messages import STORE_NOT_LOADED, format_error, throw_if_not_equal_len, throw_if_undefined
from .interfaces import OP_DEL, OP_PUT, FeedEntry, LogEntry
from .key_transform import sha256_multihash
from .logging_utils import get_structured_logger

logger = get_structured_logger("rumi.space.log_store")

MEMORY_DB = ":memory:"


def _now_ts() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _entry_hash(previous_hash: str, body: Dict[str, Any]) -> str:
    return sha256_multihash(previous_hash + "|" + _canonical(body))


def _connect(db_path: str) -> sqlite3.Connection:
    if db_path != MEMORY_DB:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if db_path != MEMORY_DB:
        conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS oplog (
            store     TEXT NOT NULL,
            seq       INTEGER NOT NULL,
            op        TEXT NOT NULL,
            key       TEXT NOT NULL,
            value     TEXT,
            hash      TEXT NOT NULL,
            identity  TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            no_link   INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (store, seq)
        );
        CREATE TABLE IF NOT EXISTS feed (
            store     TEXT NOT NULL,
            seq       INTEGER NOT NULL,
            value     TEXT NOT NULL,
            hash      TEXT NOT NULL,
            identity  TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            PRIMARY KEY (store, seq)
        );
    """)
    conn.commit()
    return conn


# ---------------------------------------------------------------------------
# SqliteLogStore
# ---------------------------------------------------------------------------

class SqliteLogStore:
    """
    キーバリュー型の append-only ログ。

    - set / remove はどちらも oplog への追記（remove は DEL トンボストーン）
    - get / all は materialized index（各キーの最新 PUT）を読む
    - log は oplog 全体（PUT / DEL）を追記順で返す
    """

    def __init__(self, db_path: str, name: str, identity_id: str):
        self._db_path = str(db_path)
        self._name = name
        self._identity_id = identity_id
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._address: Optional[str] = None
        self._entries: List[LogEntry] = []
        self._index: Dict[str, LogEntry] = {}
        self._no_link: Dict[str, bool] = {}
        self._log = logger.bind(store=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def is_loaded(self) -> bool:
        return self._conn is not None

    @property
    def head_hash(self) -> str:
        return self._entries[-1].hash if self._entries else ""

    def _require_loaded(self) -> sqlite3.Connection:
        if self._conn is None:
            raise format_error(STORE_NOT_LOADED, name=self._name)
        return self._conn

    # ------------------------------------------------------------------ #
    # load / sync
    # ------------------------------------------------------------------ #

    async def load(self) -> str:
        with self._lock:
            if self._conn is None:
                self._conn = _connect(self._db_path)
                self._address = build_address(self._identity_id, self._name)
                self._replay()
                self._log.info("Log store loaded", address=self._address, entries=len(self._entries))
            return self._address

    async def sync(self, num_entries: Optional[int] = None) -> None:
        with self._lock:
            self._require_loaded()
            if num_entries is not None and len(self._entries) >= num_entries:
                self._log.debug("Sync fast path", entries=len(self._entries), hint=num_entries)
                return
            self._replay()
            self._log.info("Sync replayed oplog", entries=len(self._entries), hint=num_entries)

    def _replay(self) -> None:
        rows = self._conn.execute(
            "SELECT op, key, value, hash, identity, timestamp, no_link "
            "FROM oplog WHERE store = ? ORDER BY seq",
            (self._name,),
        ).fetchall()

        entries: List[LogEntry] = []
        index: Dict[str, LogEntry] = {}
        no_link: Dict[str, bool] = {}
        for row in rows:
            entry = LogEntry(
                op=row["op"],
                key=row["key"],
                value=json.loads(row["value"]) if row["value"] is not None else None,
                hash=row["hash"],
                identity=row["identity"],
                timestamp=row["timestamp"],
            )
            entries.append(entry)
            if entry.op == OP_PUT:
                index[entry.key] = entry
                no_link[entry.key] = bool(row["no_link"])
            else:
                index.pop(entry.key, None)
                no_link.pop(entry.key, None)

        self._entries = entries
        self._index = index
        self._no_link = no_link

    # ------------------------------------------------------------------ #
    # 追記
    # ------------------------------------------------------------------ #

    def _append(
        self,
        conn: sqlite3.Connection,
        op: str,
        key: str,
        value: Any,
        no_link: bool = False,
    ) -> LogEntry:
        """トランザクション内で 1 エントリを追記する（commit は呼び出し側）。"""
        timestamp = _now_ts()
        body = {
            "op": op,
            "key": key,
            "value": value,
            "identity": self._identity_id,
            "timestamp": timestamp,
        }
        entry = LogEntry(
            op=op,
            key=key,
            value=copy.deepcopy(value),
            hash=_entry_hash(self.head_hash, body),
            identity=self._identity_id,
            timestamp=timestamp,
        )
        conn.execute(
            "INSERT INTO oplog (store, seq, op, key, value, hash, identity, timestamp, no_link) "
            "SELECT ?, COALESCE(MAX(seq), 0) + 1, ?, ?, ?, ?, ?, ?, ? FROM oplog WHERE store = ?",
            (
                self._name, op, key,
                _canonical(value) if op == OP_PUT else None,
                entry.hash, entry.identity, entry.timestamp, int(no_link),
                self._name,
            ),
        )
        self._entries.append(entry)
        if op == OP_PUT:
            self._index[key] = entry
            self._no_link[key] = no_link
        else:
            self._index.pop(key, None)
            self._no_link.pop(key, None)
        return entry

    def _commit_batch(self, ops: Sequence[Tuple[str, str, Any, bool]]) -> List[str]:
        conn = self._require_loaded()
        with self._lock:
            entries_before = list(self._entries)
            index_before = dict(self._index)
            no_link_before = dict(self._no_link)
            try:
                hashes = [self._append(conn, *op).hash for op in ops]
                conn.commit()
            except Exception:
                conn.rollback()
                self._entries = entries_before
                self._index = index_before
                self._no_link = no_link_before
                raise
            return hashes

    async def set(self, key: str, value: Any, no_link: bool = False) -> str:
        throw_if_undefined(key, "key")
        return self._commit_batch([(OP_PUT, key, value, no_link)])[0]

    async def set_multiple(self, keys: Sequence[str], values: Sequence[Any]) -> List[str]:
        throw_if_not_equal_len(keys, values)
        for key in keys:
            throw_if_undefined(key, "key")
        return self._commit_batch([(OP_PUT, k, v, False) for k, v in zip(keys, values)])

    async def remove(self, key: str) -> Optional[str]:
        throw_if_undefined(key, "key")
        self._require_loaded()
        if key not in self._index:
            return None
        return self._commit_batch([(OP_DEL, key, None, False)])[0]

    # ------------------------------------------------------------------ #
    # 読み出し
    # ------------------------------------------------------------------ #

    @staticmethod
    def _with_metadata(entry: LogEntry) -> Dict[str, Any]:
        result = entry.metadata()
        result["value"] = copy.deepcopy(entry.value)
        return result

    async def get(self, key: str, metadata: bool = False) -> Any:
        self._require_loaded()
        entry = self._index.get(key)
        if entry is None:
            return None
        if metadata:
            return self._with_metadata(entry)
        return copy.deepcopy(entry.value)

    async def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        self._require_loaded()
        entry = self._index.get(key)
        return entry.metadata() if entry is not None else None

    async def all(self, metadata: bool = False) -> Dict[str, Any]:
        self._require_loaded()
        if metadata:
            return {k: self._with_metadata(e) for k, e in self._index.items()}
        return {k: copy.deepcopy(e.value) for k, e in self._index.items()}

    @property
    def log(self) -> List[LogEntry]:
        self._require_loaded()
        return list(self._entries)

    def is_no_link(self, key: str) -> bool:
        """no_link ヒント付きで書かれたキーかどうか。"""
        return self._no_link.get(key, False)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except Exception:
                    pass
                self._conn = None


# ---------------------------------------------------------------------------
# SqliteFeedStore
# ---------------------------------------------------------------------------

class _FeedIterator:
    def __init__(self, entries: List[FeedEntry]):
        self._entries = entries

    def collect(self) -> List[FeedEntry]:
        return list(self._entries)

    def __iter__(self):
        return iter(self._entries)


class SqliteFeedStore:
    """ルートレジストリ用の追記専用フィード。"""

    def __init__(self, db_path: str, name: str, identity_id: str):
        self._db_path = str(db_path)
        self._name = name
        self._identity_id = identity_id
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def name(self) -> str:
        return self._name

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = _connect(self._db_path)
        return self._conn

    def _rows(self) -> List[sqlite3.Row]:
        return self._get_conn().execute(
            "SELECT value, hash FROM feed WHERE store = ? ORDER BY seq",
            (self._name,),
        ).fetchall()

    async def add(self, value: Dict[str, Any]) -> str:
        with self._lock:
            conn = self._get_conn()
            rows = self._rows()
            previous = rows[-1]["hash"] if rows else ""
            timestamp = _now_ts()
            entry_hash = _entry_hash(previous, {
                "value": value,
                "identity": self._identity_id,
                "timestamp": timestamp,
            })
            conn.execute(
                "INSERT INTO feed (store, seq, value, hash, identity, timestamp) "
                "SELECT ?, COALESCE(MAX(seq), 0) + 1, ?, ?, ?, ? FROM feed WHERE store = ?",
                (self._name, _canonical(value), entry_hash, self._identity_id, timestamp, self._name),
            )
            conn.commit()
            return entry_hash

    def iterator(self, limit: int = -1) -> _FeedIterator:
        """limit < 0 なら全件、それ以外は新しい方から limit 件（古い順に並べて返す）。"""
        with self._lock:
            entries = [FeedEntry(hash=r["hash"], value=json.loads(r["value"])) for r in self._rows()]
        if limit >= 0:
            entries = entries[-limit:] if limit else []
        return _FeedIterator(entries)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except Exception:
                    pass
                self._conn = None


# ---------------------------------------------------------------------------
# LogStoreProvider
# ---------------------------------------------------------------------------

class LogStoreProvider:
    """
    1 つの DB ファイル上で identity ごとのストアを払い出す。

    同じ name に対しては同じ SqliteLogStore を返す（1 name につき 1 ストア）。
    """

    def __init__(self, db_path: str, identity_id: str):
        self._db_path = str(db_path)
        self._identity_id = identity_id
        self._stores: Dict[str, SqliteLogStore] = {}
        self._root_store: Optional[SqliteFeedStore] = None
        self._lock = threading.Lock()

    @property
    def identity_id(self) -> str:
        return self._identity_id

    def key_value_store(self, name: str) -> SqliteLogStore:
        with self._lock:
            store = self._stores.get(name)
            if store is None:
                store = SqliteLogStore(self._db_path, name, self._identity_id)
                self._stores[name] = store
            return store

    def root_store(self) -> SqliteFeedStore:
        with self._lock:
            if self._root_store is None:
                self._root_store = SqliteFeedStore(
                    self._db_path, f"{self._identity_id}.root", self._identity_id,
                )
            return self._root_store

    def close(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.close()
            if self._root_store is not None:
                self._root_store.close()
