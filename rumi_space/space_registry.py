"""
space_registry.py - (identity, name) ごとに Space を 1 つだけ払い出す

同じ identity が同じ名前の space を二重に開かないようにする。
open() が失敗した Space はキャッシュから外す（次回は作り直す）。
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Tuple

from .interfaces import Identity, LogEngine, RootStore
from .logging_utils import get_structured_logger
from .space import Space

logger = get_structured_logger("rumi.space.registry")


class SpaceRegistry:
    def __init__(self) -> None:
        self._spaces: Dict[Tuple[str, str], Space] = {}
        self._lock = threading.Lock()

    def get(self, identity: Identity, name: str) -> Optional[Space]:
        with self._lock:
            return self._spaces.get((identity.did, name))

    def get_or_create(
        self,
        name: str,
        identity: Identity,
        engine: LogEngine,
        root_store: RootStore,
        **space_kwargs: Any,
    ) -> Space:
        key = (identity.did, name)
        with self._lock:
            space = self._spaces.get(key)
            if space is None:
                space = Space(name, identity, engine, root_store, **space_kwargs)
                self._spaces[key] = space
            return space

    async def open_space(
        self,
        name: str,
        identity: Identity,
        engine: LogEngine,
        root_store: RootStore,
        space_kwargs: Optional[Dict[str, Any]] = None,
        **open_kwargs: Any,
    ) -> Space:
        """
        Space を取得（なければ作成）して open() する。

        open_kwargs は Space.open() にそのまま渡す。
        """
        space = self.get_or_create(name, identity, engine, root_store, **(space_kwargs or {}))
        try:
            await space.open(**open_kwargs)
        except Exception:
            with self._lock:
                if self._spaces.get((identity.did, name)) is space:
                    del self._spaces[(identity.did, name)]
            logger.warning("Failed to open space; evicted from registry", space=name)
            raise
        return space

    def list_spaces(self, identity: Identity) -> Dict[str, Space]:
        with self._lock:
            return {name: s for (did, name), s in self._spaces.items() if did == identity.did}


_global_space_registry: Optional[SpaceRegistry] = None
_registry_lock = threading.Lock()


def get_space_registry() -> SpaceRegistry:
    global _global_space_registry
    if _global_space_registry is None:
        with _registry_lock:
            if _global_space_registry is None:
                _global_space_registry = SpaceRegistry()
    return _global_space_registry


def reset_space_registry() -> SpaceRegistry:
    global _global_space_registry
    with _registry_lock:
        _global_space_registry = SpaceRegistry()
    return _global_space_registry
