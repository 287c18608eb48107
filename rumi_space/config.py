"""
config.py - rumi_space の設定

環境変数（と任意の .env.local）から SpaceConfig を組み立てる。

環境変数:
- RUMI_SPACE_DATA_DIR    ログストア / seed の保存先 (default: user_data/spaces)
- RUMI_SPACE_SEED        identity のマスター seed（未設定なら seed ファイル）
- RUMI_SPACE_SEED_FILE   seed ファイルのパス (default: <data_dir>/.space_seed)
- RUMI_SPACE_LOG_LEVEL   ログレベル (default: INFO)
- RUMI_SPACE_LOG_FORMAT  json / text (default: json)
- RUMI_SPACE_BLOCK_SIZE  private エントリのパディングブロック長 (default: 24)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATA_DIR = "user_data/spaces"
DEFAULT_SEED_FILENAME = ".space_seed"
DEFAULT_BLOCK_SIZE = 24
DEFAULT_ENV_FILE = ".env.local"


@dataclass(frozen=True)
class SpaceConfig:
    data_dir: Path
    seed: Optional[str] = None
    seed_file: Optional[Path] = None
    log_level: str = "INFO"
    log_format: str = "json"
    block_size: int = DEFAULT_BLOCK_SIZE

    @property
    def resolved_seed_file(self) -> Path:
        return self.seed_file or (self.data_dir / DEFAULT_SEED_FILENAME)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "spaces.db"

    @classmethod
    def from_env(cls, env_file: Optional[str] = DEFAULT_ENV_FILE) -> "SpaceConfig":
        """
        環境変数から設定を読み込む。

        env_file が存在すれば python-dotenv で読み込む（既存の環境変数は上書きしない）。
        """
        if env_file and Path(env_file).exists():
            load_dotenv(env_file, override=False)

        data_dir = Path(os.environ.get("RUMI_SPACE_DATA_DIR") or DEFAULT_DATA_DIR)
        seed_file = os.environ.get("RUMI_SPACE_SEED_FILE")

        raw_block = os.environ.get("RUMI_SPACE_BLOCK_SIZE", "")
        try:
            block_size = int(raw_block) if raw_block else DEFAULT_BLOCK_SIZE
        except ValueError:
            raise ValueError(f"RUMI_SPACE_BLOCK_SIZE must be an integer (got {raw_block!r})")
        if block_size < 1:
            raise ValueError(f"RUMI_SPACE_BLOCK_SIZE must be positive (got {block_size})")

        return cls(
            data_dir=data_dir,
            seed=os.environ.get("RUMI_SPACE_SEED") or None,
            seed_file=Path(seed_file) if seed_file else None,
            log_level=os.environ.get("RUMI_SPACE_LOG_LEVEL", "INFO").upper(),
            log_format=os.environ.get("RUMI_SPACE_LOG_FORMAT", "json").lower(),
            block_size=block_size,
        )
