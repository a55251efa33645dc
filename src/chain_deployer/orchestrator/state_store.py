"""JSON file store for the recovery state document."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from ..errors import CorruptStateError, PersistenceError
from .models import RecoveryState

logger = logging.getLogger(__name__)


class StateStore:
    """
    状态存储

    只负责读写恢复状态文档，不修改状态内容。
    由编排器顺序调用，不存在并发写入。
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> RecoveryState:
        """Load the persisted state, or an empty state if none exists.

        Raises:
            CorruptStateError: if the document cannot be parsed
        """
        if not self.path.exists():
            logger.info("No state file at %s, starting from empty state", self.path)
            return RecoveryState()

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptStateError(str(self.path), exc) from exc

        if not isinstance(data, dict):
            raise CorruptStateError(
                str(self.path),
                ValueError(f"expected a JSON object, got {type(data).__name__}"),
            )

        logger.info("Loaded %d recorded step(s) from %s", len(data), self.path)
        return RecoveryState(data)

    def persist(self, state: RecoveryState) -> None:
        """Durably write `state`, replacing the previous document atomically.

        Raises:
            PersistenceError: if the write cannot be completed
        """
        temp_path = None
        try:
            payload = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)
            directory = self.path.parent if str(self.path.parent) else Path(".")
            directory.mkdir(parents=True, exist_ok=True)

            # 先写临时文件再重命名（同目录下 rename 为原子操作）
            temp_fd, temp_path = tempfile.mkstemp(dir=directory, suffix=".json.tmp")
            with os.fdopen(temp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
            temp_path = None
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(str(self.path), exc) from exc
        finally:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)

        logger.debug("Persisted %d key(s) to %s", len(state), self.path)

    def clear(self) -> bool:
        """删除状态文件，返回是否确实删除了文件"""
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info("Removed state file %s", self.path)
        return True
