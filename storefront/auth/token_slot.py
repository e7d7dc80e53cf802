"""
Bearer-token slot: where a client keeps its single active session token.

One slot per client identity context; a new login overwrites it.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)


class TokenSlot:
    """Interface for client-local token storage."""

    def get(self) -> Optional[str]:
        raise NotImplementedError

    def set(self, token: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenSlot(TokenSlot):
    def __init__(self, token: Optional[str] = None):
        self._token = token or None

    def get(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenSlot(TokenSlot):
    """Token persisted in a small JSON file, for long-lived clients."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def get(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f).get("sessionToken") or None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable token slot", path=str(self.path), error=str(e))
            return None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=str(self.path.parent), delete=False, encoding="utf-8"
        ) as tf:
            json.dump({"sessionToken": token}, tf)
            temp_path = Path(tf.name)
        try:
            shutil.move(str(temp_path), str(self.path))
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
