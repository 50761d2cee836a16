"""
Ledger Store - durable read/write of the trade ledger and the watched-token set.

Both documents are fail-open: a missing or unreadable file loads as an
empty document so that bookkeeping faults never block trading.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Union

from loguru import logger
from pydantic import ValidationError

from .models import Ledger


def _atomic_write(path: Path, text: str) -> None:
    """Write to a sibling temp file, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class LedgerStore:
    """Persists the whole Ledger as one JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Ledger:
        try:
            if not self.path.exists():
                return Ledger()
            return Ledger.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Ledger at {self.path} is unreadable, starting from an empty ledger: {e}")
            return Ledger()

    def save(self, ledger: Ledger) -> bool:
        try:
            _atomic_write(self.path, ledger.model_dump_json(indent=2))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist ledger to {self.path}: {e}")
            return False


class WatchedTokenStore:
    """Set of lower-case token addresses the wallet has traded."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> List[str]:
        try:
            if not self.path.exists():
                return []
            data = json.loads(self.path.read_text(encoding="utf-8"))
            tokens = data.get("tokens") if isinstance(data, dict) else None
            if not isinstance(tokens, list):
                logger.warning(f"Traded token list at {self.path} has no token array, treating it as empty")
                return []
            return [t.lower() for t in tokens if isinstance(t, str)]
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Traded token list at {self.path} is unreadable: {e}")
            return []

    def _save(self, tokens: List[str]) -> bool:
        try:
            _atomic_write(self.path, json.dumps({"tokens": tokens}, indent=2))
            return True
        except OSError as e:
            logger.error(f"Failed to persist traded tokens to {self.path}: {e}")
            return False

    def contains(self, token_address: str) -> bool:
        return token_address.lower() in self.load()

    def add(self, token_address: str) -> bool:
        address = token_address.lower()
        with self._lock:
            tokens = self.load()
            if address in tokens:
                return True
            tokens.append(address)
            logger.info(f"Watching token {address}")
            return self._save(tokens)

    def remove(self, token_address: str) -> bool:
        address = token_address.lower()
        with self._lock:
            tokens = self.load()
            if address not in tokens:
                return True
            tokens.remove(address)
            logger.info(f"Stopped watching token {address}")
            return self._save(tokens)
