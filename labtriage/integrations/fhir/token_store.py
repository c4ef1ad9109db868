"""
Token storage for the Epic authorization flow

The auth service never touches global state; it is handed a TokenStore and
reads/writes two fixed keys: the serialized token and the pending anti-CSRF
state value. Both are client local.

The read-modify-write of the token is not atomic. Two processes sharing one
JsonFileTokenStore may both refresh an expiring token; the last writer wins.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

TOKEN_STORAGE_KEY = "epic_auth_token"
STATE_STORAGE_KEY = "epic_auth_state"


class TokenStore(Protocol):
    """Key/value storage for auth state"""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryTokenStore:
    """Process-local store; contents are lost on restart"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileTokenStore:
    """
    Store backed by a small JSON file so tokens survive restarts.

    Writes go to a temporary file that replaces the original.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read().strip()
        return json.loads(content) if content else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tokens-")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)


__all__ = [
    "InMemoryTokenStore",
    "JsonFileTokenStore",
    "STATE_STORAGE_KEY",
    "TOKEN_STORAGE_KEY",
    "TokenStore",
]
