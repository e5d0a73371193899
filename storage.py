"""
Client-side key/value storage.

Mirrors the browser's localStorage contract: string keys, JSON string
values, whole-value reads and writes. `MemoryStorage` backs a single
session; `FileStorage` keeps the values in a JSON file between runs.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

CART_KEY = "artisanCart"
ORDERS_KEY = "artisanOrders"
THEME_KEY = "artisanTheme"

DEFAULT_THEME = "earthy-terracotta"


class Storage:
    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def load_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_item(key)
        if raw is None:
            return default
        return json.loads(raw)

    def save_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage(Storage):
    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        tmp.replace(self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class ThemeManager:
    def __init__(self, storage: Storage):
        self.storage = storage

    @property
    def current(self) -> str:
        return self.storage.get_item(THEME_KEY) or DEFAULT_THEME

    def set_theme(self, theme: str) -> None:
        self.storage.set_item(THEME_KEY, theme)
