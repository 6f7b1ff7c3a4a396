"""Durable per-user key/value facts stored in a JSON file."""

import asyncio
import json
from pathlib import Path

from gravity_claw.logging import get_logger

log = get_logger(__name__)


class JsonFactStore:
    """Last-write-wins fact map per user.

    With ``path=None`` the store lives in memory only.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path).expanduser() if path else None
        self._lock = asyncio.Lock()
        self._memory: dict[str, dict[str, str]] = {}

    def _read_db(self) -> dict[str, dict[str, str]]:
        if self.path is None:
            return {user: dict(facts) for user, facts in self._memory.items()}
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Facts file unreadable; starting empty", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {
            str(user): {str(k): str(v) for k, v in facts.items()}
            for user, facts in data.items()
            if isinstance(facts, dict)
        }

    def _write_db(self, db: dict[str, dict[str, str]]) -> None:
        if self.path is None:
            self._memory = db
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(db, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)

    async def get(self, user_id: str) -> dict[str, str]:
        """All known facts for a user; empty dict if none."""
        async with self._lock:
            return dict(self._read_db().get(user_id, {}))

    async def set(self, user_id: str, key: str, value: str) -> None:
        async with self._lock:
            db = self._read_db()
            db.setdefault(user_id, {})[key] = value
            self._write_db(db)

    async def update(self, user_id: str, facts: dict[str, str]) -> None:
        """Merge several facts in one write."""
        if not facts:
            return
        async with self._lock:
            db = self._read_db()
            db.setdefault(user_id, {}).update(facts)
            self._write_db(db)

    async def clear(self, user_id: str) -> None:
        async with self._lock:
            db = self._read_db()
            if db.pop(user_id, None) is not None:
                self._write_db(db)
