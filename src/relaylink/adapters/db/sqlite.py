"""SQLite-backed webhook subscriptions.

One row per subscriber URL; ``events`` is stored as a JSON list of event type
strings, ``["*"]`` meaning every event.
"""
from __future__ import annotations

import json
import sqlite3
import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from relaylink.services.errors import ValidationError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS webhooks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    events TEXT NOT NULL,
    created INT NOT NULL
);
"""


@dataclass(slots=True)
class Webhook:
    id: int
    url: str
    events: str
    created: int

    def event_types(self) -> list[str]:
        try:
            parsed = json.loads(self.events)
        except ValueError:
            return []
        if isinstance(parsed, str):
            return [parsed]
        if not isinstance(parsed, list):
            return []
        return [str(item) for item in parsed]

    def accepts(self, event_type: str) -> bool:
        types = self.event_types()
        return "*" in types or event_type in types

    def as_dict(self) -> dict:
        return {"id": self.id, "url": self.url, "events": self.event_types(), "created": self.created}


def _normalize_events(events: Iterable[object]) -> list[str]:
    if isinstance(events, (str, bytes)):
        events = [events]
    out: list[str] = []
    for item in events:
        # the setup screen historically sent {"label": ..., "value": "*"}
        if isinstance(item, dict):
            item = item.get("value")
        if not isinstance(item, str) or not item.strip():
            raise ValidationError("webhook events must be non-empty strings")
        if item.strip() not in out:
            out.append(item.strip())
    if not out:
        raise ValidationError("webhook needs at least one event type")
    return out


def _row(row: sqlite3.Row) -> Webhook:
    return Webhook(id=row["id"], url=row["url"], events=row["events"], created=row["created"])


class WebhookRepository:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as con:
            con.executescript(_SCHEMA)
            con.commit()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self._db_path))
        con.row_factory = sqlite3.Row
        return con

    def list(self) -> List[Webhook]:
        with closing(self._connect()) as con:
            rows = con.execute("SELECT id, url, events, created FROM webhooks ORDER BY id").fetchall()
        return [_row(r) for r in rows]

    def get(self, webhook_id: int) -> Optional[Webhook]:
        with closing(self._connect()) as con:
            row = con.execute(
                "SELECT id, url, events, created FROM webhooks WHERE id=?", (webhook_id,)
            ).fetchone()
        return _row(row) if row else None

    def add(self, url: str, events: Iterable[object]) -> Webhook:
        """Register ``url``; an existing row for the same URL gets its events replaced."""
        if not url or not url.strip():
            raise ValidationError("webhook url is required")
        payload = json.dumps(_normalize_events(events))
        with closing(self._connect()) as con:
            con.execute(
                """
                INSERT INTO webhooks(url, events, created) VALUES (?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET events = excluded.events
                """,
                (url.strip(), payload, int(time.time() * 1000)),
            )
            con.commit()
            row = con.execute(
                "SELECT id, url, events, created FROM webhooks WHERE url=?", (url.strip(),)
            ).fetchone()
        return _row(row)

    def update(self, webhook_id: int, *, url: str | None = None, events: Iterable[object] | None = None) -> Optional[Webhook]:
        current = self.get(webhook_id)
        if current is None:
            return None
        new_url = url.strip() if url else current.url
        new_events = json.dumps(_normalize_events(events)) if events is not None else current.events
        with closing(self._connect()) as con:
            con.execute("UPDATE webhooks SET url=?, events=? WHERE id=?", (new_url, new_events, webhook_id))
            con.commit()
        return self.get(webhook_id)

    def delete(self, webhook_id: int) -> bool:
        with closing(self._connect()) as con:
            cur = con.execute("DELETE FROM webhooks WHERE id=?", (webhook_id,))
            con.commit()
            return cur.rowcount > 0

    def delete_url(self, url: str) -> bool:
        with closing(self._connect()) as con:
            cur = con.execute("DELETE FROM webhooks WHERE url=?", (url.strip(),))
            con.commit()
            return cur.rowcount > 0
