"""Daily JSONL log of chat events.

Each event is one line in ``interactions_YYYY-MM-DD.jsonl`` under
``settings.log_dir``. Fields passed as None are left out of the line.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

from canvaschat.config import settings

CHAT_EVENTS = frozenset({"chat_send", "chat_stream", "image_generate", "history_clear"})


def interaction_log_path(day: datetime | None = None) -> Path:
    day = day or datetime.now(timezone.utc)
    return settings.log_dir / f"interactions_{day:%Y-%m-%d}.jsonl"


def log_interaction(event: str, user_id: str, **fields) -> dict:
    """Append one chat event for ``user_id`` and return the written entry."""
    if event not in CHAT_EVENTS:
        raise ValueError(f"Unknown chat event: {event}")

    now = datetime.now(timezone.utc)
    entry = {"ts": now.isoformat(), "event": event, "user_id": user_id}
    entry.update((key, value) for key, value in fields.items() if value is not None)

    path = interaction_log_path(now)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return entry
