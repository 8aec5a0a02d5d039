import os
import logging
from datetime import datetime, timezone
from functools import lru_cache
from supabase import create_client, Client

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000  # Supabase row limit per request


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def get_quest_rows(db: Client) -> list[dict]:
    """Raw catalog rows, ordered the way the catalog is displayed."""
    rows: list[dict] = []
    offset = 0
    while True:
        res = (
            db.table("quests")
            .select("*")
            .order("trader")
            .order("level")
            .order("name")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        rows.extend(batch)
        if len(batch) < PAGE_SIZE:
            return rows
        offset += PAGE_SIZE


def get_user(db: Client, user_id: str) -> dict | None:
    res = db.table("users").select("*").eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


def create_user(db: Client, user_id: str, display_name: str) -> None:
    db.table("users").insert({"user_id": user_id, "display_name": display_name}).execute()


def update_user(db: Client, user_id: str, updates: dict) -> None:
    db.table("users").update(updates).eq("user_id", user_id).execute()


def get_progress(db: Client, user_id: str) -> dict | None:
    res = db.table("user_progress").select("*").eq("user_id", user_id).execute()
    return res.data[0] if res.data else None


def save_progress(db: Client, user_id: str, progress: dict) -> dict:
    """Full overwrite of a user's progress row. Safe to repeat with the same payload."""
    row = {
        "user_id": user_id,
        **progress,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    res = db.table("user_progress").upsert(row).execute()
    return res.data[0] if res.data else row


def log_activity(db: Client, user_id: str, entries: list[dict]) -> None:
    if not entries:
        return
    db.table("quest_activity").insert([{"user_id": user_id, **e} for e in entries]).execute()


def get_recent_activity(db: Client, user_id: str | None = None, limit: int = 20) -> list[dict]:
    query = db.table("quest_activity").select("user_id, quest_id, quest_name, action, created_at")
    if user_id:
        query = query.eq("user_id", user_id)
    else:
        query = query.eq("action", "completed")
    res = query.order("created_at", desc=True).limit(limit).execute()
    return res.data or []


def get_public_users(db: Client, user_ids: list[str] | None = None) -> dict[str, dict]:
    query = db.table("users").select("user_id, display_name, is_public").eq("is_public", True)
    if user_ids is not None:
        query = query.in_("user_id", user_ids)
    res = query.execute()
    return {row["user_id"]: row for row in (res.data or [])}


def get_ranked_progress(db: Client, limit: int, offset: int) -> list[dict]:
    res = (
        db.table("user_progress")
        .select("user_id, level, completion_rate, total_completed, last_quest_date")
        .gt("total_completed", 0)
        .order("completion_rate", desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )
    return res.data or []


def get_all_progress(db: Client) -> list[dict]:
    rows: list[dict] = []
    offset = 0
    while True:
        res = (
            db.table("user_progress")
            .select("user_id, level, completed_quests, completion_rate, total_completed")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        rows.extend(batch)
        if len(batch) < PAGE_SIZE:
            return rows
        offset += PAGE_SIZE


def count_users(db: Client) -> int:
    res = db.table("users").select("user_id", count="exact").execute()
    return res.count or 0
