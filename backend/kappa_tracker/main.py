"""
Kappa Tracker — FastAPI backend
"""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Header, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .db import (
    get_client, get_quest_rows, get_user, create_user, update_user,
    get_progress, save_progress, log_activity, get_recent_activity,
    get_public_users, get_ranked_progress, get_all_progress, count_users,
)
from .engine.catalog import decode_catalog, decode_json_list, encode_quest
from .engine.groups import group_statistics
from .engine.progress import cascade_completions, completion_rate, diff_completions
from .engine.quests import Grouping, Quest, UserState, ViewMode
from .engine.view import ViewConfig, build_view, encode_view
from .models import UserRegister, ProfilePatch, ProgressUpdate

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Kappa Tracker API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = [
    "https://kappatracker.app",
    "https://www.kappatracker.app",
    "http://localhost:3000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "PATCH"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/health")
def health():
    try:
        db = get_client()
        db.table("users").select("user_id").limit(1).execute()
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_user_id(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return authorization.removeprefix("Bearer ").strip()


def require_user(user_id: str = Depends(get_user_id)) -> str:
    db = get_client()
    if not get_user(db, user_id):
        raise HTTPException(status_code=404, detail="User not registered")
    return user_id


# ── Register ──────────────────────────────────────────────────────────────────

@app.post("/api/users", status_code=201)
@limiter.limit("10/minute")
def register_user(request: Request, body: UserRegister):
    db = get_client()
    if get_user(db, body.user_id):
        return {"status": "already_registered"}
    create_user(db, body.user_id, body.display_name)
    save_progress(db, body.user_id, _progress_row(UserState(), []))
    logger.info("User registered: %s (%s)", body.user_id[:8], body.display_name)
    return {"status": "registered"}


# ── Quest catalog ─────────────────────────────────────────────────────────────

@app.get("/api/quests")
@limiter.limit("60/minute")
def list_quests(request: Request):
    quests = _load_catalog(get_client())
    return {"quests": [encode_quest(q) for q in quests]}


# ── Progress ──────────────────────────────────────────────────────────────────

@app.get("/api/progress")
def read_progress(user_id: str = Depends(require_user)):
    db = get_client()
    row = get_progress(db, user_id)
    if row is None:
        row = save_progress(db, user_id, _progress_row(UserState(), []))
    return _progress_response(row, _state_from_row(row))


@app.put("/api/progress")
def write_progress(body: ProgressUpdate, user_id: str = Depends(require_user)):
    """
    Full replacement of the user's state. The stored set may be larger than the
    submitted one when completions cascade; the response is authoritative.
    """
    db = get_client()
    quests = _load_catalog(db)
    previous = _state_from_row(get_progress(db, user_id))

    completed, auto = cascade_completions(body.completed_quests, quests)
    state = UserState(level=body.level, completed_quest_ids=tuple(completed))

    row = save_progress(db, user_id, _progress_row(state, quests, previous))
    _record_activity(db, user_id, previous, state, quests)

    if auto:
        logger.info("Auto-completed %d prerequisite quests for %s...", len(auto), user_id[:8])

    return {**_progress_response(row, state), "auto_completed": auto}


@app.post("/api/progress/reset")
def reset_progress(user_id: str = Depends(require_user)):
    db = get_client()
    row = save_progress(db, user_id, _progress_row(UserState(), []))
    logger.info("Progress reset for %s...", user_id[:8])
    return {"status": "reset", "progress": _progress_response(row, UserState())}


# ── Derived view ──────────────────────────────────────────────────────────────

@app.get("/api/view")
def read_view(
    grouping: Grouping = Grouping.MAP,
    group: str | None = None,
    mode: str = "available",
    sort: str = Query("catalog", pattern="^(catalog|level)$"),
    user_id: str = Depends(require_user),
):
    try:
        view_mode = ViewMode(mode)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown mode: {mode}")

    db = get_client()
    quests = _load_catalog(db)
    state = _state_from_row(get_progress(db, user_id))
    config = ViewConfig(grouping=grouping, group=group, mode=view_mode, sort_by_level=sort == "level")
    return encode_view(build_view(quests, state, config))


# ── Rankings ──────────────────────────────────────────────────────────────────

@app.get("/api/rankings")
@limiter.limit("30/minute")
def get_rankings(request: Request, limit: int = Query(50, ge=1, le=100), offset: int = Query(0, ge=0)):
    """Public users with any progress, by completion rate."""
    db = get_client()
    rows = get_ranked_progress(db, limit, offset)
    if not rows:
        return {"rankings": [], "limit": limit, "offset": offset}

    users = get_public_users(db, [r["user_id"] for r in rows])
    rankings = []
    for row in rows:
        user = users.get(row["user_id"])
        if not user:
            continue
        rankings.append({
            "user_id": row["user_id"],
            "display_name": user["display_name"],
            "level": row.get("level", 1),
            "completion_rate": round(row.get("completion_rate") or 0, 1),
            "total_completed": row.get("total_completed", 0),
            "last_quest_date": row.get("last_quest_date"),
        })

    return {"rankings": rankings, "limit": limit, "offset": offset}


@app.get("/api/rankings/map/{map_name}")
@limiter.limit("30/minute")
def get_map_rankings(request: Request, map_name: str, limit: int = Query(50, ge=1, le=100)):
    db = get_client()
    quests = _load_catalog(db)
    users = get_public_users(db)

    rankings = []
    for row in get_all_progress(db):
        user = users.get(row["user_id"])
        if not user:
            continue
        stats = group_statistics(map_name, quests, _state_from_row(row), ViewMode.FINISHED)
        if stats.completed == 0:
            continue
        rankings.append({
            "user_id": row["user_id"],
            "display_name": user["display_name"],
            "level": row.get("level", 1),
            "map_completed": stats.completed,
            "map_total": stats.total,
            "map_completion_rate": round(stats.completed / stats.total * 100, 1),
        })

    rankings.sort(key=lambda r: r["map_completion_rate"], reverse=True)
    return {"map_name": map_name, "rankings": rankings[:limit]}


@app.get("/api/stats/global")
@limiter.limit("30/minute")
def get_global_stats(request: Request):
    db = get_client()
    progress = get_all_progress(db)
    active = [p for p in progress if (p.get("total_completed") or 0) > 0]
    avg = sum(p.get("completion_rate") or 0 for p in progress) / len(progress) if progress else 0

    return {
        "total_users": count_users(db),
        "active_users": len(active),
        "average_completion": round(avg, 1),
        "total_quests_completed": sum(p.get("total_completed") or 0 for p in progress),
        "recent_activity": _public_activity(db, get_recent_activity(db, limit=20)),
    }


# ── Profile ───────────────────────────────────────────────────────────────────

@app.get("/api/profile/{profile_user_id}")
def get_profile(profile_user_id: str, authorization: str | None = Header(None)):
    db = get_client()
    user = get_user(db, profile_user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Profile not found")

    is_own = authorization == f"Bearer {profile_user_id}"
    if not user.get("is_public", True) and not is_own:
        raise HTTPException(status_code=404, detail="Profile not found")

    row = get_progress(db, profile_user_id) or {}
    body = {
        "display_name": user.get("display_name", "Anonymous"),
        "level": row.get("level", 1),
        "completion_rate": round(row.get("completion_rate") or 0, 1),
        "total_completed": row.get("total_completed", 0),
        "last_quest_date": row.get("last_quest_date"),
        "member_since": user.get("created_at", ""),
        "recent_activity": get_recent_activity(db, profile_user_id, limit=10),
    }
    if is_own:
        body["completed_quests"] = list(_state_from_row(row).completed_quest_ids)
    return body


@app.patch("/api/profile/{profile_user_id}")
def update_profile(profile_user_id: str, body: ProfilePatch, user_id: str = Depends(require_user)):
    if user_id != profile_user_id:
        raise HTTPException(status_code=403, detail="Cannot edit another user's profile")
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=422, detail="Nothing to update")
    update_user(get_client(), user_id, updates)
    return {"status": "updated"}


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_catalog(db) -> list[Quest]:
    return decode_catalog(get_quest_rows(db))


def _state_from_row(row: dict | None) -> UserState:
    if not row:
        return UserState()
    # older rows stored the set as JSON text
    completed = decode_json_list(row.get("completed_quests")) or []
    return UserState(
        level=row.get("level") or 1,
        completed_quest_ids=tuple(str(q) for q in completed),
    )


def _progress_row(state: UserState, quests: list[Quest], previous: UserState | None = None) -> dict:
    completed = list(state.completed_quest_ids)
    row = {
        "level": state.level,
        "completed_quests": completed,
        "completion_rate": completion_rate(completed, quests),
        "total_completed": len(completed),
    }
    if previous is None:
        row["last_quest_date"] = None
    else:
        added, _ = diff_completions(previous.completed_quest_ids, completed)
        if added:
            row["last_quest_date"] = datetime.now(timezone.utc).isoformat()
    return row


def _progress_response(row: dict, state: UserState) -> dict:
    return {
        "level": state.level,
        "completed_quests": list(state.completed_quest_ids),
        "completion_rate": round(row.get("completion_rate") or 0, 1),
        "total_completed": row.get("total_completed", len(state.completed_quest_ids)),
        "last_quest_date": row.get("last_quest_date"),
    }


def _record_activity(db, user_id: str, previous: UserState, state: UserState, quests: list[Quest]) -> None:
    names = {q.id: q.name for q in quests}
    added, removed = diff_completions(previous.completed_quest_ids, state.completed_quest_ids)
    entries = [
        {"quest_id": qid, "quest_name": names[qid], "action": "completed"}
        for qid in added if qid in names
    ] + [
        {"quest_id": qid, "quest_name": names[qid], "action": "uncompleted"}
        for qid in removed if qid in names
    ]
    log_activity(db, user_id, entries)


def _public_activity(db, activity: list[dict]) -> list[dict]:
    if not activity:
        return []
    users = get_public_users(db, list({a["user_id"] for a in activity}))
    return [
        {
            "display_name": users[a["user_id"]]["display_name"],
            "quest_name": a["quest_name"],
            "created_at": a["created_at"],
        }
        for a in activity if a["user_id"] in users
    ]
