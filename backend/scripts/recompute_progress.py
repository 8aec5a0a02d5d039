"""
Recompute stored progress summaries (completion_rate, total_completed) from
each user's completed quest list against the current catalog.

Run after the catalog changes, since goal-relevant quests may have been added
or removed. Safe to run multiple times (idempotent).

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/recompute_progress.py [--dry-run]

Or with a .env file:
    python scripts/recompute_progress.py
"""
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path so we can import engine modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kappa_tracker.db import get_client, get_quest_rows, get_all_progress, save_progress
from kappa_tracker.engine.catalog import decode_catalog, decode_json_list
from kappa_tracker.engine.progress import completion_rate


def compute_summary(completed: list[str], quests) -> dict:
    return {
        "completion_rate": completion_rate(completed, quests),
        "total_completed": len(completed),
    }


def run(dry_run: bool = False):
    print("\n🔍 Recomputing progress summaries...\n")

    db = get_client()
    quests = decode_catalog(get_quest_rows(db))
    goal_total = sum(1 for q in quests if q.goal_relevant)
    print(f"  Catalog: {len(quests)} quests, {goal_total} goal-relevant")

    rows = get_all_progress(db)
    print(f"  Users with progress: {len(rows)}\n")

    changed = 0
    for row in rows:
        completed = [str(q) for q in (decode_json_list(row.get("completed_quests")) or [])]
        summary = compute_summary(completed, quests)
        current_rate = round(row.get("completion_rate") or 0, 4)
        if round(summary["completion_rate"], 4) == current_rate and summary["total_completed"] == row.get("total_completed"):
            continue

        changed += 1
        print(
            f"  {row['user_id'][:8]}...: rate {current_rate:.1f} -> {summary['completion_rate']:.1f}, "
            f"total {row.get('total_completed')} -> {summary['total_completed']}"
        )
        if not dry_run:
            save_progress(db, row["user_id"], {
                "level": row.get("level") or 1,
                "completed_quests": completed,
                **summary,
            })

    if dry_run:
        print(f"\n  Dry run — {changed} rows would change, nothing written.")
    else:
        print(f"\n✅ Updated {changed} rows.")


if __name__ == "__main__":
    run(dry_run="--dry-run" in sys.argv)
