#!/usr/bin/env python3
"""
Migrate a locally exported timeline snapshot into the database.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from sqlalchemy import select

from guardian.core.database import close_db, get_db_session, init_db
from guardian.core.models import User
from guardian.core.timeline import SnapshotMigrator
from guardian.core.timeline.migration import DEFAULT_MIGRATED_TITLE


async def migrate_snapshot(
    snapshot_path: Path,
    email: str,
    timeline_id: Optional[UUID] = None,
    title: str = DEFAULT_MIGRATED_TITLE,
) -> bool:
    """Load the snapshot file and migrate it for the user with `email`."""
    if not snapshot_path.exists():
        print(f"Error: Snapshot not found at {snapshot_path}")
        return False

    try:
        with open(snapshot_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        print(f"Error: {snapshot_path} is not valid JSON ({e})")
        return False

    await init_db()
    try:
        async with get_db_session() as db:
            result = await db.execute(select(User).where(User.email == email.lower()))
            user = result.scalar_one_or_none()
            if user is None:
                print(f"Error: No user with email {email}")
                return False

            outcome = await SnapshotMigrator(db).migrate(data, user.id, timeline_id=timeline_id, title=title)
    finally:
        await close_db()

    if not outcome.ok:
        print(f"Error: Migration failed ({outcome.code.value}): {outcome.error}")
        return False

    report = outcome.value
    print(f"\nSnapshot migrated into timeline {report.timeline_id}")
    print(f"  Nodes created: {report.nodes_created}")
    print(f"  Nodes reused: {report.nodes_reused}")
    print(f"  Parents linked: {report.parents_linked}")
    print(f"  Action records: {report.action_records}")
    print(f"  Decision records: {report.decision_records}")
    for legacy_id in report.unresolved_parents:
        print(f"  Warning: parent of {legacy_id} not found, left unlinked")
    return True


def parse_args(argv: list[str]) -> Optional[dict]:
    if len(argv) < 3:
        return None
    args = {"snapshot_path": Path(argv[1]), "email": argv[2]}
    rest = argv[3:]
    while rest:
        flag = rest.pop(0)
        if not rest or flag not in ("--timeline-id", "--title"):
            return None
        value = rest.pop(0)
        if flag == "--timeline-id":
            try:
                args["timeline_id"] = UUID(value)
            except ValueError:
                print(f"Error: Invalid timeline id {value!r}")
                return None
        else:
            args["title"] = value
    return args


if __name__ == "__main__":
    args = parse_args(sys.argv)
    if args is None:
        print("Usage: python migrate_local_snapshot.py <snapshot.json> <user-email> "
              "[--timeline-id ID] [--title TITLE]")
        sys.exit(1)

    success = asyncio.run(migrate_snapshot(**args))
    sys.exit(0 if success else 1)
