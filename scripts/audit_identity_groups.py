#!/usr/bin/env python3
"""
Audit stored contacts for identity group integrity problems.

Reports chained or dangling links, groups whose primary is not the oldest
member and duplicate email/phone pairs. Exits with status 1 when any issue
is found so the script can gate deploys or cron alerts.
"""

import argparse
import asyncio
import sys
from collections import Counter

from src.identity.audit import IntegrityIssue, audit_contacts
from src.services.contact_store_service import create_contact_store


async def load_issues(database_url: str | None) -> tuple[int, list[IntegrityIssue]]:
    """Read every contact in one transaction and audit the snapshot."""
    store = create_contact_store(database_url)
    try:
        async with store.unit_of_work() as repo:
            contacts = await repo.list_contacts()
    finally:
        await store.close()
    return len(contacts), audit_contacts(contacts)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Audit contact identity groups for integrity problems"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy async URL (defaults to DATABASE_URL / settings)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of issues to print",
    )
    args = parser.parse_args()

    total, issues = asyncio.run(load_issues(args.database_url))
    print(f"Checked {total} contact(s).")

    if not issues:
        print("No integrity issues found.")
        return

    counts = Counter(issue.kind.value for issue in issues)
    print(f"Found {len(issues)} issue(s):")
    for kind, count in sorted(counts.items()):
        print(f"  {kind}: {count}")

    print()
    for issue in issues[: args.limit]:
        print(f"  contact {issue.contact_id} [{issue.kind.value}] {issue.detail}")
    if len(issues) > args.limit:
        print(f"  ... {len(issues) - args.limit} more")

    sys.exit(1)


if __name__ == "__main__":
    main()
