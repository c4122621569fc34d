#!/usr/bin/env python3

"""
Migration script to give every nodex_team member a club_members record
"""

import sys

sys.path.insert(0, '.')

from main import pocketbase_service, MembershipService, NodeXError, LEGACY_MEMBERS_COLLECTION


def migrate_all(store=None):
    """Migrate every legacy member, returns (created, existing, failed) id lists"""
    store = store or pocketbase_service
    membership = MembershipService(store)

    created, existing, failed = [], [], []
    for legacy in store.get_full_list(LEGACY_MEMBERS_COLLECTION, sort='pos'):
        try:
            member, was_created = membership.migrate_legacy_member(legacy['id'])
        except NodeXError as e:
            print(f"Error migrating {legacy.get('name')} ({legacy['id']}): {e.message}")
            failed.append(legacy['id'])
            continue
        (created if was_created else existing).append(member['id'])
    return created, existing, failed


def main():
    try:
        created, existing, failed = migrate_all()
    except NodeXError as e:
        print(f"Error reading nodex_team: {e.message}")
        sys.exit(1)

    print(f"Created {len(created)} club member(s), {len(existing)} already migrated")
    if failed:
        print(f"{len(failed)} member(s) failed to migrate: {', '.join(failed)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
