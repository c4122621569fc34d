#!/usr/bin/env python3
"""
Recruiter key creation script
Creates a recruiter record with a strong random auth key
"""

import sys
import secrets
import argparse
from datetime import datetime, timezone

# Add the current directory to the Python path
sys.path.insert(0, '.')

from main import pocketbase_service, NodeXError, RECRUITERS_COLLECTION, MEMBERS_COLLECTION, NotFound


def create_recruiter_key(assignee, team_mgmt=False, store=None):
    """Create a recruiter linked to a club member and return (recruiter, auth_key)"""
    store = store or pocketbase_service
    # The assignee must be a club member, member logins resolve through it
    store.get_record(MEMBERS_COLLECTION, assignee, missing_message=f"Club member {assignee} not found")

    auth_key = secrets.token_urlsafe(32)
    recruiter = store.create_record(RECRUITERS_COLLECTION, {
        'auth_key': auth_key,
        'assignee': assignee,
        'team_mgmt': team_mgmt,
    })
    return recruiter, auth_key


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create a recruiter auth key')
    parser.add_argument('assignee', help='club_members record id of the recruiter')
    parser.add_argument('--team-mgmt', action='store_true', help='grant team management permission')
    args = parser.parse_args(argv)

    print("🔐 Recruiter Key Creation")
    print("=" * 40)

    try:
        recruiter, auth_key = create_recruiter_key(args.assignee, team_mgmt=args.team_mgmt)
    except NotFound as e:
        print(f"❌ {e.message}")
        sys.exit(1)
    except NodeXError as e:
        print(f"❌ Error creating recruiter: {e.message}")
        sys.exit(1)

    print("✅ Recruiter created successfully")
    print(f"   Recruiter ID: {recruiter.get('id')}")
    print(f"   Team management: {'yes' if args.team_mgmt else 'no'}")
    print(f"   Auth key: {auth_key}")
    print(f"   Created: {datetime.now(timezone.utc).isoformat()}")
    print("   ⚠️  SAVE THIS KEY SECURELY, it is not shown again!")


if __name__ == '__main__':
    main()
