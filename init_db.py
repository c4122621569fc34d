#!/usr/bin/env python3
"""
Record store initialization script for Docker deployment
"""

import sys

# Add the current directory to the Python path
sys.path.insert(0, '.')

from main import pocketbase_service, NodeXError, WEB_METADATA_COLLECTION


def init_database(store=None):
    """Make sure the site settings record exists"""
    store = store or pocketbase_service
    print("🔧 Initializing record store...")

    try:
        metadata = store.get_first(WEB_METADATA_COLLECTION, sort='-created')
        if metadata:
            print("ℹ️  Site settings already initialized")
            print(f"   maintenance={metadata.get('maintenance')}, accepting={metadata.get('accepting')}")
            return metadata

        metadata = store.create_record(WEB_METADATA_COLLECTION, {
            'maintenance': False,
            'accepting': True,
        })
        print("✅ Site settings created: maintenance=False, accepting=True")
        return metadata
    except NodeXError as e:
        print(f"❌ Error initializing record store: {e.message}")
        sys.exit(1)


if __name__ == '__main__':
    init_database()
