#!/usr/bin/env python3

import os
import sys
sys.path.append('/app/src')

from crmbridge.services.firestore import FirestoreStateStore
from crmbridge.models.config import WASTE_LISTING_CONFIG, WASTE_LISTING_MAPPINGS


def main():
    """Write the waste listing sync config and field mappings to Firestore."""

    # Get project ID from environment
    project_id = os.getenv("GOOGLE_CLOUD_PROJECT")

    store = FirestoreStateStore(project_id)

    existing = store.get_field_mappings(WASTE_LISTING_CONFIG.record_type)
    if existing is not None and "--force" not in sys.argv:
        print(f"{len(existing)} mappings already saved for {WASTE_LISTING_CONFIG.record_type}, "
              f"pass --force to overwrite")
        return

    store.save_sync_config(WASTE_LISTING_CONFIG)
    store.save_field_mappings(WASTE_LISTING_CONFIG.record_type, WASTE_LISTING_MAPPINGS)

    print(f"Sync config saved: {WASTE_LISTING_CONFIG.record_type} -> {WASTE_LISTING_CONFIG.remote_object_name}")
    print(f"  External id: {WASTE_LISTING_CONFIG.external_id_field}")
    print(f"  Field mappings: {len(WASTE_LISTING_MAPPINGS)}")
    print(f"  Required fields: {', '.join(WASTE_LISTING_CONFIG.required_fields)}")


if __name__ == "__main__":
    main()
