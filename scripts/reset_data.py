#!/usr/bin/env python3
import argparse

from backend.app.config import settings
from backend.app.db import LocalStorage, Store
from backend.app.logging_setup import setup_logging
from backend.app.session import ACTIVE_PROFILE_KEY
from backend.app.storage import Storage


def main():
    ap = argparse.ArgumentParser(description="Clear watched/watchlist data from the local store")
    ap.add_argument("--storage-dir", default=settings.storage_dir)
    group = ap.add_mutually_exclusive_group(required=True)
    group.add_argument("--profile", help="Clear one profile's watched movies, shows and watchlist")
    group.add_argument("--all", action="store_true", help="Delete every row in every table")
    args = ap.parse_args()

    setup_logging(settings.log_level)

    local_storage = LocalStorage(args.storage_dir)
    storage = Storage(Store(local_storage))
    storage.init()
    try:
        if args.all:
            storage.clear()
            # the remembered profile no longer exists
            local_storage.remove_item(ACTIVE_PROFILE_KEY)
            print("All data cleared.")
        else:
            if storage.get_profile(args.profile) is None:
                raise SystemExit(f"Unknown profile: {args.profile}")
            storage.clear_user_data(args.profile)
            print(f"Cleared data for {args.profile}.")
    finally:
        storage.close()


if __name__ == "__main__":
    main()
