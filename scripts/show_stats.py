#!/usr/bin/env python3
import argparse
import json

from backend.app.config import settings
from backend.app.db import LocalStorage, Store
from backend.app.storage import Storage
from backend.stats.statistics import build_stats, stats_to_dict


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--storage-dir", default=settings.storage_dir)
    ap.add_argument("--profile", default=None, help="Profile id (default: every profile)")
    args = ap.parse_args()

    storage = Storage(Store(LocalStorage(args.storage_dir)))
    storage.init()
    try:
        profiles = storage.get_all_profiles()
        if args.profile is not None:
            profiles = [p for p in profiles if p.id == args.profile]
            if not profiles:
                raise SystemExit(f"Unknown profile: {args.profile}")

        out = []
        for p in profiles:
            out.append({"profile": p.id, "name": p.name, "stats": stats_to_dict(build_stats(storage, p.id))})
    finally:
        storage.close()

    print(json.dumps(out, indent=2))


if __name__ == "__main__":
    main()
