#!/usr/bin/env python3
"""
Script to examine the contents of the local WaniKani cache and check that
every stored row still decodes.
"""

import os
import sys
from typing import Optional

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from wani_cache import cache_info, codec, reviews
from wani_cache.db import get_engine, is_db_initialized
from wani_cache.errors import DecodeError
from wani_cache.report import cache_summary


def check_cache_contents(db_path: Optional[str] = None) -> int:
    """Print what the cache holds. Returns the number of undecodable rows."""
    print("🔍 Examining WaniKani Cache Contents")
    print("=" * 60)

    engine = get_engine(db_path)
    if not is_db_initialized(engine):
        print("❌ Cache is not initialized. Run 'wani init' first.")
        return 0

    bad_rows = 0
    with engine.connect() as conn:
        print("\n📊 ROWS PER TABLE:")
        for name, count in cache_summary(conn).items():
            print(f"     {name:<12} {count}")

        for table_codec in codec.SUBJECT_CODECS + (codec.ASSIGNMENTS, codec.REVIEWS, codec.USERS):
            for row in conn.execute(table_codec.select_statement()):
                try:
                    table_codec.decode(row)
                except DecodeError as e:
                    bad_rows += 1
                    print(f"  ⚠️  {e}")

        print("\n🕒 WATERMARKS:")
        for resource_class, info in sorted(cache_info.get_all(conn).items()):
            updated_after = info.updated_after.isoformat() if info.updated_after else "N/A"
            print(f"     {resource_class.name.lower():<12} etag={info.etag or 'N/A'} updated_after={updated_after}")

        pending = reviews.pending_reviews(conn)
        print(f"\n🃏 PENDING REVIEWS ({len(pending)}):")
        for review in pending[:10]:
            print(f"     assignment {review.assignment_id} queued {review.created_at.isoformat()}")
        if len(pending) > 10:
            print(f"     ... and {len(pending) - 10} more")

    engine.dispose()
    if bad_rows:
        print(f"\n❌ {bad_rows} row(s) could not be decoded; 'wani force-sync' rewrites them.")
    else:
        print("\n✅ Every row decodes.")
    return bad_rows


if __name__ == "__main__":
    sys.exit(1 if check_cache_contents(sys.argv[1] if len(sys.argv) > 1 else None) else 0)
