#!/usr/bin/env python3
"""
Index Rebuild Utility
Rebuilds the HNSW index from the SQLite record store and saves the snapshot,
e.g. after a lost or corrupt index file.
"""

import argparse
import sys

from ragcore.core.config import DB_PATH, INDEX_PATH, get_index_factory, get_record_store, validate_config
from ragcore.core.errors import IndexIOError
from ragcore.core.pipeline import RetrievalPipeline


def main(argv=None):
    """Rebuild the vector index from the record store."""
    parser = argparse.ArgumentParser(description="Rebuild the HNSW index from stored records")
    parser.add_argument("--db-path", default=DB_PATH, help="SQLite record store")
    parser.add_argument("--index-path", default=INDEX_PATH, help="Where to write the index snapshot")
    args = parser.parse_args(argv)

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"ERROR: {issue}")
        sys.exit(1)

    print("Starting vector index rebuild...")

    store = get_record_store(args.db_path)
    total = store.count()
    print(f"Found {total} records in store")

    if not total:
        print("No records to index. Exiting.")
        return

    pipeline = RetrievalPipeline(store=store, index_factory=get_index_factory())
    index = pipeline.rebuild_index()
    print(f"✓ Successfully rebuilt index with {len(index)} vectors")

    # Verify index: the first record should find itself
    first = index.ids()[0]
    vector, _ = store.get(first)
    hits = index.search(vector, k=1)
    if hits and hits[0].id == first:
        print(f"✓ Verification search returned record {first}")
    else:
        print(f"WARNING: Verification search did not return record {first}")

    try:
        pipeline.save_index(args.index_path)
    except IndexIOError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    print(f"✓ Saved index to {args.index_path}")

    print("Index rebuild complete!")


if __name__ == "__main__":
    main()
