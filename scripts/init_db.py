#!/usr/bin/env python3
"""
Initialize the VIGIL database schema.

Run once after first setup, then again after upgrades (statements are
CREATE ... IF NOT EXISTS).

Usage:
    python scripts/init_db.py
    VIGIL_DATABASE_URL=sqlite:///vigil.db python scripts/init_db.py
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vigil.database.legal_db import LegalDB, SCHEMA


def main():
    print("=" * 60)
    print("VIGIL Database Initialization")
    print("=" * 60)

    db = LegalDB()

    print(f"\n[1] Creating tables and indexes ({len(SCHEMA)} statements)...")
    try:
        db.init_schema()
    except Exception as e:
        print(f"    ❌ Schema creation failed: {e}")
        sys.exit(1)
    print("    ✅ Schema ready")

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("Next: python scripts/seed_corpus.py data/seed/vaud_core.json")
    print("=" * 60)


if __name__ == "__main__":
    main()
