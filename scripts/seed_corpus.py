#!/usr/bin/env python3
"""
Load legal instruments, versions and units into the corpus from JSON.

Re-running on the same file is harmless: instruments are upserted and
instruments that already have versions are not republished.

Usage:
    python scripts/seed_corpus.py data/seed/vaud_core.json
    python scripts/seed_corpus.py data/seed/vaud_core.json --init-schema -v
"""
import sys
import argparse
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from vigil.corpus import CorpusStore, load_seed_file, seed_corpus
from vigil.database.legal_db import LegalDB


def setup_logging(verbose: bool = False):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def main():
    parser = argparse.ArgumentParser(
        description='Seed the VIGIL legal corpus from a JSON document',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/seed_corpus.py data/seed/vaud_core.json
  python scripts/seed_corpus.py my_laws.json --database-url sqlite:///vigil.db
        """
    )
    parser.add_argument('seed_file', type=Path, help='Seed JSON file')
    parser.add_argument('--database-url', default=None,
                        help='SQLAlchemy URL (default: VIGIL_DATABASE_URL / POSTGRES_*)')
    parser.add_argument('--init-schema', action='store_true',
                        help='Create tables before seeding')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose logging')

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.seed_file.exists():
        print(f"❌ Seed file not found: {args.seed_file}")
        sys.exit(1)

    db = LegalDB(args.database_url)
    if args.init_schema:
        db.init_schema()

    try:
        stats = seed_corpus(CorpusStore(db), load_seed_file(args.seed_file))
    except ValueError as e:
        print(f"\n❌ Invalid seed data: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        logging.exception("Seeding failed")
        sys.exit(1)

    print("\n" + "=" * 60)
    print(f"✅ Seeded from {args.seed_file}")
    print(f"   Instruments: {stats['instruments']}")
    print(f"   Versions:    {stats['versions']}")
    print(f"   Units:       {stats['units']}")
    print(f"   Relations:   {stats['relations']}")
    print("=" * 60)


if __name__ == "__main__":
    main()
