#!/usr/bin/env python3
"""
Audit pending verification claims from the command line.

Processes one bounded batch per invocation (AUDIT_BATCH_SIZE), so large
backlogs are drained by repeated runs, e.g. from cron.

Usage:
    python scripts/audit_pending.py --text-id email-2024-0412
    python scripts/audit_pending.py --incident-id INC-17
    python scripts/audit_pending.py --claim-id 3f2a... --claim-id 9bc1...
"""
import sys
import argparse
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from vigil.audit import AuditClient, AuditVerifier
from vigil.corpus import CorpusStore
from vigil.database.legal_db import LegalDB

VERDICT_ICONS = {"true": "✅", "false": "❌", "uncertain": "⚠️"}


def setup_logging(verbose: bool = False):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def main():
    parser = argparse.ArgumentParser(
        description='Audit pending VIGIL claims against official sources',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    selector = parser.add_mutually_exclusive_group(required=True)
    selector.add_argument('--text-id', help='Audit pending claims of a text')
    selector.add_argument('--incident-id', help='Audit pending claims of an incident')
    selector.add_argument('--claim-id', action='append', dest='claim_ids',
                          help='Audit a specific claim (repeatable, may re-verify)')
    parser.add_argument('--mock', action='store_true',
                        help='Use the mock audit client (no external calls)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose logging')

    args = parser.parse_args()
    setup_logging(args.verbose)

    db = LegalDB()
    verifier = AuditVerifier(CorpusStore(db), db, AuditClient(use_mock=True if args.mock else None))

    try:
        batch = verifier.verify(
            claim_ids=args.claim_ids,
            text_id=args.text_id,
            incident_id=args.incident_id,
        )
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted by user (completed reports are kept)")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        logging.exception("Audit failed")
        sys.exit(1)

    print("\n" + "=" * 60)
    print(f"Audited {batch.verified_count} claims")
    for result in batch.results:
        icon = VERDICT_ICONS[result.verdict]
        print(f"  {icon} {result.claim_id[:12]}  {result.verdict:<9} ({result.confidence:.2f})")
        if result.diff_summary:
            print(f"      {result.diff_summary}")
    summary = batch.summary
    print(f"\n  true: {summary['true']} | false: {summary['false']} | uncertain: {summary['uncertain']}")
    if batch.skipped_claim_ids:
        print(f"  ⏭️ Left for the next run: {', '.join(batch.skipped_claim_ids)}")
    print("=" * 60)

    # Refutations need operator attention
    sys.exit(2 if summary["false"] else 0)


if __name__ == "__main__":
    main()
