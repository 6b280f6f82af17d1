#!/usr/bin/env python3
"""
Leads CLI - operator interface for the lead pipeline.

Usage:
    python leads.py acquire [--csv PATH] [--max N]    Acquire profiles from a CSV export
    python leads.py classify-next                      Classify the oldest new record
    python leads.py classify-batch [--limit N]         Classify new records in bulk
    python leads.py verdict <id> '<json>'              Save a manual verdict
    python leads.py failed                             List failed submissions
    python leads.py retry-failed                       Retry failed submissions
    python leads.py reconcile [campaign_id]            Pick up accepted connections
    python leads.py followup-next                      Draft the next follow-up
    python leads.py review                             Drafts awaiting approval
    python leads.py approve <id>                       Approve a draft
    python leads.py revise <id> '<text>'               Replace a draft (clears approval)
    python leads.py mark-sent <id>                     Mark an approved draft as sent
    python leads.py show <id>                          Print a record as JSON
    python leads.py stats                              Show statistics
    python leads.py schedule                           Run daily on a schedule
"""

import argparse
import json
import logging
import sqlite3
import sys
import time

import schedule

from leadflow.errors import CampaignAPIError, ConfigError, VerdictParseError, VerdictValidationError
from leadflow.manager import LeadManager
from leadflow.summary import generate_summary_text

logger = logging.getLogger("leads")


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quieten noisy libraries
    for name in ("urllib3", "requests", "httpx", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _print_counts(title: str, results: dict) -> None:
    print(f"\n{title}")
    for key, value in results.items():
        if isinstance(value, (int, str)):
            print(f"  {key}: {value}")
    print()


def _print_record_line(record) -> None:
    print(f"  {record.id}  {record.name:<30} {record.company:<30} [{record.stage}]")


def cmd_acquire(manager, args):
    """Acquire profiles from a CSV export."""
    results = manager.acquire_from_csv(args.csv, max_count=args.max)
    _print_counts("Acquisition", results)


def cmd_classify_next(manager, args):
    """Classify the oldest new record."""
    record = manager.classify_next()
    if record is None:
        print("\nNo records waiting for classification\n")
        return
    verdict = record.classification or {}
    print(f"\n{record.name}: {record.stage} ({verdict.get('decision')}, score {verdict.get('score')})\n")


def cmd_classify_batch(manager, args):
    """Classify new records in bulk."""
    results = manager.classify_batch(limit=args.limit, workers=args.workers)
    _print_counts("Classification", results)


def cmd_verdict(manager, args):
    """Save a manual verdict."""
    try:
        verdict = json.loads(args.verdict)
    except ValueError as e:
        print(f"\n✗ Invalid JSON: {e}\n", file=sys.stderr)
        return 1
    if not isinstance(verdict, dict):
        print("\n✗ Verdict must be a JSON object\n", file=sys.stderr)
        return 1

    try:
        record = manager.save_verdict(args.record_id, verdict)
    except VerdictValidationError as e:
        print("\n✗ Verdict rejected, please shorten and resubmit:", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        print(file=sys.stderr)
        return 1
    except VerdictParseError as e:
        print(f"\n✗ Verdict rejected: {e}\n", file=sys.stderr)
        return 1

    if record is None:
        print(f"\n✗ Record {args.record_id} not found\n", file=sys.stderr)
        return 1
    print(f"\n✓ {record.name}: {record.stage}\n")


def cmd_failed(manager, args):
    """List failed submissions."""
    failed = manager.failed_submissions()
    if not failed:
        print("\nNo failed submissions\n")
        return
    print(f"\nFAILED SUBMISSIONS ({len(failed)})")
    for record in failed:
        _print_record_line(record)
        print(f"      {record.campaign_ref.get('error', '')[:100]}")
    print()


def cmd_retry_failed(manager, args):
    """Retry failed submissions."""
    results = manager.retry_failed()
    _print_counts("Retry", results)


def cmd_reconcile(manager, args):
    """Pick up accepted connections."""
    results = manager.reconcile(args.campaign_id)
    _print_counts("Reconciliation", results)


def cmd_followup_next(manager, args):
    """Draft a follow-up for the next connected record."""
    record = manager.followup_next()
    if record is None:
        print("\nNo connected records waiting for a draft\n")
        return
    print(f"\nDraft for {record.name} ({record.id}):\n")
    print(record.followup['text'])


def cmd_review(manager, args):
    """Show drafts awaiting approval."""
    pending = manager.followups.pending_review()
    if not pending:
        print("\nNo drafts awaiting review\n")
        return
    for record in pending:
        print("=" * 60)
        print(f"{record.name} - {record.title} at {record.company}")
        print(f"ID: {record.id}")
        print("-" * 60)
        print(record.followup['text'])
    print()


def cmd_approve(manager, args):
    """Approve a draft."""
    if manager.approve(args.record_id):
        print(f"\n✓ Approved {args.record_id}\n")
    else:
        print(f"\n✗ Could not approve {args.record_id}\n")


def cmd_revise(manager, args):
    """Replace a draft's text."""
    if manager.revise(args.record_id, args.text):
        print(f"\n✓ Revised {args.record_id} (needs approval again)\n")
    else:
        print(f"\n✗ Could not revise {args.record_id}\n")


def cmd_mark_sent(manager, args):
    """Mark an approved draft as sent."""
    if manager.mark_sent(args.record_id):
        print(f"\n✓ Marked {args.record_id} as sent\n")
    else:
        print(f"\n✗ Could not mark {args.record_id} as sent (is it approved?)\n")


def cmd_show(manager, args):
    """Print a record as JSON."""
    record = manager.store.get(args.record_id)
    if record is None:
        print(f"\n✗ Record {args.record_id} not found\n", file=sys.stderr)
        return 1
    print(json.dumps(record.to_dict(), indent=2))


def cmd_stats(manager, args):
    """Show statistics."""
    print()
    print(generate_summary_text(manager.get_status()))


def cmd_schedule(manager, args):
    """Run the daily pipeline on a schedule."""
    run_time = manager.config['DAILY_RUN_TIME']
    logger.info("Scheduling daily run at %s", run_time)

    def scheduled_run():
        try:
            results = manager.run_daily()
        except CampaignAPIError as e:
            logger.error("Daily run failed: %s", e)
            return
        logger.info("Daily run complete: %s", json.dumps(results, default=str))

    schedule.every().day.at(run_time).do(scheduled_run)

    # Also run immediately on startup
    scheduled_run()

    while True:
        schedule.run_pending()
        time.sleep(60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Leads CLI - lead lifecycle pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # acquire
    acquire_parser = subparsers.add_parser('acquire', help='Acquire profiles from a CSV export')
    acquire_parser.add_argument('--csv', help='CSV export path (default: newest in export dir)')
    acquire_parser.add_argument('--max', type=int, help='Max rows to process')

    # classification
    subparsers.add_parser('classify-next', help='Classify the oldest new record')
    batch_parser = subparsers.add_parser('classify-batch', help='Classify new records in bulk')
    batch_parser.add_argument('--limit', '-l', type=int, help='Max records')
    batch_parser.add_argument('--workers', '-w', type=int, help='Parallel workers')

    verdict_parser = subparsers.add_parser('verdict', help='Save a manual verdict')
    verdict_parser.add_argument('record_id', help='Record ID')
    verdict_parser.add_argument('verdict', help='Verdict JSON')

    # submission
    subparsers.add_parser('failed', help='List failed submissions')
    subparsers.add_parser('retry-failed', help='Retry failed submissions')

    # reconciliation
    reconcile_parser = subparsers.add_parser('reconcile', help='Pick up accepted connections')
    reconcile_parser.add_argument('campaign_id', nargs='?', help='Campaign ID (default: from config)')

    # follow-ups
    subparsers.add_parser('followup-next', help='Draft the next follow-up')
    subparsers.add_parser('review', help='Show drafts awaiting approval')
    approve_parser = subparsers.add_parser('approve', help='Approve a draft')
    approve_parser.add_argument('record_id', help='Record ID')
    revise_parser = subparsers.add_parser('revise', help='Replace a draft (clears approval)')
    revise_parser.add_argument('record_id', help='Record ID')
    revise_parser.add_argument('text', help='New draft text')
    sent_parser = subparsers.add_parser('mark-sent', help='Mark an approved draft as sent')
    sent_parser.add_argument('record_id', help='Record ID')

    # inspection
    show_parser = subparsers.add_parser('show', help='Print a record as JSON')
    show_parser.add_argument('record_id', help='Record ID')
    subparsers.add_parser('stats', help='Show statistics')

    # scheduling
    subparsers.add_parser('schedule', help='Run daily on a schedule (stays running)')

    return parser


def main(argv=None, manager=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    # Command dispatch
    commands = {
        'acquire': cmd_acquire,
        'classify-next': cmd_classify_next,
        'classify-batch': cmd_classify_batch,
        'verdict': cmd_verdict,
        'failed': cmd_failed,
        'retry-failed': cmd_retry_failed,
        'reconcile': cmd_reconcile,
        'followup-next': cmd_followup_next,
        'review': cmd_review,
        'approve': cmd_approve,
        'revise': cmd_revise,
        'mark-sent': cmd_mark_sent,
        'show': cmd_show,
        'stats': cmd_stats,
        'schedule': cmd_schedule,
    }

    try:
        if manager is None:
            manager = LeadManager()
        return commands[args.command](manager, args) or 0
    except (ConfigError, sqlite3.Error, CampaignAPIError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
