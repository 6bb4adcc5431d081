#!/usr/bin/env python3
"""
AccountGuard -- administrative CLI for the account-security core.

Usage:
  python main.py unlock USER_ID
  python main.py sweep-sessions
  python main.py events USER_ID
  python main.py events USER_ID --action LOGIN_FAILED --failed --days 7
  python main.py events USER_ID --json
  python main.py score USER_ID

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the security database (default: sqlite accountguard.db)
  GEO_LOOKUP_URL Optional geolocation endpoint with an {ip} placeholder.
  See core/config.py for the full list.
"""

import argparse
import json
import logging
import sys
from typing import Optional

from core.errors import SecurityError
from core.models import AuditAction
from security.schemas import AuditQuery
from security.service import AccountSecurityService


def _cmd_unlock(service: AccountSecurityService, args: argparse.Namespace) -> int:
    service.unlock_account(args.user_id)
    print(f"  Account {args.user_id} unlocked.")
    return 0


def _cmd_sweep(service: AccountSecurityService, args: argparse.Namespace) -> int:
    count = service.sweep_expired_sessions()
    print(f"  {count} expired session(s) terminated.")
    return 0


def _cmd_events(service: AccountSecurityService, args: argparse.Namespace) -> int:
    query = AuditQuery(
        page=args.page,
        limit=args.limit,
        days=args.days,
        action=args.action,
        success=False if args.failed else None,
    )
    page = service.query_audit_log(args.user_id, query)

    if args.json:
        print(page.model_dump_json(indent=2))
        return 0

    if not page.entries:
        print(f"  No events for {args.user_id} in the last {args.days} day(s).")
        return 0

    for entry in page.entries:
        status = "ok  " if entry.success else "FAIL"
        where = entry.location or entry.ip_address or "-"
        details = json.dumps(entry.details, sort_keys=True) if entry.details else ""
        print(f"  {entry.timestamp:%Y-%m-%d %H:%M:%S}  {status}  {entry.action.value:<24} {where:<28} {details}")
    p = page.pagination
    print(f"\n  Page {p.page}/{max(p.pages, 1)} ({p.total} event(s)).")
    return 0


def _cmd_score(service: AccountSecurityService, args: argparse.Namespace) -> int:
    result = service.get_security_score(args.user_id)
    print(f"\n  Security score for {args.user_id}: {result.score}/100")
    print("─" * 40)
    for rec in result.recommendations:
        print(f"  [{rec.type}] {rec.title}: {rec.description}")
    print()
    return 0


_COMMANDS = {
    "unlock": _cmd_unlock,
    "sweep-sessions": _cmd_sweep,
    "events": _cmd_events,
    "score": _cmd_score,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accountguard",
        description="Administrative tasks for account security: lockouts, sessions, audit trail.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py unlock 42
  python main.py sweep-sessions
  python main.py events 42 --failed --days 7
  python main.py score 42
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_unlock = sub.add_parser("unlock", help="Clear a lockout and its failure counter")
    p_unlock.add_argument("user_id", metavar="USER_ID")

    sub.add_parser("sweep-sessions", help="Terminate every session past its expiry time")

    p_events = sub.add_parser("events", help="Show a user's security audit trail")
    p_events.add_argument("user_id", metavar="USER_ID")
    p_events.add_argument(
        "--action",
        choices=[a.value for a in AuditAction],
        default=None,
        metavar="ACTION",
        help="Only show events of this action (e.g. LOGIN_FAILED)",
    )
    p_events.add_argument("--failed", action="store_true", help="Only show failed events")
    p_events.add_argument("--days", type=int, default=30, help="Trailing window in days (default: 30)")
    p_events.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    p_events.add_argument("--limit", type=int, default=50, help="Events per page (default: 50)")
    p_events.add_argument("--json", action="store_true", help="Output structured JSON")

    p_score = sub.add_parser("score", help="Compute a user's security score")
    p_score.add_argument("user_id", metavar="USER_ID")
    return parser


def main(argv: Optional[list[str]] = None, service: Optional[AccountSecurityService] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    owns_service = service is None
    if service is None:
        service = AccountSecurityService.from_settings()
    try:
        return _COMMANDS[args.command](service, args)
    except SecurityError as exc:
        print(f"  [!] {exc}")
        return 2
    except ValueError as exc:
        # pydantic ValidationError from AuditQuery
        print(f"  [!] Invalid arguments: {exc}")
        return 2
    finally:
        if owns_service:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
