"""
Manual WIP purge trigger for operators.

Usage:
    python -m formledger.tools.purge_cli run [--database-url URL]
    python -m formledger.tools.purge_cli history [--limit N]

Exit codes: 0 SUCCESS, 1 PARTIAL/INTERRUPTED, 2 FAILED, 3 another run in progress.
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from formledger.core import settings
from formledger.core.db import init_db
from formledger.core.errors import PurgeAlreadyRunning
from formledger.modules.orders.store import VersionStore
from formledger.modules.purge.service import STATUS_SUCCESS, WipPurgeEngine
from formledger.modules.purge.store import PurgeAuditStore


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Form Ledger WIP purge")
    parser.add_argument("--database-url", default=None, help="defaults to DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run one purge now")
    hist = sub.add_parser("history", help="Show recent purge runs")
    hist.add_argument("--limit", type=int, default=20)
    args = parser.parse_args(argv)

    url = args.database_url or settings.DATABASE_URL
    init_db(url)
    audit = PurgeAuditStore(url)

    if args.command == "history":
        print(json.dumps(audit.list_runs(limit=args.limit), indent=2, ensure_ascii=False))
        return 0

    engine = WipPurgeEngine(VersionStore(url), audit, lock_ttl_seconds=settings.PURGE_LOCK_TTL_SECONDS)
    try:
        summary = engine.run(trigger="manual")
    except PurgeAlreadyRunning as e:
        print(e.message, file=sys.stderr)
        return 3
    except Exception as e:
        print(f"purge failed: {e}", file=sys.stderr)
        return 2

    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0 if summary["status"] == STATUS_SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())
