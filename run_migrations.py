"""Apply pending database migrations from the command line.

Usage: python run_migrations.py [--status] [--database-url URL]
"""
import sys
import argparse
import logging
from typing import Optional

from pdfqr.config import settings
from pdfqr.database import create_app_engine, engine as default_engine
from pdfqr import services


def run(database_url: Optional[str] = None, status_only: bool = False) -> int:
    """Apply pending migrations, or print their status, and return an exit code.

    The exit code is 0 unless a migration failed fatally. Output is printed
    to stdout for a quick CLI feedback loop.
    """
    eng = create_app_engine(database_url) if database_url else default_engine
    print("Using database:", eng.url.render_as_string(hide_password=True))
    svc = services.MigrationService(eng)
    if status_only:
        for item in svc.status()['migrations']:
            print(f"{item['status']:8} {item['name']}  {item['applied_at'] or ''}")
        return 0
    report = svc.run()
    for name in report.applied:
        print("Applied:", name)
    for skipped in report.skipped:
        print(f"Skipped: {skipped['name']} ({skipped['reason']})")
    for name in report.misconfigured:
        print(f"Skipped: {name} (no procedure registered)")
    print(report.message)
    return 0 if report.success else 1


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--status', action='store_true', help='Only list applied/pending migrations')
    parser.add_argument('--database-url', help='Override DATABASE_URL')
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)
    sys.exit(run(database_url=args.database_url, status_only=args.status))
