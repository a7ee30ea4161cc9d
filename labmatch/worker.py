"""
Standalone worker entry point.

Run with ``labmatch-worker`` or ``python -m labmatch.worker``. The worker
shares the jobs table with the API process, so jobs enqueued by the API
are claimed here.
"""

import asyncio
import sys

from labmatch.config.logging import setup_logging
from labmatch.config.settings import settings
from labmatch.infra.database import Database
from labmatch.v1.infra.jobs.worker import run_worker


async def _serve() -> int:
    database = Database(settings, role="worker")
    try:
        return await run_worker(settings, database.SessionLocal)
    finally:
        await database.close()


def main() -> None:
    setup_logging(process="worker")
    sys.exit(asyncio.run(_serve()))


if __name__ == "__main__":
    main()
