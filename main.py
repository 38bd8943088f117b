"""Bot entrypoint.

Required env vars:
 - BOT_TOKEN
Optional:
 - DATABASE_URL (Postgres on Railway, SQLite file by default)
 - ADMIN_IDS (comma-separated)
 - WEBHOOK_URL (webhook mode; long polling when empty)
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys

from tutorbot.bot.app import run_bot
from tutorbot.core.config import load_settings
from tutorbot.core.logging import setup_logging
from tutorbot.db.session import create_schema, dispose_engine, init_engine

log = logging.getLogger(__name__)


def _run_alembic_upgrade_head_best_effort() -> bool:
    """Apply migrations at boot (best-effort)."""
    try:
        subprocess.check_call([sys.executable, "-m", "alembic", "upgrade", "head"])
        log.info("alembic_upgraded revision=head")
        return True
    except Exception:
        # best-effort; do not crash the bot
        log.exception("alembic_upgrade_failed")
        return False


async def main() -> None:
    setup_logging()
    settings = load_settings()
    init_engine(settings.database_url)

    migrated = settings.run_migrations and _run_alembic_upgrade_head_best_effort()
    if not migrated and settings.database_url.startswith("sqlite"):
        await create_schema()

    if not settings.admin_ids:
        log.warning("admin_ids_empty payments_will_not_be_reviewed")

    try:
        await run_bot(settings)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
