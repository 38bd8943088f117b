from __future__ import annotations

import logging

from aiohttp import web
from sqlalchemy.exc import SQLAlchemyError

from tutorbot import repo
from tutorbot.core.time import utcnow
from tutorbot.db.session import session_scope

log = logging.getLogger(__name__)

HEALTH_STATS = ("users", "verified", "pending", "withdrawals", "referrals")


async def health(request: web.Request) -> web.Response:
    try:
        async with session_scope() as session:
            stats = await repo.collect_stats(session)
    except (SQLAlchemyError, OSError):
        log.warning("health_store_failed", exc_info=True)
        return web.json_response({"status": "unhealthy"}, status=503)
    return web.json_response(
        {
            "status": "online",
            "timestamp": utcnow().isoformat(),
            "stats": {k: stats[k] for k in HEALTH_STATS},
        }
    )


def setup_health(app: web.Application, path: str = "/health") -> None:
    app.router.add_get(path, health)
