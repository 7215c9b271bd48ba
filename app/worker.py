"""arq worker: monthly auto-invoicing and the daily overdue sweep.

Run with ``arq app.worker.WorkerSettings``.
"""

from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from app.core.config import settings
from app.core.datetime_utils import utc_today
from app.core.logging import configure_logging, get_logger
from app.db.session import AsyncSessionLocal
from app.services.auto_invoice import generate_auto_invoices, mark_overdue_invoices

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Parse REDIS_URL into arq RedisSettings."""
    parsed = urlparse(settings.redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
    )


async def task_generate_auto_invoices(ctx: dict) -> dict:
    today = utc_today()
    logger.info("Running: generate_auto_invoices for %s", today)
    async with AsyncSessionLocal() as db:
        result = await generate_auto_invoices(db, today)
    logger.info("Auto-invoice: %d generated, %d errors", result.generated, result.errors)
    return {"invoices_generated": result.generated, "invoice_errors": result.errors}


async def task_mark_overdue_invoices(ctx: dict) -> dict:
    today = utc_today()
    logger.info("Running: mark_overdue_invoices for %s", today)
    async with AsyncSessionLocal() as db:
        marked = await mark_overdue_invoices(db, today)
    return {"overdue_marked": marked}


async def startup(ctx: dict) -> None:
    configure_logging()
    logger.info("Billing worker started")


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    functions = [
        task_generate_auto_invoices,
        task_mark_overdue_invoices,
    ]

    cron_jobs = [
        # 1st of every month, 00:05 UTC
        cron(task_generate_auto_invoices, day=1, hour=0, minute=5),
        cron(task_mark_overdue_invoices, hour=1, minute=0),
    ]
