"""
Scheduled jobs.

- Daily platform report emailed to the admin (cron, settings.report_hour)
- Reconciliation sweep for failed payout reversals (interval)
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenapay.app.core.config import settings
from tenapay.app.models.enums import ReconciliationStatus, TransactionType
from tenapay.app.models.reconciliation_item import ReconciliationItem
from tenapay.app.schemas.admin import PlatformOverview
from tenapay.app.services.analytics import AnalyticsService
from tenapay.app.services.mailer import Mailer
from tenapay.app.services.reconciliation import scan_ledger, sweep_open_items

logger = logging.getLogger(__name__)


@dataclass
class PlatformReport:
    generated_at: datetime
    overview: PlatformOverview
    credits_24h: Decimal
    credit_count_24h: int
    debits_24h: Decimal
    debit_count_24h: int
    open_reconciliation_items: int
    divergent_accounts: int

    def to_html(self) -> str:
        o = self.overview
        rows = [
            ("Total users", o.total_users),
            ("Premiums collected", f"{o.total_collected} {settings.currency}"),
            ("Claims paid", f"{o.total_claimed} {settings.currency}"),
            ("Claims reversed", f"{o.total_reversed} {settings.currency}"),
            ("Fund pool", f"{o.total_balance} {settings.currency}"),
            ("Top-ups (24h)", f"{self.credits_24h} {settings.currency} ({self.credit_count_24h})"),
            ("Claims (24h)", f"{self.debits_24h} {settings.currency} ({self.debit_count_24h})"),
            ("Open reconciliation items", self.open_reconciliation_items),
            ("Divergent accounts", self.divergent_accounts),
        ]
        body = "".join(
            f"<tr><td>{html.escape(label)}</td><td>{html.escape(str(value))}</td></tr>"
            for label, value in rows
        )
        return (
            f"<h2>TenaPay Daily Report</h2>"
            f"<p>{self.generated_at:%Y-%m-%d %H:%M} UTC</p>"
            f"<table>{body}</table>"
        )


async def build_platform_report(db: AsyncSession, now: Optional[datetime] = None) -> PlatformReport:
    """Read-only snapshot of the fund, the last 24 hours and ledger health."""
    now = now or datetime.now(timezone.utc)
    overview = await AnalyticsService.get_platform_overview(db)
    volume = await AnalyticsService.get_daily_volume(db, now - timedelta(days=1))

    open_items = (await db.execute(
        select(func.count(ReconciliationItem.id)).where(
            ReconciliationItem.status.in_((ReconciliationStatus.OPEN, ReconciliationStatus.RETRYING))
        )
    )).scalar() or 0

    checks = await scan_ledger(db)

    return PlatformReport(
        generated_at=now,
        overview=overview,
        credits_24h=volume[TransactionType.CREDIT]["amount"],
        credit_count_24h=volume[TransactionType.CREDIT]["count"],
        debits_24h=volume[TransactionType.DEBIT]["amount"],
        debit_count_24h=volume[TransactionType.DEBIT]["count"],
        open_reconciliation_items=open_items,
        divergent_accounts=sum(1 for check in checks if not check.consistent),
    )


async def send_daily_report(
    session_factory: async_sessionmaker,
    mailer: Optional[Mailer] = None
) -> Optional[PlatformReport]:
    """Build the report and email it to settings.admin_email. Failures are logged."""
    mailer = mailer or Mailer.from_settings()
    try:
        async with session_factory() as db:
            report = await build_platform_report(db)
    except Exception:
        logger.exception("Daily report generation failed")
        return None

    if not settings.admin_email:
        logger.info("No admin email configured, daily report not sent")
        return report

    try:
        await mailer.send(settings.admin_email, "TenaPay Daily Report", report.to_html())
    except Exception:
        logger.exception("Daily report email to %s failed", settings.admin_email)
    return report


async def run_reconciliation_sweep(session_factory: async_sessionmaker) -> int:
    try:
        return await sweep_open_items(session_factory)
    except Exception:
        logger.exception("Reconciliation sweep failed")
        return 0


def schedule_jobs(scheduler: AsyncIOScheduler, session_factory: async_sessionmaker) -> None:
    scheduler.add_job(
        send_daily_report,
        "cron",
        hour=settings.report_hour,
        minute=0,
        args=[session_factory],
        id="daily_platform_report",
        replace_existing=True,
    )

    scheduler.add_job(
        run_reconciliation_sweep,
        "interval",
        minutes=settings.reconciliation_sweep_minutes,
        args=[session_factory],
        id="reconciliation_sweep",
        replace_existing=True,
    )

    logger.info(
        "Scheduled daily report at %02d:00 and reconciliation sweep every %d min",
        settings.report_hour, settings.reconciliation_sweep_minutes
    )
