"""
Daily platform report and job scheduling.
"""

from decimal import Decimal

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tenapay.app.core.config import settings
from tenapay.app.jobs.report_job import build_platform_report, schedule_jobs, send_daily_report
from tenapay.app.services.ledger import LedgerService

from conftest import FakeMailer


@pytest.mark.asyncio
async def test_report_aggregates_fund_and_daily_volume(db_session, make_account):
    account = await make_account(balance=Decimal("300"))
    await make_account(balance=Decimal("50"))
    await LedgerService.debit(db_session, account.id, Decimal("120"), "Claim")

    report = await build_platform_report(db_session)

    assert report.overview.total_users == 2
    assert report.overview.total_collected == Decimal("350.00")
    assert report.overview.total_claimed == Decimal("120.00")
    assert report.overview.total_balance == Decimal("230.00")
    assert report.credit_count_24h == 2
    assert report.debits_24h == Decimal("120.00")
    assert report.open_reconciliation_items == 0
    assert report.divergent_accounts == 0
    assert "230.00 ETB" in report.to_html()


@pytest.mark.asyncio
async def test_daily_report_is_emailed_to_admin(session_factory, make_account, monkeypatch):
    await make_account(balance=Decimal("10"))
    monkeypatch.setattr(settings, "admin_email", "ops@tenapay.test")
    mailer = FakeMailer()

    report = await send_daily_report(session_factory, mailer)

    assert report is not None
    [email] = mailer.sent
    assert email["to"] == "ops@tenapay.test"
    assert email["subject"] == "TenaPay Daily Report"


@pytest.mark.asyncio
async def test_daily_report_mail_failure_is_logged(session_factory, monkeypatch, caplog):
    monkeypatch.setattr(settings, "admin_email", "ops@tenapay.test")

    report = await send_daily_report(session_factory, FakeMailer(fail=True))

    assert report is not None
    assert "Daily report email" in caplog.text


def test_jobs_are_scheduled():
    scheduler = AsyncIOScheduler(timezone="UTC")

    schedule_jobs(scheduler, session_factory=None)

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"daily_platform_report", "reconciliation_sweep"}
    assert str(jobs["daily_platform_report"].trigger.fields[5]) == str(settings.report_hour)
