"""
Notification Dispatcher, connection directory and the inbox service.
"""

import pytest
from sqlalchemy import select

from tenapay.app.models.notification import Notification, NotificationType
from tenapay.app.services.connections import ConnectionDirectory
from tenapay.app.services.mailer import Mailer
from tenapay.app.services.notification_service import NotificationDispatcher, NotificationService

from conftest import FakeMailer, FakeWebSocket


@pytest.mark.asyncio
async def test_dispatch_persists_pushes_and_emails(db_session, make_account, dispatcher, directory, fake_mailer):
    account = await make_account()
    socket = FakeWebSocket()
    await directory.connect(account.id, socket)

    notification = await dispatcher.notify(
        account.id, NotificationType.PAYMENT_CREDITED, "Payment Received", "200 ETB <added>"
    )

    assert notification.id is not None
    assert socket.accepted
    [message] = socket.messages
    assert message["event"] == "notification"
    assert message["data"]["type"] == "PAYMENT_CREDITED"
    assert message["data"]["id"] == notification.id

    [email] = fake_mailer.sent
    assert email["to"] == account.email
    assert "&lt;added&gt;" in email["html"]

    stored = (await db_session.execute(select(Notification))).scalars().all()
    assert len(stored) == 1


@pytest.mark.asyncio
async def test_email_failure_is_swallowed(session_factory, make_account, directory, caplog):
    account = await make_account()
    socket = FakeWebSocket()
    directory.register(account.id, socket)
    dispatcher = NotificationDispatcher(session_factory, directory, FakeMailer(fail=True))

    notification = await dispatcher.notify(account.id, NotificationType.CLAIM_PAID, "Claim Paid", "Sent")

    assert notification is not None
    assert len(socket.messages) == 1
    assert "Email notification failed" in caplog.text


@pytest.mark.asyncio
async def test_persistence_failure_is_swallowed(make_account, directory, fake_mailer):
    account = await make_account()

    def broken_factory():
        raise RuntimeError("pool exhausted")

    dispatcher = NotificationDispatcher(broken_factory, directory, fake_mailer)

    assert await dispatcher.notify(account.id, NotificationType.INFO, "Hi", "There") is None
    # no address could be read, so nothing was emailed
    assert fake_mailer.sent == []


@pytest.mark.asyncio
async def test_explicit_email_overrides_account_address(make_account, dispatcher, fake_mailer):
    account = await make_account()

    await dispatcher.notify(
        account.id, NotificationType.INFO, "Receipt", "Thanks", email="billing@example.com"
    )

    [email] = fake_mailer.sent
    assert email["to"] == "billing@example.com"


@pytest.mark.asyncio
async def test_dead_socket_is_dropped():
    directory = ConnectionDirectory()
    alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    directory.register("u1", alive)
    directory.register("u1", dead)

    delivered = await directory.send_to_user("u1", {"event": "ping"})

    assert delivered == 1
    assert directory.is_online("u1")

    directory.disconnect("u1", alive)
    assert not directory.is_online("u1")
    assert directory.get_online_count() == 0
    assert await directory.send_to_user("u1", {"event": "ping"}) == 0


@pytest.mark.asyncio
async def test_disabled_mailer_is_a_no_op():
    mailer = Mailer(host="")
    assert mailer.enabled is False
    assert await mailer.send("a@example.com", "Subject", "<p>Body</p>") is False


@pytest.mark.asyncio
async def test_mailer_delivers_over_smtp(mocker):
    smtp = mocker.patch("tenapay.app.services.mailer.smtplib.SMTP")
    mailer = Mailer(host="smtp.test", port=2525, user="bot", password="pw", sender="noreply@tenapay.test")

    assert await mailer.send("a@example.com", "Subject", "<p>Body</p>") is True

    conn = smtp.return_value.__enter__.return_value
    smtp.assert_called_once_with("smtp.test", 2525, timeout=15.0)
    conn.starttls.assert_called_once()
    conn.login.assert_called_once_with("bot", "pw")
    sent = conn.send_message.call_args.args[0]
    assert sent["To"] == "a@example.com"


@pytest.mark.asyncio
async def test_inbox_read_and_delete_are_scoped_to_owner(db_session, make_account):
    owner = await make_account()
    other = await make_account()
    first = await NotificationService.create_notification(db_session, owner.id, "One", "1")
    second = await NotificationService.create_notification(db_session, owner.id, "Two", "2")
    await db_session.commit()
    first_id, second_id = first.id, second.id

    assert await NotificationService.mark_read(db_session, first_id, other.id) is False
    assert await NotificationService.mark_read(db_session, first_id, owner.id) is True
    await db_session.commit()

    unread = await NotificationService.list_for_user(db_session, owner.id, unread_only=True)
    assert [n.id for n in unread] == [second_id]

    assert await NotificationService.mark_all_read(db_session, owner.id) == 1
    assert await NotificationService.delete_notification(db_session, second_id, other.id) is False
    assert await NotificationService.delete_notification(db_session, second_id, owner.id) is True
    await db_session.commit()

    remaining = await NotificationService.list_for_user(db_session, owner.id)
    assert [n.id for n in remaining] == [first_id]
