from __future__ import annotations

import asyncio
from unittest.mock import patch

from tenancy.core.config import SmtpSettings
from tenancy.services.mailer import LoggingMailer, SmtpMailer, build_mailer
from tenancy.services.notifier import EMAIL_QUEUE
from tenancy.services.task_queue import InMemoryTaskQueue
from tenancy.worker import HANDLERS, process_one, run_worker


class _FlakyMailer:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.sent: list[str] = []

    async def send(self, *, to: str, subject: str, body: str) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("smtp relay unreachable")
        self.sent.append(to)


def _email(to: str = "a@b.com") -> dict:
    return {"kind": "invite", "to": to, "subject": "Hi", "body": "Body"}


def test_email_handler_registered() -> None:
    assert EMAIL_QUEUE in HANDLERS


def test_process_one_sends_and_acks() -> None:
    queue = InMemoryTaskQueue()
    mailer = LoggingMailer()

    async def scenario():
        await queue.enqueue(EMAIL_QUEUE, _email())
        handled = await process_one(queue, EMAIL_QUEUE, mailer)
        idle = await process_one(queue, EMAIL_QUEUE, mailer)
        return handled, idle, await queue.recover(EMAIL_QUEUE)

    handled, idle, stranded = asyncio.run(scenario())
    assert (handled, idle) == (True, False)
    assert stranded == 0
    assert mailer.sent == [{"to": "a@b.com", "subject": "Hi", "body": "Body"}]


def test_failed_send_is_retried() -> None:
    queue = InMemoryTaskQueue()
    mailer = _FlakyMailer(failures=1)

    async def scenario():
        await queue.enqueue(EMAIL_QUEUE, _email())
        await process_one(queue, EMAIL_QUEUE, mailer)
        await process_one(queue, EMAIL_QUEUE, mailer)

    asyncio.run(scenario())
    assert mailer.sent == ["a@b.com"]
    assert queue.dead_letters(EMAIL_QUEUE) == []


def test_persistent_failure_goes_to_dead_letters() -> None:
    queue = InMemoryTaskQueue()
    mailer = _FlakyMailer(failures=10)

    async def scenario():
        await queue.enqueue(EMAIL_QUEUE, _email())
        while await process_one(queue, EMAIL_QUEUE, mailer, max_attempts=2):
            pass

    asyncio.run(scenario())
    dead = queue.dead_letters(EMAIL_QUEUE)
    assert len(dead) == 1
    assert dead[0].attempts == 2


def test_run_worker_drains_queue_until_stopped() -> None:
    queue = InMemoryTaskQueue()
    mailer = LoggingMailer()

    async def scenario():
        for i in range(3):
            await queue.enqueue(EMAIL_QUEUE, _email(f"u{i}@x.com"))
        stop = asyncio.Event()
        worker = asyncio.create_task(run_worker(queue, mailer, stop=stop, idle_sleep=0.01))
        while await queue.queue_length(EMAIL_QUEUE):
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(worker, timeout=2)

    asyncio.run(scenario())
    assert [m["to"] for m in mailer.sent] == ["u0@x.com", "u1@x.com", "u2@x.com"]


def test_build_mailer_picks_transport() -> None:
    assert isinstance(build_mailer(SmtpSettings()), LoggingMailer)
    assert isinstance(build_mailer(SmtpSettings(host="smtp.test")), SmtpMailer)


def test_smtp_mailer_uses_tls_and_login() -> None:
    settings = SmtpSettings(
        host="smtp.test", port=2525, username="u", password="p", mail_from="x@app.test"
    )
    with patch("tenancy.services.mailer.smtplib.SMTP") as smtp_cls:
        asyncio.run(SmtpMailer(settings).send(to="a@b.com", subject="Hi", body="Body"))

    smtp_cls.assert_called_once_with("smtp.test", 2525, timeout=10.0)
    smtp = smtp_cls.return_value.__enter__.return_value
    smtp.starttls.assert_called_once_with()
    smtp.login.assert_called_once_with("u", "p")
    sent = smtp.send_message.call_args.args[0]
    assert sent["To"] == "a@b.com"
    assert sent["From"] == "x@app.test"
