"""Invitation and membership notifications.

Messages are composed here and handed to the task queue; the worker sends
them.  Enqueueing happens after the governing transaction has committed,
and a failure to enqueue never undoes that transaction: ``send_*`` log the
failure, count it, and return False so the caller can report it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from redis.exceptions import RedisError

from tenancy.core.clock import format_duration
from tenancy.core.metrics import NOTIFICATIONS
from tenancy.models.invite import Invite
from tenancy.models.organization import Organization
from tenancy.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

EMAIL_QUEUE = "email"


class Notifier:
    def __init__(self, task_queue: TaskQueue, *, app_url: str) -> None:
        self._queue = task_queue
        self._app_url = app_url.rstrip("/")

    def invite_link(self, invite: Invite) -> str:
        return f"{self._app_url}/invite/{invite.token}"

    async def send_invite(
        self,
        invite: Invite,
        org: Organization,
        *,
        inviter_name: str,
        now: datetime,
        resend: bool = False,
    ) -> bool:
        expires_in = format_duration((invite.expires_at - now).total_seconds())
        lines = [
            f"{inviter_name} invited you to join {org.name} as {invite.role.value}.",
            "",
        ]
        if invite.message:
            lines += [invite.message, ""]
        lines += [
            f"Accept the invitation: {self.invite_link(invite)}",
            f"This invitation expires in {expires_in}.",
        ]
        subject = (
            f"Reminder: you're invited to join {org.name}"
            if resend
            else f"You're invited to join {org.name}"
        )
        return await self._enqueue(
            "invite_resend" if resend else "invite",
            to=invite.email,
            subject=subject,
            body="\n".join(lines),
        )

    async def send_welcome(self, *, to: str, name: str, org: Organization, role: str) -> bool:
        body = (
            f"Hi {name or to},\n\n"
            f"You are now a member of {org.name} with the {role} role.\n"
            f"Open it here: {self._app_url}/organizations/{org.id}"
        )
        return await self._enqueue(
            "welcome", to=to, subject=f"Welcome to {org.name}", body=body
        )

    async def _enqueue(self, kind: str, *, to: str, subject: str, body: str) -> bool:
        try:
            task = await self._queue.enqueue(
                EMAIL_QUEUE,
                {"kind": kind, "to": to, "subject": subject, "body": body},
            )
        except (RedisError, OSError):
            NOTIFICATIONS.labels(kind=kind, result="failed").inc()
            logger.exception("Failed to queue %s email to=%s", kind, to)
            return False

        NOTIFICATIONS.labels(kind=kind, result="queued").inc()
        logger.info("Queued %s email task=%s to=%s", kind, task.id, to)
        return True
