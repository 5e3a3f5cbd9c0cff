"""
Outgoing mail: the outbox that records and queues mail jobs, the message
templates, and the delivery backends (SMTP and an in-memory test double).
"""

from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol
from urllib.parse import urlencode

from climblog.queue import JobQueue
from climblog.records import MailJobRecord, MailTemplate, UserRecord

logger = logging.getLogger(__name__)


@dataclass
class MailMessage:
    to: str
    sender: str
    subject: str
    html_body: str
    plain_body: str


class Mailer(Protocol):
    """Delivers a rendered message."""

    def send(self, message: MailMessage) -> None:
        ...


class MailOutbox:
    """Records a mail job and hands its id to the queue for the worker."""

    def __init__(self, db, queue: JobQueue):
        self.db = db
        self.queue = queue

    def _submit(self, template: MailTemplate, user: UserRecord, context: dict) -> MailJobRecord:
        context = {"name": user.username, "email": user.email, **context}
        job = self.db.create_mail_job(template, user.email, context)
        self.queue.enqueue(job.job_id)
        logger.info("Queued %s mail job %s", template.value, job.job_id)
        return job

    def send_confirmation(self, user: UserRecord, code: str) -> MailJobRecord:
        return self._submit(MailTemplate.CONFIRMATION, user, {"code": code})

    def send_password_reset(self, user: UserRecord, token: str) -> MailJobRecord:
        return self._submit(MailTemplate.PASSWORD_RESET, user, {"token": token})


def _html_to_text(html_body: str) -> str:
    text = html_body.replace("<br>", "\n").replace("</p>", "\n\n")
    return re.sub(r"<[^>]+>", "", text).strip()


def render_message(job: MailJobRecord, *, frontend_url: str, sender: str) -> MailMessage:
    ctx = job.context
    name = ctx.get("name") or "climber"
    if job.template == MailTemplate.CONFIRMATION:
        query = urlencode({"email": ctx.get("email", job.recipient), "code": ctx["code"]})
        url = f"{frontend_url}/auth/verify-mail?{query}"
        subject = "Welcome to Climb Log! Confirm your Email"
        html_body = (
            f"<p>Hi {name},</p>"
            f"<p>Your verification code is <strong>{ctx['code']}</strong>.</p>"
            f"<p>You can also confirm your email by following "
            f'<a href="{url}">this link</a>.</p>'
        )
    elif job.template == MailTemplate.PASSWORD_RESET:
        url = f"{frontend_url}/auth/create-password?{urlencode({'token': ctx['token']})}"
        subject = "Password Reset Request"
        html_body = (
            f"<p>Hi {name},</p>"
            f"<p>We received a request to reset your password. "
            f'<a href="{url}">Choose a new password</a>.</p>'
            f"<p>The link expires in 1 hour. If you did not ask for a reset "
            f"you can ignore this email.</p>"
        )
    else:
        raise ValueError(f"Unknown mail template {job.template!r}")

    return MailMessage(
        to=job.recipient,
        sender=sender,
        subject=subject,
        html_body=html_body,
        plain_body=_html_to_text(html_body),
    )


@dataclass
class InMemoryMailer:
    """Test double that keeps delivered messages."""

    outbox: list[MailMessage] = field(default_factory=list)

    def send(self, message: MailMessage) -> None:
        logger.info("Mail to %s: %s", message.to, message.subject)
        self.outbox.append(message)

    def reset(self) -> None:
        self.outbox.clear()


@dataclass
class SmtpMailer:
    host: str
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True

    def send(self, message: MailMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.sender
        msg["To"] = message.to
        msg.attach(MIMEText(message.plain_body, "plain"))
        msg.attach(MIMEText(message.html_body, "html"))

        with smtplib.SMTP(self.host, self.port) as server:
            if self.use_tls:
                server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("Email sent to %s: %s", message.to, message.subject)
