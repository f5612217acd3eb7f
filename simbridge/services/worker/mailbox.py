"""Mailbox adapter: unseen vendor emails in, `\\Seen` flag out.

Messages are fetched with `BODY.PEEK[]` so reading never marks them; the worker
calls `mark_processed` only after the order is durably stored.
"""

import imaplib
from dataclasses import dataclass
from email import message_from_bytes, policy
from email.message import EmailMessage
from typing import Protocol

from simbridge.common.logging import logger
from simbridge.services.parser.schemas import RawEmail


@dataclass
class MailboxEvent:
    """One new message handed from the poller to the dispatcher."""

    uid: str
    email: RawEmail


class Mailbox(Protocol):
    def fetch_unseen(self) -> list[MailboxEvent]: ...

    def mark_processed(self, uid: str) -> None: ...


def _part_text(message: EmailMessage, subtype: str) -> str:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def to_raw_email(raw: bytes) -> RawEmail:
    """Decode RFC 822 bytes into the parser's input model."""

    message = message_from_bytes(raw, policy=policy.default)
    return RawEmail(
        sender=str(message.get("From", "")),
        subject=str(message.get("Subject", "")),
        text=_part_text(message, "plain"),
        html=_part_text(message, "html"),
    )


class ImapMailbox:
    """Polling IMAP client; opens one short-lived connection per call."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        use_ssl: bool = True,
        folder: str = "INBOX",
        timeout_seconds: float = 30.0,
        filter_from: str = "",
        filter_subject: str = "",
        mark_as_read: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_ssl = use_ssl
        self.folder = folder
        self.timeout_seconds = timeout_seconds
        self.filter_from = filter_from
        self.filter_subject = filter_subject
        self.mark_as_read = mark_as_read

    def _connect(self) -> imaplib.IMAP4:
        if self.use_ssl:
            conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout_seconds)
        else:
            conn = imaplib.IMAP4(self.host, self.port, timeout=self.timeout_seconds)
        conn.login(self.user, self.password)
        conn.select(self.folder)
        return conn

    def _criteria(self) -> list[str]:
        criteria = ["UNSEEN"]
        if self.filter_from:
            criteria += ["FROM", f'"{self.filter_from}"']
        if self.filter_subject:
            criteria += ["SUBJECT", f'"{self.filter_subject}"']
        return criteria

    def fetch_unseen(self) -> list[MailboxEvent]:
        events: list[MailboxEvent] = []
        with self._connect() as conn:
            status, data = conn.uid("SEARCH", None, *self._criteria())
            if status != "OK":
                raise imaplib.IMAP4.error(f"IMAP search failed: {status}")
            for uid in data[0].split():
                status, parts = conn.uid("FETCH", uid, "(BODY.PEEK[])")
                if status != "OK" or not parts or not isinstance(parts[0], tuple):
                    logger.warning("imap fetch failed uid=%s status=%s", uid, status)
                    continue
                events.append(MailboxEvent(uid=uid.decode(), email=to_raw_email(parts[0][1])))
        if events:
            logger.info("mailbox fetched %s unseen message(s)", len(events))
        return events

    def mark_processed(self, uid: str) -> None:
        if not self.mark_as_read:
            return
        with self._connect() as conn:
            conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
