"""Ingest flow and mailbox worker loops with an in-memory mailbox."""

import asyncio
from email.message import EmailMessage

from simbridge.bootstrap import build_worker
from simbridge.services.parser.schemas import RawEmail
from simbridge.services.worker.mailbox import ImapMailbox, MailboxEvent, to_raw_email

from conftest import DUMMY_HTML, DUMMY_TEXT, VENDOR_SENDER, VENDOR_SUBJECT


class FakeMailbox:
    def __init__(self, events):
        self.events = list(events)
        self.processed = []

    def fetch_unseen(self):
        return [event for event in self.events if event.uid not in self.processed]

    def mark_processed(self, uid):
        self.processed.append(uid)


def _newsletter():
    return RawEmail(sender="news@shop.example", subject="Weekly deals", text="Nothing to see")


def test_handle_email_stores_order(components, vendor_email):
    """A vendor email is stored as a RECEIVED order."""

    outcome = components.ingest.handle_email(vendor_email())

    assert outcome.stored is True
    assert outcome.order.saved_codes == ["GTMSRLOW"]
    assert components.orders.get_order_by_reference("ZRPQG8VEGT").status == "RECEIVED"


def test_non_vendor_email_is_skipped(components):
    """Other senders are ignored."""

    outcome = components.ingest.handle_email(_newsletter())

    assert outcome.stored is False
    assert outcome.order is None


def test_deliver_provisions_and_finalizes(components, vendor_email):
    """Delivery runs through to a pending OTP."""

    outcome = components.ingest.handle_email(vendor_email())

    batch = components.ingest.deliver(outcome.order)

    assert batch.succeeded == ["GTMSRLOW"]
    assert components.esims.find_by_confirmation_code("GTMSRLOW").status == "PENDING_CONFIRMATION"
    assert len(components.otps.get_pending_otps()) == 1


def test_deliver_without_finalize(components, vendor_email):
    """With finalize disabled the record stops at COMPLETED."""

    components.ingest.finalize_on_ingest = False
    outcome = components.ingest.handle_email(vendor_email())

    components.ingest.deliver(outcome.order)

    assert components.esims.find_by_confirmation_code("GTMSRLOW").status == "COMPLETED"
    assert components.otps.get_pending_otps() == []


def test_finalize_failure_during_delivery_is_left_for_retry(components, vendor_email, renderer):
    """A finalize error after delivery leaves the record FAILED for retry."""

    renderer.fail_with = RuntimeError("chromium crashed")
    outcome = components.ingest.handle_email(vendor_email())

    batch = components.ingest.deliver(outcome.order)

    assert batch.succeeded == ["GTMSRLOW"]
    assert components.esims.find_by_confirmation_code("GTMSRLOW").status == "FAILED"


def test_worker_processes_each_message_once(components, vendor_email):
    """Queued messages are not enqueued twice and each is flagged once."""

    mailbox = FakeMailbox(
        [MailboxEvent(uid="1", email=vendor_email()), MailboxEvent(uid="2", email=_newsletter())]
    )

    async def scenario():
        worker = build_worker(components, mailbox=mailbox)
        assert await worker.poll_once() == 2
        # Still queued: a second poll must not enqueue them again.
        assert await worker.poll_once() == 0

        dispatcher = asyncio.create_task(worker.dispatch_forever())
        await worker.queue.join()
        dispatcher.cancel()
        await asyncio.gather(dispatcher, return_exceptions=True)
        assert await worker.poll_once() == 0

    asyncio.run(scenario())

    assert mailbox.processed == ["1", "2"]
    assert components.esims.find_by_confirmation_code("GTMSRLOW").status == "PENDING_CONFIRMATION"


def test_failed_message_stays_unread(components, vendor_email, monkeypatch):
    """A message whose ingest fails is not flagged as seen."""

    mailbox = FakeMailbox([MailboxEvent(uid="7", email=vendor_email())])

    def broken(email):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(components.ingest, "handle_email", broken)

    async def scenario():
        worker = build_worker(components, mailbox=mailbox)
        await worker.poll_once()
        dispatcher = asyncio.create_task(worker.dispatch_forever())
        await worker.queue.join()
        dispatcher.cancel()
        await asyncio.gather(dispatcher, return_exceptions=True)
        # Not flagged, so the next poll picks it up again.
        assert await worker.poll_once() == 1

    asyncio.run(scenario())

    assert mailbox.processed == []


def test_to_raw_email_reads_both_bodies():
    """MIME messages yield both the text and the HTML body."""

    message = EmailMessage()
    message["From"] = VENDOR_SENDER
    message["Subject"] = VENDOR_SUBJECT
    message.set_content(DUMMY_TEXT)
    message.add_alternative(DUMMY_HTML, subtype="html")

    raw = to_raw_email(bytes(message))

    assert raw.sender == VENDOR_SENDER
    assert raw.subject == VENDOR_SUBJECT
    assert "Reference Number: ZRPQG8VEGT" in raw.text
    assert "<h2>New Purchased Tickets</h2>" in raw.html


def test_imap_search_criteria():
    """The IMAP search combines UNSEEN with the sender and subject filters."""

    mailbox = ImapMailbox("imap.example", 993, "user", "secret", filter_from="globaltix.com", filter_subject="ticket")

    assert mailbox._criteria() == ["UNSEEN", "FROM", '"globaltix.com"', "SUBJECT", '"ticket"']
