"""Ingest flow and the long-running mailbox worker.

The worker keeps one poller task filling an `asyncio.Queue` and a single
dispatcher task draining it, so messages are processed strictly one at a time.
Blocking pipeline calls run in a worker thread via `asyncio.to_thread`.
"""

import asyncio

from pydantic import BaseModel

from simbridge.common.logging import logger, reference_number_ctx
from simbridge.common.metrics import emails_received_total
from simbridge.services.finalize.service import FinalizePipeline
from simbridge.services.orders.schemas import SaveOrderResult
from simbridge.services.orders.store import OrderStore
from simbridge.services.parser.schemas import RawEmail
from simbridge.services.parser.service import EmailParser, format_order_summary
from simbridge.services.retry.service import RetryService
from simbridge.services.sync.fulfillment import FulfillmentSyncService
from simbridge.services.sync.schemas import BatchSendResult
from simbridge.services.worker.mailbox import Mailbox, MailboxEvent


class IngestOutcome(BaseModel):
    stored: bool
    order: SaveOrderResult | None = None


class IngestService:
    """Parse and store one email, then push its items downstream."""

    def __init__(
        self,
        parser: EmailParser,
        orders: OrderStore,
        fulfillment: FulfillmentSyncService,
        finalize: FinalizePipeline,
        finalize_on_ingest: bool = True,
    ) -> None:
        self.parser = parser
        self.orders = orders
        self.fulfillment = fulfillment
        self.finalize = finalize
        self.finalize_on_ingest = finalize_on_ingest

    def handle_email(self, email: RawEmail) -> IngestOutcome:
        parsed = self.parser.parse(email)
        if parsed is None:
            emails_received_total.labels(outcome="skipped").inc()
            return IngestOutcome(stored=False)

        reference_number_ctx.set(parsed.reference_number)
        logger.info("ingesting order\n%s", format_order_summary(parsed))
        saved = self.orders.save_parsed_order(parsed)
        emails_received_total.labels(outcome="stored").inc()
        return IngestOutcome(stored=True, order=saved)

    def deliver(self, saved: SaveOrderResult) -> BatchSendResult:
        """Send every stored item; optionally finalize the ones just provisioned."""

        batch = self.fulfillment.send_multiple(saved.saved_codes)
        if not self.finalize_on_ingest:
            return batch
        item_ids = dict(zip(saved.saved_codes, saved.item_ids))
        for code in batch.succeeded:
            try:
                self.finalize.finalize_item(item_ids[code])
            except Exception as exc:
                # Left FAILED; the next retry pass picks it up.
                logger.warning("finalize after ingest failed code=%s error=%s", code, exc)
        return batch


class MailboxWorker:
    """Poller, dispatcher and periodic retry loops for one process."""

    def __init__(
        self,
        mailbox: Mailbox,
        ingest: IngestService,
        retry: RetryService,
        poll_interval_seconds: float = 30.0,
        retry_interval_seconds: float = 600.0,
        retry_limit: int = 20,
        queue_size: int = 100,
    ) -> None:
        self.mailbox = mailbox
        self.ingest = ingest
        self.retry = retry
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.retry_limit = retry_limit
        self.queue: asyncio.Queue[MailboxEvent] = asyncio.Queue(maxsize=queue_size)
        self._in_flight: set[str] = set()

    async def poll_once(self) -> int:
        """Enqueue unseen messages that are not already queued; returns how many."""

        events = await asyncio.to_thread(self.mailbox.fetch_unseen)
        queued = 0
        for event in events:
            if event.uid in self._in_flight:
                continue
            self._in_flight.add(event.uid)
            await self.queue.put(event)
            queued += 1
        return queued

    async def poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("mailbox poll failed")
            await asyncio.sleep(self.poll_interval_seconds)

    async def process_event(self, event: MailboxEvent) -> IngestOutcome:
        outcome = await asyncio.to_thread(self.ingest.handle_email, event.email)
        # Stored (or not applicable): safe to flag so the next poll skips it.
        await asyncio.to_thread(self.mailbox.mark_processed, event.uid)
        if outcome.order is not None:
            await asyncio.to_thread(self.ingest.deliver, outcome.order)
        return outcome

    async def dispatch_forever(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.process_event(event)
            except Exception:
                emails_received_total.labels(outcome="error").inc()
                logger.exception("mailbox message failed uid=%s", event.uid)
            finally:
                self._in_flight.discard(event.uid)
                self.queue.task_done()

    async def retry_forever(self) -> None:
        while True:
            await asyncio.sleep(self.retry_interval_seconds)
            try:
                await asyncio.to_thread(self.retry.run, "all", self.retry_limit)
            except Exception:
                logger.exception("retry pass failed")

    def start(self) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self.poll_forever()),
            asyncio.create_task(self.dispatch_forever()),
            asyncio.create_task(self.retry_forever()),
        ]
