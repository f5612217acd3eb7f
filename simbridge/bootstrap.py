"""Wires settings into concrete components for the worker and the scripts."""

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from simbridge.common.config import Settings
from simbridge.common.db import make_engine, make_session_factory
from simbridge.common.logging import configure_logging
from simbridge.services.esim.store import EsimStore
from simbridge.services.finalize.pdf import PdfRenderer, PlaywrightPdfRenderer
from simbridge.services.finalize.service import FinalizePipeline
from simbridge.services.finalize.upload import HttpUploadClient, MockUploadClient, UploadClient
from simbridge.services.orders.store import OrderStore
from simbridge.services.otp.service import OTPLedger
from simbridge.services.parser.service import EmailParser
from simbridge.services.retry.service import RetryService
from simbridge.services.sync.client import FulfillmentClient, HttpFulfillmentClient, MockFulfillmentClient
from simbridge.services.sync.fulfillment import FulfillmentSyncService
from simbridge.services.sync.ledger import SyncLedger
from simbridge.services.worker.mailbox import ImapMailbox, Mailbox
from simbridge.services.worker.service import IngestService, MailboxWorker


@dataclass
class Components:
    settings: Settings
    engine: Engine | None
    session_factory: object
    parser: EmailParser
    orders: OrderStore
    ledger: SyncLedger
    esims: EsimStore
    otps: OTPLedger
    fulfillment_client: FulfillmentClient
    uploader: UploadClient
    fulfillment: FulfillmentSyncService
    finalize: FinalizePipeline
    retry: RetryService
    ingest: IngestService

    def close(self) -> None:
        self.fulfillment_client.close()
        self.uploader.close()
        if self.engine is not None:
            self.engine.dispose()


def build_fulfillment_client(settings: Settings) -> FulfillmentClient:
    if settings.fulfillment_provider == "mock":
        return MockFulfillmentClient()
    return HttpFulfillmentClient(
        settings.fulfillment_base_url,
        settings.fulfillment_api_key,
        timeout_seconds=settings.fulfillment_timeout_seconds,
        connect_timeout_seconds=settings.http_connect_timeout_seconds,
        max_connections=settings.http_max_connections,
        keepalive_expiry_seconds=settings.http_keepalive_expiry_seconds,
    )


def build_upload_client(settings: Settings) -> UploadClient:
    if settings.upload_provider == "mock":
        return MockUploadClient()
    return HttpUploadClient(
        settings.upload_base_url,
        settings.upload_api_key,
        timeout_seconds=settings.upload_timeout_seconds,
        connect_timeout_seconds=settings.http_connect_timeout_seconds,
        max_connections=settings.http_max_connections,
        keepalive_expiry_seconds=settings.http_keepalive_expiry_seconds,
    )


def build_mailbox(settings: Settings) -> Mailbox:
    return ImapMailbox(
        settings.imap_host,
        settings.imap_port,
        settings.imap_user,
        settings.imap_password,
        use_ssl=settings.imap_use_ssl,
        folder=settings.imap_folder,
        timeout_seconds=settings.imap_timeout_seconds,
        filter_from=settings.filter_from,
        filter_subject=settings.filter_subject,
        mark_as_read=settings.mark_as_read,
    )


def build_components(
    settings: Settings,
    session_factory=None,
    fulfillment_client: FulfillmentClient | None = None,
    uploader: UploadClient | None = None,
    renderer: PdfRenderer | None = None,
) -> Components:
    """Build every pipeline component; collaborators can be injected for tests."""

    engine = None
    if session_factory is None:
        engine = make_engine(settings)
        session_factory = make_session_factory(engine)

    fulfillment_client = fulfillment_client or build_fulfillment_client(settings)
    uploader = uploader or build_upload_client(settings)
    renderer = renderer or PlaywrightPdfRenderer(settings.pdf_template_path)

    parser = EmailParser(settings.filter_from, settings.filter_subject)
    orders = OrderStore(session_factory)
    ledger = SyncLedger(session_factory)
    esims = EsimStore(session_factory)
    otps = OTPLedger(session_factory, otp_length=settings.otp_length, expiry_hours=settings.otp_expiry_hours)
    fulfillment = FulfillmentSyncService(orders, ledger, esims, fulfillment_client)
    finalize = FinalizePipeline(orders, esims, ledger, otps, renderer, uploader, settings.pdf_output_dir)
    retry = RetryService(orders, ledger, fulfillment, finalize, otps)
    ingest = IngestService(parser, orders, fulfillment, finalize, finalize_on_ingest=settings.finalize_on_ingest)
    return Components(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        parser=parser,
        orders=orders,
        ledger=ledger,
        esims=esims,
        otps=otps,
        fulfillment_client=fulfillment_client,
        uploader=uploader,
        fulfillment=fulfillment,
        finalize=finalize,
        retry=retry,
        ingest=ingest,
    )


def build_cli_components(service_name: str) -> Components:
    """Settings, JSON logging and components for a one-shot admin script."""

    settings = Settings(service_name=service_name)
    configure_logging(settings.service_name, settings.log_level)
    return build_components(settings)


def build_worker(components: Components, mailbox: Mailbox | None = None) -> MailboxWorker:
    settings = components.settings
    return MailboxWorker(
        mailbox or build_mailbox(settings),
        components.ingest,
        components.retry,
        poll_interval_seconds=settings.poll_interval_seconds,
        retry_interval_seconds=settings.retry_interval_seconds,
        retry_limit=settings.retry_limit,
    )
