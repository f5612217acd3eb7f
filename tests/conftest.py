"""Shared fixtures: in-memory SQLite database, fake collaborators, sample emails."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from simbridge.bootstrap import build_components
from simbridge.common.config import Settings
from simbridge.common.db import Base, make_engine, make_session_factory
from simbridge.common.errors import FulfillmentError
from simbridge.services.esim import models as esim_models  # noqa: F401
from simbridge.services.finalize.upload import MockUploadClient
from simbridge.services.orders import models as order_models  # noqa: F401
from simbridge.services.otp import models as otp_models  # noqa: F401
from simbridge.services.parser.schemas import ParsedItem, ParsedOrder, RawEmail
from simbridge.services.sync import models as sync_models  # noqa: F401
from simbridge.services.sync.client import MockFulfillmentClient


DUMMY_TEXT = """
New Purchased Tickets

Reference Number: ZRPQG8VEGT
Confirmation Code: GTMSRLOW
Product: eSIM Australia New Zealand
SKU: WM-AUNZ-15-10GB
Quantity: 1
Price: 1776500
"""

DUMMY_HTML = """
<html>
  <body>
    <h2>New Purchased Tickets</h2>
    <p><b>Reference Number:</b> ZRPQG8VEGT</p>
    <p><b>Confirmation Code:</b> GTMSRLOW</p>
    <p><b>Product:</b> eSIM Australia New Zealand</p>
    <p><b>SKU:</b> WM-AUNZ-15-10GB</p>
    <p><b>Quantity:</b> 1</p>
    <p><b>Price:</b> 1,776,500</p>
  </body>
</html>
"""

VENDOR_SENDER = "GlobalTix <ticket@globaltix.com>"
VENDOR_SUBJECT = "New Purchased Tickets"


class FakeRenderer:
    """Writes a tiny placeholder PDF instead of launching Chromium."""

    def __init__(self) -> None:
        self.rendered = []
        self.fail_with: Exception | None = None

    def render(self, document, output_path):
        if self.fail_with is not None:
            raise self.fail_with
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"%PDF-1.4 test document")
        self.rendered.append(document)
        return output_path


class FlakyFulfillmentClient(MockFulfillmentClient):
    """Fails the first `failures` calls with an HTTP 503 answer."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def create_order(self, payload, idempotency_key):
        if self.failures > 0:
            self.failures -= 1
            self.calls.append((payload, idempotency_key))
            raise FulfillmentError(
                "fulfillment API returned HTTP 503",
                status_code=503,
                response_body={"success": False, "message": "maintenance"},
            )
        return super().create_order(payload, idempotency_key)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        fulfillment_provider="mock",
        upload_provider="mock",
        pdf_output_dir=tmp_path / "pdf",
        filter_from="globaltix.com",
        filter_subject="ticket",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def fulfillment_client():
    return MockFulfillmentClient()


@pytest.fixture
def uploader():
    return MockUploadClient()


@pytest.fixture
def components(settings, session_factory, fulfillment_client, uploader, renderer):
    return build_components(
        settings,
        session_factory=session_factory,
        fulfillment_client=fulfillment_client,
        uploader=uploader,
        renderer=renderer,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def vendor_email():
    def _make(text: str = DUMMY_TEXT, html: str = DUMMY_HTML, subject: str = VENDOR_SUBJECT) -> RawEmail:
        return RawEmail(sender=VENDOR_SENDER, subject=subject, text=text, html=html)

    return _make


@pytest.fixture
def parsed_order():
    def _make(reference: str = "ZRPQG8VEGT", codes: tuple[str, ...] = ("GTMSRLOW",), **overrides) -> ParsedOrder:
        items = [
            ParsedItem(
                confirmation_code=code,
                product_name="eSIM Australia New Zealand",
                sku="WM-AUNZ-15-10GB",
                quantity=1,
                unit_price=Decimal("1776500"),
            )
            for code in codes
        ]
        fields = {
            "reference_number": reference,
            "customer_name": "Jane Traveller",
            "customer_email": "jane@example.com",
            "payment_status": "Collected",
            "items": items,
        }
        fields.update(overrides)
        return ParsedOrder(**fields)

    return _make


@pytest.fixture
def stored_order(components, parsed_order):
    """Persist an order and return its `SaveOrderResult`."""

    def _store(reference: str = "ZRPQG8VEGT", codes: tuple[str, ...] = ("GTMSRLOW",)):
        return components.orders.save_parsed_order(parsed_order(reference, codes))

    return _store


@pytest.fixture
def provisioned(components, stored_order):
    """Store an order and deliver its items so each has a COMPLETED eSIM record."""

    def _provision(reference: str = "ZRPQG8VEGT", codes: tuple[str, ...] = ("GTMSRLOW",)):
        stored_order(reference, codes)
        return [components.fulfillment.send_item(code) for code in codes]

    return _provision
