"""eSIM document rendering.

`PlaywrightPdfRenderer` fills a Jinja2 HTML template and prints it to PDF with
headless Chromium. The pipeline only depends on the `PdfRenderer` protocol.
"""

from datetime import datetime
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape
from playwright.sync_api import sync_playwright
from pydantic import BaseModel

from simbridge.common.metrics import external_call_seconds
from simbridge.common.tracing import get_tracer
from simbridge.services.esim.models import EsimDetail


DEFAULT_TEMPLATE = Path(__file__).parent / "templates" / "esim.html"

tracer = get_tracer(__name__)


class EsimDocument(BaseModel):
    """Template data for one eSIM document."""

    reference_number: str
    confirmation_code: str
    customer_name: str = ""
    product_name: str | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    iccid: str
    qr_code: str | None = None
    smdp_address: str | None = None
    activation_code: str | None = None
    combined_activation: str | None = None
    apn_name: str | None = None
    apn_username: str | None = None
    apn_password: str | None = None

    @classmethod
    def from_esim(cls, esim: EsimDetail, reference_number: str, confirmation_code: str, customer_name: str = ""):
        return cls(
            reference_number=reference_number,
            confirmation_code=confirmation_code,
            customer_name=customer_name,
            product_name=esim.product_name,
            valid_from=esim.valid_from,
            valid_until=esim.valid_until,
            iccid=esim.iccid,
            qr_code=esim.qr_code,
            smdp_address=esim.smdp_address,
            activation_code=esim.activation_code,
            combined_activation=esim.combined_activation,
            apn_name=esim.apn_name,
            apn_username=esim.apn_username,
            apn_password=esim.apn_password,
        )


def pdf_file_name(reference_number: str, iccid: str) -> str:
    return f"{reference_number}_{iccid}.pdf"


class PdfRenderer(Protocol):
    def render(self, document: EsimDocument, output_path: Path) -> Path: ...


def _display(value) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return str(value)


class PlaywrightPdfRenderer:
    """Renders the HTML template to an A4 PDF with headless Chromium."""

    def __init__(self, template_path: Path | None = None) -> None:
        template_path = template_path or DEFAULT_TEMPLATE
        self.env = Environment(
            loader=FileSystemLoader(str(template_path.parent)),
            autoescape=select_autoescape(["html"]),
        )
        self.env.filters["display"] = _display
        self.template_name = template_path.name

    def render_html(self, document: EsimDocument) -> str:
        return self.env.get_template(self.template_name).render(esim=document)

    def render(self, document: EsimDocument, output_path: Path) -> Path:
        html = self.render_html(document)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with tracer.start_as_current_span("pdf.render"), external_call_seconds.labels(dependency="pdf").time():
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(headless=True)
                try:
                    page = browser.new_page()
                    page.set_content(html, wait_until="load")
                    page.pdf(path=str(output_path), format="A4", print_background=True)
                finally:
                    browser.close()
        return output_path
