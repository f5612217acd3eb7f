"""Finalize pipeline: PDF, upload, OTP, then human confirmation.

Per eSIM record: take the `mark_as_finalizing` lock, re-check the sync ledger
for the finalize target, render the document, upload it, issue an OTP and park
the record in PENDING_CONFIRMATION. Any failure marks the record FAILED, which
makes it lockable again for the next retry pass.
"""

from pathlib import Path

from pydantic import BaseModel, Field

from simbridge.common.errors import EsimNotFound, FinalizeError, OrderItemNotFound
from simbridge.common.logging import confirmation_code_ctx, logger, reference_number_ctx
from simbridge.common.metrics import finalize_outcomes_total
from simbridge.common.state_machine import (
    ESIM_PENDING_CONFIRMATION,
    FINALIZE_TARGET,
    SYNC_FAILED,
    SYNC_SUCCESS,
)
from simbridge.services.esim.models import EsimDetail
from simbridge.services.esim.store import EsimStore
from simbridge.services.finalize.pdf import EsimDocument, PdfRenderer, pdf_file_name
from simbridge.services.finalize.upload import UploadClient, UploadRequest
from simbridge.services.orders.models import OrderItem
from simbridge.services.orders.store import OrderStore
from simbridge.services.otp.models import UploadOTP
from simbridge.services.otp.service import OTPLedger, OTPValidation
from simbridge.services.sync.ledger import SyncLedger
from simbridge.services.sync.schemas import SyncLogWrite


FINALIZED = "FINALIZED"
ALREADY_FINALIZED = "ALREADY_FINALIZED"
SKIPPED = "SKIPPED"
FAILED = "FAILED"


class FinalizeRunResult(BaseModel):
    finalized: list[str] = Field(default_factory=list)
    already_finalized: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class FinalizePipeline:
    """Drives provisioned eSIM records to PENDING_CONFIRMATION and then DONE."""

    def __init__(
        self,
        orders: OrderStore,
        esims: EsimStore,
        ledger: SyncLedger,
        otps: OTPLedger,
        renderer: PdfRenderer,
        uploader: UploadClient,
        output_dir: Path,
        target_service: str = FINALIZE_TARGET,
    ) -> None:
        self.orders = orders
        self.esims = esims
        self.ledger = ledger
        self.otps = otps
        self.renderer = renderer
        self.uploader = uploader
        self.output_dir = Path(output_dir)
        self.target_service = target_service

    def _load_item(self, esim: EsimDetail) -> OrderItem:
        item = self.orders.find_item_by_id(esim.order_item_id)
        if item is None:
            raise OrderItemNotFound(esim.order_item_id)
        confirmation_code_ctx.set(item.confirmation_code)
        reference_number_ctx.set(item.order.reference_number)
        return item

    def _render(self, esim: EsimDetail, item: OrderItem) -> Path:
        order = item.order
        output_path = self.output_dir / pdf_file_name(order.reference_number, esim.iccid)
        document = EsimDocument.from_esim(
            esim,
            reference_number=order.reference_number,
            confirmation_code=item.confirmation_code,
            customer_name=order.customer_name,
        )
        return self.renderer.render(document, output_path)

    def finalize_esim(self, esim_id: str) -> str:
        """Finalize one record; returns FINALIZED, ALREADY_FINALIZED or SKIPPED.

        Raises `FinalizeError` after marking the record FAILED.
        """

        esim = self.esims.find_by_id(esim_id)
        if esim is None:
            raise EsimNotFound(esim_id)
        if not self.esims.mark_as_finalizing(esim_id):
            logger.info("finalize skipped, lock not acquired esim_id=%s status=%s", esim_id, esim.status)
            finalize_outcomes_total.labels(outcome=SKIPPED).inc()
            return SKIPPED

        try:
            item = self._load_item(esim)
        except OrderItemNotFound:
            self.esims.mark_failed(esim_id)
            raise
        code = item.confirmation_code

        if self.ledger.is_already_synced(code, self.target_service):
            self.esims.mark_as_done(esim_id)
            self.orders.mark_item_completed(item.id)
            logger.info("finalize already recorded, marked done code=%s", code)
            finalize_outcomes_total.labels(outcome=ALREADY_FINALIZED).inc()
            return ALREADY_FINALIZED

        otp: UploadOTP | None = None
        request_payload = {"esimId": esim_id, "iccid": esim.iccid}
        try:
            pdf_path = self._render(esim, item)
            request_payload["pdfPath"] = str(pdf_path)
            upload = self.uploader.upload_pdf(
                UploadRequest(
                    pdf_file_path=pdf_path,
                    confirmation_code=code,
                    customer_email=item.order.customer_email,
                    customer_name=item.order.customer_name,
                )
            )
            otp = self.otps.create_otp(
                order_item_id=item.id,
                esim_detail_id=esim_id,
                confirmation_code=code,
                pdf_file_path=str(pdf_path),
                upload_url=upload.upload_url,
            )
            self.esims.update_pdf_info(esim_id, str(pdf_path), upload.upload_url, upload.uploaded_at)
            self.ledger.upsert_log(
                SyncLogWrite(
                    confirmation_code=code,
                    reference_number=item.order.reference_number,
                    target_service=self.target_service,
                    status=SYNC_SUCCESS,
                    request_payload=request_payload,
                    response_payload={
                        "file": str(pdf_path),
                        "uploadUrl": upload.upload_url,
                        "uploadedAt": upload.uploaded_at.isoformat(),
                        "otpGenerated": True,
                    },
                )
            )
            self.esims.mark_pending_confirmation(esim_id)
        except Exception as exc:
            if otp is not None:
                self.otps.mark_failed(otp.id)
            self.ledger.upsert_log(
                SyncLogWrite(
                    confirmation_code=code,
                    reference_number=item.order.reference_number,
                    target_service=self.target_service,
                    status=SYNC_FAILED,
                    request_payload=request_payload,
                    response_payload=getattr(exc, "response_body", None),
                    error_message=str(exc),
                )
            )
            self.esims.mark_failed(esim_id)
            finalize_outcomes_total.labels(outcome=FAILED).inc()
            logger.error("finalize failed code=%s error=%s", code, exc)
            raise FinalizeError(f"finalize failed for {code}: {exc}") from exc

        finalize_outcomes_total.labels(outcome=FINALIZED).inc()
        logger.info("finalize awaiting otp confirmation code=%s upload_url=%s", code, upload.upload_url)
        return FINALIZED

    def finalize_item(self, order_item_id: str) -> str:
        esim = self.esims.find_by_order_item_id(order_item_id)
        if esim is None:
            raise EsimNotFound(order_item_id)
        return self.finalize_esim(esim.id)

    def _run_over(self, esims: list[EsimDetail]) -> FinalizeRunResult:
        result = FinalizeRunResult()
        for esim in esims:
            try:
                outcome = self.finalize_esim(esim.id)
            except Exception as exc:
                logger.warning("finalize pass error esim_id=%s error=%s", esim.id, exc)
                result.failed[esim.id] = str(exc)
                continue
            if outcome == FINALIZED:
                result.finalized.append(esim.id)
            elif outcome == ALREADY_FINALIZED:
                result.already_finalized.append(esim.id)
            else:
                result.skipped.append(esim.id)
        return result

    def run(self, limit: int = 50) -> FinalizeRunResult:
        """Finalize every READY/COMPLETED record; per-record failures do not stop the pass."""

        esims = self.esims.find_pending_upload(limit)
        if not esims:
            logger.info("finalize pass: nothing ready")
        return self._run_over(esims)

    def retry_failed(self, limit: int = 50) -> FinalizeRunResult:
        """Like `run`, but also re-enters records left FAILED by an earlier pass."""

        return self._run_over(self.esims.find_completed_but_not_done(limit))

    def confirm_upload(self, otp_code: str, confirmed_by: str) -> OTPValidation:
        """Human gate: confirm the OTP, then mark the eSIM DONE and the item completed."""

        validation = self.otps.confirm_otp(otp_code, confirmed_by)
        if not validation.valid:
            logger.warning("otp confirmation rejected reason=%s", validation.reason)
            return validation
        otp = validation.otp
        confirmation_code_ctx.set(otp.confirmation_code)
        self.esims.mark_as_done(otp.esim_detail_id)
        self.orders.mark_item_completed(otp.order_item_id)
        logger.info("upload confirmed code=%s by=%s", otp.confirmation_code, confirmed_by)
        return validation

    def _esim_for_code(self, confirmation_code: str) -> tuple[EsimDetail, OrderItem]:
        item = self.orders.find_item_by_confirmation_code(confirmation_code)
        if item is None:
            raise OrderItemNotFound(confirmation_code)
        esim = self.esims.find_by_order_item_id(item.id)
        if esim is None:
            raise EsimNotFound(confirmation_code)
        return esim, item

    def regenerate_pdf(self, confirmation_code: str) -> Path:
        """Re-render the document for one code without touching its status."""

        esim, item = self._esim_for_code(confirmation_code)
        pdf_path = self._render(esim, item)
        self.esims.update_pdf_info(esim.id, str(pdf_path))
        logger.info("pdf regenerated code=%s path=%s", confirmation_code, pdf_path)
        return pdf_path

    def regenerate_all_done(self) -> list[Path]:
        paths: list[Path] = []
        for esim in self.esims.find_done():
            try:
                item = self._load_item(esim)
                pdf_path = self._render(esim, item)
                self.esims.update_pdf_info(esim.id, str(pdf_path))
            except Exception as exc:
                logger.warning("pdf regeneration failed esim_id=%s error=%s", esim.id, exc)
                continue
            paths.append(pdf_path)
        return paths

    def reissue_otp(self, confirmation_code: str) -> UploadOTP:
        """Replace the pending OTP of a record still awaiting confirmation."""

        esim, item = self._esim_for_code(confirmation_code)
        if esim.status != ESIM_PENDING_CONFIRMATION:
            raise FinalizeError(f"{confirmation_code} is not awaiting confirmation (status={esim.status})")
        previous = self.otps.find_latest_pending(esim.id)
        if previous is not None:
            self.otps.mark_failed(previous.id)
        return self.otps.create_otp(
            order_item_id=item.id,
            esim_detail_id=esim.id,
            confirmation_code=confirmation_code,
            pdf_file_path=esim.pdf_file_path,
            upload_url=esim.upload_url,
        )
