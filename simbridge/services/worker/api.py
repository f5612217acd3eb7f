"""Admin HTTP surface served next to the mailbox worker.

Every endpoint is a thin caller of a pipeline operation; business rules stay
in the services.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from simbridge.bootstrap import Components
from simbridge.common.errors import EsimNotFound, FinalizeError, OrderItemNotFound
from simbridge.common.metrics import metrics_response
from simbridge.services.otp.service import REASON_NOT_FOUND
from simbridge.services.retry.service import RetryReport
from simbridge.services.worker.schemas import (
    ConfirmOTPRequest,
    ConfirmOTPResponse,
    PendingOTPResponse,
    RegeneratePdfResponse,
    RetryRequest,
)
from simbridge.services.worker.service import MailboxWorker


def create_app(components: Components, worker: MailboxWorker | None = None) -> FastAPI:
    """Build the app; the worker loops run for the lifetime of the app when given."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        tasks = worker.start() if worker is not None else []
        yield
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        components.close()

    app = FastAPI(title="simbridge worker", lifespan=lifespan)

    @app.get("/otps/pending", response_model=list[PendingOTPResponse])
    def pending_otps():
        """OTPs still waiting for an operator."""

        components.otps.expire_old_otps()
        return [PendingOTPResponse.model_validate(otp) for otp in components.otps.get_pending_otps()]

    @app.post("/otps/{otp_code}/confirm", response_model=ConfirmOTPResponse)
    def confirm_otp(otp_code: str, req: ConfirmOTPRequest):
        """Confirm an uploaded document; marks the eSIM DONE and the item completed."""

        validation = components.finalize.confirm_upload(otp_code, req.confirmed_by)
        if not validation.valid:
            status_code = 404 if validation.reason == REASON_NOT_FOUND else 409
            raise HTTPException(status_code=status_code, detail=validation.reason)
        otp = validation.otp
        return ConfirmOTPResponse(
            confirmed=True,
            confirmation_code=otp.confirmation_code,
            esim_detail_id=otp.esim_detail_id,
        )

    @app.post("/retry", response_model=RetryReport)
    def retry(req: RetryRequest):
        """Run one retry pass synchronously."""

        return components.retry.run(req.stage, req.limit)

    @app.post("/esims/{confirmation_code}/regenerate-pdf", response_model=RegeneratePdfResponse)
    def regenerate_pdf(confirmation_code: str):
        try:
            path = components.finalize.regenerate_pdf(confirmation_code)
        except (OrderItemNotFound, EsimNotFound) as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return RegeneratePdfResponse(confirmation_code=confirmation_code, pdf_file_path=str(path))

    @app.post("/esims/{confirmation_code}/reissue-otp", response_model=PendingOTPResponse)
    def reissue_otp(confirmation_code: str):
        try:
            otp = components.finalize.reissue_otp(confirmation_code)
        except (OrderItemNotFound, EsimNotFound) as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except FinalizeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return PendingOTPResponse.model_validate(otp)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health check endpoint."""

        return {"ok": True}

    return app
