"""Caller-driven retry passes.

Each pass re-scans what is not yet SUCCESS and re-enters the normal pipeline
entry points, relying on the same idempotency guards as the first attempt.
"""

from pydantic import BaseModel

from simbridge.common.logging import logger
from simbridge.common.metrics import retries_total
from simbridge.common.state_machine import FULFILLMENT_TARGET
from simbridge.services.finalize.service import FinalizePipeline, FinalizeRunResult
from simbridge.services.orders.store import OrderStore
from simbridge.services.otp.service import OTPLedger
from simbridge.services.sync.fulfillment import FulfillmentSyncService
from simbridge.services.sync.ledger import SyncLedger
from simbridge.services.sync.schemas import BatchSendResult


STAGES = ("fulfillment", "finalize", "all")


class RetryReport(BaseModel):
    fulfillment: BatchSendResult | None = None
    finalize: FinalizeRunResult | None = None
    expired_otps: int = 0


class RetryService:
    """Re-drives failed or never-attempted deliveries and finalize runs."""

    def __init__(
        self,
        orders: OrderStore,
        ledger: SyncLedger,
        fulfillment: FulfillmentSyncService,
        finalize: FinalizePipeline,
        otps: OTPLedger,
    ) -> None:
        self.orders = orders
        self.ledger = ledger
        self.fulfillment = fulfillment
        self.finalize = finalize
        self.otps = otps

    def fulfillment_candidates(self, limit: int = 20) -> list[str]:
        """FAILED ledger rows first, then items that never reached the ledger."""

        codes = [log.confirmation_code for log in self.ledger.get_failed_logs(FULFILLMENT_TARGET, limit)]
        for item in self.orders.find_items_never_synced(FULFILLMENT_TARGET, limit):
            if item.confirmation_code not in codes:
                codes.append(item.confirmation_code)
        return codes[:limit]

    def retry_fulfillment(self, limit: int = 20) -> BatchSendResult:
        codes = self.fulfillment_candidates(limit)
        if not codes:
            logger.info("fulfillment retry: nothing to do")
            return BatchSendResult()
        logger.info("fulfillment retry: %s candidate(s)", len(codes))
        result = self.fulfillment.send_multiple(codes)
        retries_total.labels(stage="fulfillment", result="success").inc(len(result.succeeded))
        retries_total.labels(stage="fulfillment", result="failed").inc(len(result.failed))
        return result

    def retry_finalize(self, limit: int = 20) -> tuple[FinalizeRunResult, int]:
        """Sweep expired OTPs, then finalize READY/COMPLETED/FAILED records."""

        expired = self.otps.expire_old_otps()
        result = self.finalize.retry_failed(limit)
        retries_total.labels(stage="finalize", result="success").inc(
            len(result.finalized) + len(result.already_finalized)
        )
        retries_total.labels(stage="finalize", result="failed").inc(len(result.failed))
        return result, expired

    def run(self, stage: str = "all", limit: int = 20) -> RetryReport:
        if stage not in STAGES:
            raise ValueError(f"unknown retry stage: {stage}")
        report = RetryReport()
        if stage in ("fulfillment", "all"):
            report.fulfillment = self.retry_fulfillment(limit)
        if stage in ("finalize", "all"):
            report.finalize, report.expired_otps = self.retry_finalize(limit)
        return report
