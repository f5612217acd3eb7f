"""OTP ledger for human confirmation of uploaded eSIM documents.

An OTP is created PENDING with a fixed expiry horizon. It can be confirmed at
most once and only before it expires; the confirming write is conditional on
PENDING so two operators racing on the same code cannot both succeed.
"""

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from simbridge.common.errors import SimbridgeError
from simbridge.common.logging import logger
from simbridge.common.metrics import otp_events_total
from simbridge.common.state_machine import OTP_CONFIRMED, OTP_EXPIRED, OTP_FAILED, OTP_PENDING
from simbridge.services.otp.models import UploadOTP


REASON_NOT_FOUND = "OTP not found"
REASON_ALREADY_USED = "OTP already used"
REASON_EXPIRED = "OTP expired"
REASON_NO_LONGER_VALID = "OTP no longer valid"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class OTPValidation:
    valid: bool
    reason: str | None = None
    otp: UploadOTP | None = None


class OTPLedger:
    """Owns the `upload_otps` table."""

    def __init__(
        self,
        session_factory,
        otp_length: int = 6,
        expiry_hours: int = 24,
        clock=utcnow,
        max_code_attempts: int = 5,
    ) -> None:
        self.session_factory = session_factory
        self.otp_length = otp_length
        self.expiry_hours = expiry_hours
        self.clock = clock
        self.max_code_attempts = max_code_attempts

    def generate_code(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self.otp_length))

    def create_otp(
        self,
        order_item_id: str,
        esim_detail_id: str,
        confirmation_code: str,
        pdf_file_path: str | None = None,
        upload_url: str | None = None,
    ) -> UploadOTP:
        """Issue a PENDING OTP; a unique-code collision is retried with a fresh code."""

        for _ in range(self.max_code_attempts):
            otp = UploadOTP(
                order_item_id=order_item_id,
                esim_detail_id=esim_detail_id,
                confirmation_code=confirmation_code,
                otp_code=self.generate_code(),
                otp_expires_at=self.clock() + timedelta(hours=self.expiry_hours),
                pdf_file_path=pdf_file_path,
                upload_url=upload_url,
                status=OTP_PENDING,
            )
            with self.session_factory() as db:
                db.add(otp)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.warning("otp code collision, retrying code=%s", confirmation_code)
                    continue
            otp_events_total.labels(event="created").inc()
            logger.info("otp created code=%s esim_id=%s", confirmation_code, esim_detail_id)
            return otp
        raise SimbridgeError(f"could not allocate a unique OTP for {confirmation_code}")

    def find_by_code(self, otp_code: str) -> UploadOTP | None:
        with self.session_factory() as db:
            return db.execute(select(UploadOTP).where(UploadOTP.otp_code == otp_code)).scalar_one_or_none()

    def validate_otp(self, otp_code: str) -> OTPValidation:
        """Check whether `otp_code` can be confirmed now.

        A PENDING row past its expiry is flipped to EXPIRED as a side effect.
        """

        otp = self.find_by_code(otp_code)
        if otp is None:
            return OTPValidation(False, REASON_NOT_FOUND)
        if otp.status == OTP_CONFIRMED:
            return OTPValidation(False, REASON_ALREADY_USED, otp)
        if otp.status == OTP_EXPIRED:
            return OTPValidation(False, REASON_EXPIRED, otp)
        if otp.status == OTP_FAILED:
            return OTPValidation(False, REASON_NO_LONGER_VALID, otp)

        if as_utc(otp.otp_expires_at) <= self.clock():
            with self.session_factory() as db:
                db.execute(
                    update(UploadOTP)
                    .where(UploadOTP.id == otp.id, UploadOTP.status == OTP_PENDING)
                    .values(status=OTP_EXPIRED, updated_at=self.clock())
                )
                db.commit()
            otp.status = OTP_EXPIRED
            otp_events_total.labels(event="expired").inc()
            return OTPValidation(False, REASON_EXPIRED, otp)
        return OTPValidation(True, None, otp)

    def confirm_otp(self, otp_code: str, confirmed_by: str) -> OTPValidation:
        """Confirm a valid OTP once; returns the failed validation otherwise."""

        validation = self.validate_otp(otp_code)
        if not validation.valid:
            otp_events_total.labels(event="rejected").inc()
            return validation

        now = self.clock()
        with self.session_factory() as db:
            result = db.execute(
                update(UploadOTP)
                .where(
                    UploadOTP.id == validation.otp.id,
                    UploadOTP.status == OTP_PENDING,
                    UploadOTP.otp_expires_at > now,
                )
                .values(status=OTP_CONFIRMED, confirmed_by=confirmed_by, confirmed_at=now, updated_at=now)
            )
            db.commit()
        if result.rowcount != 1:
            # Lost a race with another confirmation or with the expiry sweep.
            otp_events_total.labels(event="rejected").inc()
            return self.validate_otp(otp_code)

        otp_events_total.labels(event="confirmed").inc()
        logger.info("otp confirmed code=%s by=%s", validation.otp.confirmation_code, confirmed_by)
        return OTPValidation(True, None, self.find_by_code(otp_code))

    def expire_old_otps(self) -> int:
        """Bulk-flip PENDING rows past expiry to EXPIRED; returns the count."""

        now = self.clock()
        with self.session_factory() as db:
            result = db.execute(
                update(UploadOTP)
                .where(UploadOTP.status == OTP_PENDING, UploadOTP.otp_expires_at <= now)
                .values(status=OTP_EXPIRED, updated_at=now)
            )
            db.commit()
        if result.rowcount:
            otp_events_total.labels(event="expired").inc(result.rowcount)
            logger.info("expired %s pending otp(s)", result.rowcount)
        return result.rowcount

    def get_pending_otps(self) -> list[UploadOTP]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(UploadOTP).where(UploadOTP.status == OTP_PENDING).order_by(UploadOTP.created_at)
                ).scalars()
            )

    def find_latest_pending(self, esim_detail_id: str) -> UploadOTP | None:
        with self.session_factory() as db:
            return (
                db.execute(
                    select(UploadOTP)
                    .where(UploadOTP.esim_detail_id == esim_detail_id, UploadOTP.status == OTP_PENDING)
                    .order_by(UploadOTP.created_at.desc())
                    .limit(1)
                )
                .scalars()
                .first()
            )

    def mark_failed(self, otp_id: str) -> bool:
        with self.session_factory() as db:
            result = db.execute(
                update(UploadOTP)
                .where(UploadOTP.id == otp_id, UploadOTP.status == OTP_PENDING)
                .values(status=OTP_FAILED, updated_at=self.clock())
            )
            db.commit()
        return result.rowcount == 1
