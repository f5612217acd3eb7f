"""Upload target clients for rendered eSIM documents."""

from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import BaseModel

from simbridge.common.errors import UploadError
from simbridge.common.http import build_http_client, response_body
from simbridge.common.logging import logger
from simbridge.common.metrics import external_call_seconds
from simbridge.common.tracing import get_tracer


tracer = get_tracer(__name__)


class UploadRequest(BaseModel):
    pdf_file_path: Path
    confirmation_code: str
    customer_email: str = ""
    customer_name: str = ""


class UploadResult(BaseModel):
    upload_url: str
    uploaded_at: datetime
    message: str | None = None


class UploadClient(Protocol):
    def upload_pdf(self, request: UploadRequest) -> UploadResult: ...

    def close(self) -> None: ...


class HttpUploadClient:
    """Multipart `POST /upload/pdf`; non-2xx or transport errors raise `UploadError`."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 5.0,
        max_connections: int = 10,
        keepalive_expiry_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.http = build_http_client(
            base_url,
            api_key,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            max_connections=max_connections,
            keepalive_expiry_seconds=keepalive_expiry_seconds,
            transport=transport,
        )

    def upload_pdf(self, request: UploadRequest) -> UploadResult:
        path = request.pdf_file_path
        if not path.is_file():
            raise UploadError(f"PDF file not found: {path}")
        logger.info("uploading pdf code=%s size_bytes=%s", request.confirmation_code, path.stat().st_size)

        data = {
            "confirmation_code": request.confirmation_code,
            "customer_email": request.customer_email,
            "customer_name": request.customer_name,
            "filename": path.name,
        }
        with tracer.start_as_current_span("upload.pdf"), external_call_seconds.labels(dependency="upload").time():
            with path.open("rb") as handle:
                try:
                    resp = self.http.post(
                        "/upload/pdf",
                        data=data,
                        files={"pdf": (path.name, handle, "application/pdf")},
                    )
                except httpx.HTTPError as exc:
                    raise UploadError(f"upload target unreachable: {exc}") from exc

        body = response_body(resp)
        if not resp.is_success:
            raise UploadError(
                f"upload target returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                response_body=body,
            )
        upload_url = body.get("uploadUrl") or body.get("upload_url")
        if not upload_url:
            raise UploadError("upload response missing uploadUrl", status_code=resp.status_code, response_body=body)
        return UploadResult(
            upload_url=upload_url,
            uploaded_at=datetime.now(timezone.utc),
            message=body.get("message"),
        )

    def close(self) -> None:
        self.http.close()


class MockUploadClient:
    """Accepts any existing file and returns a deterministic URL.

    Only the last `history` uploads are kept in `uploads`.
    """

    def __init__(self, base_url: str = "https://uploads.mock.simbridge.local", history: int = 100) -> None:
        self.base_url = base_url.rstrip("/")
        self.uploads: deque[UploadRequest] = deque(maxlen=history)

    def upload_pdf(self, request: UploadRequest) -> UploadResult:
        if not request.pdf_file_path.is_file():
            raise UploadError(f"PDF file not found: {request.pdf_file_path}")
        self.uploads.append(request)
        return UploadResult(
            upload_url=f"{self.base_url}/{request.confirmation_code}/{request.pdf_file_path.name}",
            uploaded_at=datetime.now(timezone.utc),
            message="mock upload",
        )

    def close(self) -> None:
        return None
