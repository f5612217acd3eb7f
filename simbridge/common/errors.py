"""Exception hierarchy for the ingestion and fulfillment pipeline."""

from typing import Any


class SimbridgeError(Exception):
    """Base class for pipeline errors."""


class InvalidTransition(SimbridgeError, ValueError):
    """A lifecycle transition the state machine does not allow."""


class OrderItemNotFound(SimbridgeError, LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Order item not found: {key}")
        self.key = key


class EsimNotFound(SimbridgeError, LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"eSIM record not found: {key}")
        self.key = key


class DeliveryError(SimbridgeError):
    """An external collaborator rejected a call or could not be reached.

    `status_code` and `response_body` are kept so the sync ledger can store
    the remote answer next to the request snapshot.
    """

    def __init__(self, message: str, status_code: int | None = None, response_body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class FulfillmentError(DeliveryError):
    pass


class UploadError(DeliveryError):
    pass


class FinalizeError(SimbridgeError):
    pass
