# Error types for the Receipt Sync Agent
# Only SourceUnavailable is surfaced as an error status; the rest feed stats and logs

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync engine"""


class ConfigError(SyncError):
    """Configuration file or environment could not be turned into an AgentConfig"""


class SourceUnavailable(SyncError):
    """POS database or adapter unreachable. Aborts the running cycle."""


class InvalidReceiptNumber(SyncError):
    """Receipt number has no numeric suffix after its last '/'"""

    def __init__(self, receipt_no: str):
        super().__init__(f"Receipt number has no numeric suffix: {receipt_no!r}")
        self.receipt_no = receipt_no


class ValidationRejected(SyncError):
    """Group dropped by the filter. Logged, never retried."""

    INVALID_PREFIX = 'invalid-prefix'
    MALFORMED_RECEIPT_NO = 'malformed-receipt-no'
    BEFORE_CUTOFF = 'before-cutoff'
    DEDUP_CHECK_FAILED = 'dedup-check-failed'

    def __init__(self, receipt_no: str, reason: str, detail: str = ''):
        message = f"{receipt_no} rejected: {reason}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.receipt_no = receipt_no
        self.reason = reason
        self.detail = detail


class DeliveryError(SyncError):
    """Receipt could not be delivered to the ledger. Goes to the retry queue."""

    kind = 'delivery'

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DeliveryNetworkError(DeliveryError):
    """No response received (connection refused, DNS, timeout)"""

    kind = 'network'


class DeliveryHttpError(DeliveryError):
    """Server answered with a non-2xx status or an application-level failure"""

    kind = 'http'


class DeliveryRequestError(DeliveryError):
    """Request could not be built or sent (bad URL, unserializable payload)"""

    kind = 'request'
