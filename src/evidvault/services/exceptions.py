"""Service error hierarchy for pinning, durable storage and ledger operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation, unknown references)
- InsufficientFundsError: Payment gate refused; needs a top-up, not a retry
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    - Transaction confirmation timeouts
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed without caller correction.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Unknown CID or topic
    - Transaction reverts
    """

    pass


class InsufficientFundsError(ServiceError):
    """Payment balance or allowance below the configured minimum."""

    def __init__(self, message: str, balance: int = 0, minimum_required: int = 0):
        super().__init__(message)
        self.balance = balance
        self.minimum_required = minimum_required


# Pin store errors
class PinRateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class PinNetworkError(TransientError):
    """Network timeout or service unavailable."""

    pass


class PinAuthError(PermanentError):
    """Authentication failure (401, 403)."""

    pass


class PinValidationError(PermanentError):
    """Bad request (400)."""

    pass


class ContentNotFoundError(PermanentError):
    """CID not retrievable from any gateway."""

    pass


# Durable storage errors
class StorageProviderError(TransientError):
    """Primary storage provider rejected or failed the upload."""

    pass


class DirectDealError(TransientError):
    """Direct deal proposal could not be submitted."""

    pass


class StorageFallbackExhausted(TransientError):
    """Every storage strategy failed for this attempt."""

    def __init__(self, errors: list[tuple[str, Exception]]):
        self.errors = errors
        detail = "; ".join(f"{name}: {error}" for name, error in errors)
        super().__init__(f"All storage strategies failed ({detail})")


class MigrationTimeoutError(TransientError):
    """Migration exceeded its deadline."""

    pass


# Blockchain errors
class BlockchainConnectionError(TransientError):
    """Failed to reach the chain RPC endpoint."""

    pass


class TransactionSubmissionError(TransientError):
    """Transaction submission failed."""

    pass


class TransactionTimeoutError(TransientError):
    """Transaction confirmation timeout."""

    pass


class TransactionRevertError(PermanentError):
    """Transaction reverted on-chain."""

    pass


# Ledger errors
class LedgerNetworkError(TransientError):
    """Consensus gateway unreachable or failing."""

    pass


class MirrorNodeError(TransientError):
    """Mirror node read replica unreachable or failing."""

    pass


class TopicNotFoundError(PermanentError):
    """Ledger topic does not exist."""

    pass


class InvalidTopicIdError(PermanentError):
    """Topic id does not match shard.realm.num."""

    pass


# Record errors
class FileRecordNotFoundError(PermanentError):
    """No FileRecord with the requested id."""

    pass
