"""
Error types for the SheAid engine.

This module defines every exception the engine raises:
- EngineError: Base exception
- RpcUnavailable: Chain node unreachable (transient)
- TransactionFailed / TransactionTimeout: Chain-side rejection or stuck confirmation
- ConfirmationAbandoned: Caller stopped the transition; any submitted transaction is still pending
- InvalidTransition / TransitionInProgress: Lifecycle guards
- ProjectResolutionAmbiguous / ProjectNotFound: Title-matching fallback failures
- InvalidAmount: Malformed monetary input
- UnknownStatus: Chain or store status value without a mapping
- InvalidParameters: Missing or malformed action parameters
- StoreError: Off-chain store write/read failure

Invariants:
    - All errors inherit from EngineError
    - Errors carry a stable code and a details dict for the API layer
    - Only RpcUnavailable and TransactionTimeout are retryable
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENGINE_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class RpcUnavailable(EngineError):
    """Chain RPC endpoint is unreachable.

    Raised when:
    - Connection refused or reset
    - Request timed out before a response
    """

    def __init__(self, message: str, endpoint: Optional[str] = None) -> None:
        super().__init__(message, code="RPC_UNAVAILABLE", details={"endpoint": endpoint})
        self.endpoint = endpoint


class TransactionFailed(EngineError):
    """Transaction was rejected by the chain or the signer.

    Raised when:
    - Execution reverted (including during gas estimation)
    - Out of gas
    - Signer refused to sign
    """

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSACTION_FAILED",
            details={"tx_hash": tx_hash, "reason": reason},
        )
        self.tx_hash = tx_hash
        self.reason = reason


class TransactionTimeout(EngineError):
    """Confirmation was not observed within the bounded wait."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, timeout: float = 0.0) -> None:
        super().__init__(
            message,
            code="TRANSACTION_TIMEOUT",
            details={"tx_hash": tx_hash, "timeout": timeout},
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class ConfirmationAbandoned(EngineError):
    """The caller abandoned a transition.

    This is not a failure. When submitted is True the transaction was sent
    and may still confirm, so the UI should present it as pending. When it
    is False the transition stopped before its next transaction was sent.
    """

    def __init__(
        self, message: str, tx_hash: Optional[str] = None, submitted: bool = True
    ) -> None:
        super().__init__(
            message,
            code="CONFIRMATION_ABANDONED",
            details={"tx_hash": tx_hash, "submitted": submitted},
        )
        self.tx_hash = tx_hash
        self.submitted = submitted


class InvalidTransition(EngineError):
    """An illegal lifecycle move was attempted."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_TRANSITION",
            details={"current": current, "target": target},
        )
        self.current = current
        self.target = target


class TransitionInProgress(EngineError):
    """Another transition for the same entity has not finished."""

    def __init__(self, entity_key: str) -> None:
        super().__init__(
            f"A transition is already in flight for {entity_key}",
            code="TRANSITION_IN_PROGRESS",
            details={"entity_key": entity_key},
        )
        self.entity_key = entity_key


class ProjectNotFound(EngineError):
    """No on-chain project matches the off-chain reference."""

    def __init__(self, message: str, title: Optional[str] = None, issuer: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PROJECT_NOT_FOUND",
            details={"title": title, "issuer": issuer},
        )
        self.title = title
        self.issuer = issuer


class ProjectResolutionAmbiguous(EngineError):
    """Several on-chain projects match the off-chain reference."""

    def __init__(self, message: str, candidates: Optional[list] = None) -> None:
        candidates = candidates or []
        super().__init__(
            message,
            code="PROJECT_RESOLUTION_AMBIGUOUS",
            details={"candidates": candidates},
        )
        self.candidates = candidates


class InvalidAmount(EngineError):
    """Monetary input is negative, non-numeric or too precise."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message, code="INVALID_AMOUNT", details={"value": repr(value)})
        self.value = value


class UnknownStatus(EngineError):
    """A status value has no entry in the mapping tables."""

    def __init__(self, message: str, source: str, value: Any) -> None:
        super().__init__(
            message,
            code="UNKNOWN_STATUS",
            details={"source": source, "value": value},
        )
        self.source = source
        self.value = value


class InvalidParameters(EngineError):
    """Action parameters are missing or malformed."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message, code="INVALID_PARAMETERS", details={"field": field_name})
        self.field_name = field_name


class StoreError(EngineError):
    """Off-chain store operation failed."""

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, code="STORE_ERROR", details={"table": table})
        self.table = table


def is_retryable(error: BaseException) -> bool:
    """Whether a caller-level retry policy may retry after this error."""
    return isinstance(error, (RpcUnavailable, TransactionTimeout))
