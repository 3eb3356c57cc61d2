"""
Error taxonomy for the auction client.

Every failure that can leave an operation is one of the tagged classes
below. Each carries structured context (operation name, auction id,
bid id) instead of interpolating it into the message, so the CLI and
the logs can report it uniformly.

    ArgumentError          bad CLI input, never reaches the network
    LedgerConnectionError  session establishment failed
    QueryError             read rejected by the ledger or contract
    CommitError            write rejected, endorsement or consensus failure
    EnrollmentError        certificate authority interaction failed
"""

from typing import Any, Dict, Optional


class AuctionClientError(Exception):
    """Base class for all client errors."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        auction_id: Optional[str] = None,
        bid_id: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.auction_id = auction_id
        self.bid_id = bid_id
        self.detail = detail

    @property
    def context(self) -> Dict[str, Any]:
        """Structured context, omitting fields that were never set."""
        fields = {
            "operation": self.operation,
            "auction_id": self.auction_id,
            "bid_id": self.bid_id,
            "detail": self.detail,
        }
        return {k: v for k, v in fields.items() if v is not None}

    def with_context(self, **context: Optional[str]) -> "AuctionClientError":
        """Fill in context fields that are still unset and return self."""
        for key, value in context.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def __str__(self) -> str:
        ctx = self.context
        if not ctx:
            return self.message
        rendered = ", ".join(f"{k}={v}" for k, v in ctx.items())
        return f"{self.message} ({rendered})"


class ArgumentError(AuctionClientError):
    """Invalid command-line input."""

    kind = "argument"


class LedgerConnectionError(AuctionClientError):
    """Session could not be established (discovery or handshake failed)."""

    kind = "connection"


class QueryError(AuctionClientError):
    """Read-only evaluation rejected by the ledger or the contract."""

    kind = "query"


class CommitError(AuctionClientError):
    """Write rejected: endorsement failure, policy mismatch or timeout."""

    kind = "commit"


class EnrollmentError(AuctionClientError):
    """Certificate authority register/enroll failed."""

    kind = "enrollment"


__all__ = [
    "AuctionClientError",
    "ArgumentError",
    "LedgerConnectionError",
    "QueryError",
    "CommitError",
    "EnrollmentError",
]
