"""
Auction protocol core.

- Configuration and error taxonomy
- Ledger document models
- Endorsement selection and hidden bid envelopes
- The orchestrator driving the auction lifecycle
"""

from blindbid.core.config import ClientConfig, OrgProfile, load_config
from blindbid.core.errors import (
    AuctionClientError,
    ArgumentError,
    LedgerConnectionError,
    QueryError,
    CommitError,
    EnrollmentError,
)
from blindbid.core.models import (
    Auction,
    AuctionStatus,
    Bid,
    BidHash,
    BidVisibility,
    Credential,
    FullBid,
)
from blindbid.core.endorsement import select_endorsers
from blindbid.core.envelope import BID_ENVELOPE_KEY, build_bid_envelope
from blindbid.core.orchestrator import AuctionOrchestrator, OperationResult

__all__ = [
    "ClientConfig",
    "OrgProfile",
    "load_config",
    "AuctionClientError",
    "ArgumentError",
    "LedgerConnectionError",
    "QueryError",
    "CommitError",
    "EnrollmentError",
    "Auction",
    "AuctionStatus",
    "Bid",
    "BidHash",
    "BidVisibility",
    "Credential",
    "FullBid",
    "select_endorsers",
    "BID_ENVELOPE_KEY",
    "build_bid_envelope",
    "AuctionOrchestrator",
    "OperationResult",
]
