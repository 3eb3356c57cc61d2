"""
Auction Orchestrator - drives the auction lifecycle through a Session.

Every write that touches shared auction state follows the same triple:

1. **Pre-read**: query the authoritative auction (and bid) state. A
   failure here aborts the operation before anything is written.
2. **Write**: select endorsers from the freshly read organization list,
   build the hidden envelope for bid data, submit. A failure is raised
   as-is and never retried, since retrying after an ambiguous commit
   could submit a bid twice.
3. **Confirm**: re-query the auction for reporting. A failure here is
   logged and does not undo the committed write.

Operation     Pre-read                        Endorsers          Write
------------  ------------------------------  -----------------  ----------------------
create_auction  -                             channel default    CreateAuction(id, item)
create_bid    GetSubmittingClientIdentity     {org}              CreateBid(id) + envelope
submit_bid    QueryAuction                    selected           SubmitBid(id, bid)
reveal_bid    QueryBid, QueryAuction          selected           RevealBid(id, bid) + envelope
end_auction   QueryAuction                    selected           EndAuction(id)

The channel default endorsement is the client's own organization; it is
also used for auctions that have no participating organization yet.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Optional

from pydantic import ValidationError

from blindbid.core.config import ClientConfig
from blindbid.core.endorsement import select_endorsers
from blindbid.core.envelope import build_bid_envelope, envelope_from_record
from blindbid.core.errors import (
    ArgumentError,
    AuctionClientError,
    CommitError,
    QueryError,
)
from blindbid.core.models import Auction, Bid, BidVisibility, FullBid
from blindbid.utils.logger import get_logger

if TYPE_CHECKING:
    from blindbid.gateway.session import Session

logger = get_logger("orchestrator")


@dataclass
class OperationResult:
    """Outcome of one lifecycle operation."""
    operation: str
    tx_id: Optional[str] = None
    auction: Optional[Auction] = None  # None if the confirmation read failed
    bid_id: Optional[str] = None
    bid: Optional[Bid] = None

    @property
    def confirmed(self) -> bool:
        return self.auction is not None


class AuctionOrchestrator:
    """
    Runs auction operations for one identity.

    Attributes:
        session: Open session bound to the auction contract
        config: Client configuration bound to the session's organization
    """

    def __init__(self, session: "Session", config: ClientConfig):
        self.session = session
        self.config = config

    # =========================================================================
    # Reads
    # =========================================================================

    def query_auction(self, auction_id: str) -> Auction:
        """
        Read the public auction document.

        Raises:
            QueryError: If the ledger rejects the read or returns garbage
        """
        try:
            data = self.session.evaluate("QueryAuction", auction_id)
        except AuctionClientError as e:
            raise e.with_context(auction_id=auction_id)

        try:
            return Auction.model_validate_json(data)
        except ValidationError as e:
            raise QueryError(
                "Ledger returned a malformed auction",
                operation="QueryAuction",
                auction_id=auction_id,
                detail=str(e),
            ) from e

    def query_bid(self, auction_id: str, bid_id: str) -> Bid:
        """
        Read a bid from the caller's private partition.

        Raises:
            QueryError: If the bid is missing, not the caller's, or malformed
        """
        try:
            data = self.session.evaluate("QueryBid", auction_id, bid_id)
        except AuctionClientError as e:
            raise e.with_context(auction_id=auction_id, bid_id=bid_id)

        try:
            record = FullBid.model_validate_json(data)
        except ValidationError as e:
            raise QueryError(
                "Ledger returned a malformed bid",
                operation="QueryBid",
                auction_id=auction_id,
                bid_id=bid_id,
                detail=str(e),
            ) from e
        return Bid.from_record(bid_id, auction_id, record)

    def bid_status(self, auction_id: str, bid_id: str) -> Bid:
        """The caller's bid with its visibility taken from the auction."""
        bid = self.query_bid(auction_id, bid_id)
        auction = self.query_auction(auction_id)
        return bid.model_copy(update={"visibility": auction.visibility_of(bid_id)})

    def submitting_identity(self) -> str:
        """Ledger identity string of the session's credential."""
        return self.session.evaluate("GetSubmittingClientIdentity").decode("utf-8")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_auction(self, auction_id: str, item: str) -> OperationResult:
        """Create an auction; the caller becomes the seller."""
        op = "CreateAuction"
        tx_id = self._write(
            op, [auction_id, item], self.default_endorsers(), auction_id=auction_id
        )
        return OperationResult(op, tx_id, auction=self._confirm(op, auction_id))

    def create_bid(self, auction_id: str, org: str, price: int) -> OperationResult:
        """
        Create a private bid.

        The returned bid_id is the only handle to the bid; other
        organizations cannot query it.
        """
        op = "CreateBid"
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            raise ArgumentError(
                f"Price must be a non-negative integer, got {price!r}",
                operation=op,
                auction_id=auction_id,
            )

        try:
            bidder = self.submitting_identity()
        except AuctionClientError as e:
            raise e.with_context(auction_id=auction_id)
        logger.info(f"Bidder ID is {bidder}")

        envelope = build_bid_envelope(price, org, bidder)
        tx_id = self._write(
            op, [auction_id], frozenset((org,)), transient=envelope, auction_id=auction_id
        )

        bid = Bid(
            id=tx_id,
            auction_id=auction_id,
            org=org,
            bidder=bidder,
            price=price,
            visibility=BidVisibility.PRIVATE,
        )
        logger.info(f"Bid stored in the {org} private partition. SAVE THIS VALUE BidID: {tx_id}")
        return OperationResult(op, tx_id, bid_id=tx_id, bid=bid)

    def submit_bid(self, auction_id: str, bid_id: str) -> OperationResult:
        """Commit a private bid's hash to the auction."""
        op = "SubmitBid"
        auction = self.query_auction(auction_id)

        tx_id = self._write(
            op,
            [auction_id, bid_id],
            self._endorsers_for(op, auction),
            auction_id=auction_id,
            bid_id=bid_id,
        )
        return OperationResult(
            op, tx_id, auction=self._confirm(op, auction_id), bid_id=bid_id
        )

    def reveal_bid(self, auction_id: str, bid_id: str) -> OperationResult:
        """Reveal a submitted bid, rebuilding its envelope from the private record."""
        op = "RevealBid"
        bid = self.query_bid(auction_id, bid_id)
        auction = self.query_auction(auction_id)

        envelope = envelope_from_record(bid.to_record())
        tx_id = self._write(
            op,
            [auction_id, bid_id],
            self._endorsers_for(op, auction),
            transient=envelope,
            auction_id=auction_id,
            bid_id=bid_id,
        )
        return OperationResult(
            op, tx_id, auction=self._confirm(op, auction_id), bid_id=bid_id, bid=bid
        )

    def end_auction(self, auction_id: str) -> OperationResult:
        """Close the auction; the ledger picks the winner among revealed bids."""
        op = "EndAuction"
        auction = self.query_auction(auction_id)

        tx_id = self._write(
            op, [auction_id], self._endorsers_for(op, auction), auction_id=auction_id
        )
        return OperationResult(op, tx_id, auction=self._confirm(op, auction_id))

    # =========================================================================
    # Steps
    # =========================================================================

    def default_endorsers(self) -> FrozenSet[str]:
        """Channel default endorsement: the client's own organization."""
        return frozenset((self.session.msp_id,))

    def _endorsers_for(self, op: str, auction: Auction) -> FrozenSet[str]:
        if not auction.organizations:
            logger.debug(f"Auction {auction.id} has no organizations, using channel default")
            return self.default_endorsers()
        try:
            return select_endorsers(auction)
        except ValueError as e:
            raise CommitError(
                "Cannot select endorsing organizations",
                operation=op,
                auction_id=auction.id,
                detail=str(e),
            ) from e

    def _write(
        self,
        op: str,
        args,
        endorsers: FrozenSet[str],
        transient=None,
        auction_id: Optional[str] = None,
        bid_id: Optional[str] = None,
    ) -> str:
        try:
            tx_id, _ = self.session.submit(op, args, endorsers, transient)
        except AuctionClientError as e:
            raise e.with_context(operation=op, auction_id=auction_id, bid_id=bid_id)
        logger.info(f"*** Result: {op} committed")
        return tx_id

    def _confirm(self, op: str, auction_id: str) -> Optional[Auction]:
        try:
            return self.query_auction(auction_id)
        except AuctionClientError as e:
            logger.warning(f"{op} committed but the confirmation read failed: {e}")
            return None
