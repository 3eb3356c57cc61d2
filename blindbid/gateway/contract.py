"""
Auction contract executed by the local ledger.

Runs inside a TransactionContext (see blindbid.gateway.local): reads see
committed state plus the proposal's own writes, writes are buffered into
a write set that the network validates against endorsement policies
before committing.

Public state per auction holds only hash commitments until a bid is
revealed. Full bids live in the bidder organization's implicit private
partition, keyed by (auction id, bid id).
"""

import hashlib
import inspect
from typing import Callable, Dict, Tuple

from pydantic import ValidationError

from blindbid.core.envelope import BID_ENVELOPE_KEY, open_bid_envelope
from blindbid.core.models import Auction, AuctionStatus, BidHash, FullBid

BID_KEY_TYPE = "bid"


class ContractError(Exception):
    """Business rejection raised by a contract function."""


def implicit_collection(msp_id: str) -> str:
    """Name of the organization-scoped private partition of `msp_id`."""
    return f"_implicit_org_{msp_id}"


def composite_key(object_type: str, *attributes: str) -> str:
    """Composite key in the ledger's \\x00-delimited layout."""
    return "\x00" + object_type + "\x00" + "".join(a + "\x00" for a in attributes)


class AuctionContract:
    """The sealed-bid auction contract."""

    def __init__(self):
        # name -> (handler, read_only)
        self.functions: Dict[str, Tuple[Callable, bool]] = {
            "CreateAuction": (self.create_auction, False),
            "QueryAuction": (self.query_auction, True),
            "CreateBid": (self.create_bid, False),
            "QueryBid": (self.query_bid, True),
            "SubmitBid": (self.submit_bid, False),
            "RevealBid": (self.reveal_bid, False),
            "EndAuction": (self.end_auction, False),
            "GetSubmittingClientIdentity": (self.get_submitting_client_identity, True),
        }

    def invoke(self, ctx, tx_name: str, args) -> bytes:
        try:
            handler, _ = self.functions[tx_name]
        except KeyError:
            raise ContractError(f"Function {tx_name} not found in contract") from None

        try:
            inspect.signature(handler).bind(ctx, *args)
        except TypeError as e:
            raise ContractError(f"Incorrect number of arguments for {tx_name}: {e}") from e

        return handler(ctx, *args)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load_auction(ctx, auction_id: str) -> Auction:
        data = ctx.stub.get_state(auction_id)
        if data is None:
            raise ContractError(f"Auction {auction_id} does not exist")
        return Auction.model_validate_json(data)

    @staticmethod
    def _transient_bid(ctx) -> Tuple[bytes, FullBid]:
        raw = ctx.transient.get(BID_ENVELOPE_KEY)
        if raw is None:
            raise ContractError("bid key not found in the transient map")
        try:
            return raw, open_bid_envelope(ctx.transient)
        except ValidationError as e:
            raise ContractError(f"Malformed bid in transient map: {e}") from e

    # =========================================================================
    # Functions
    # =========================================================================

    def create_auction(self, ctx, auction_id: str, item: str) -> bytes:
        """Create an auction; the submitting identity becomes the seller."""
        if ctx.stub.get_state(auction_id) is not None:
            raise ContractError(f"Auction {auction_id} already exists")

        auction = Auction(
            id=auction_id,
            item=item,
            seller=ctx.client_id,
            organizations=[],
            status=AuctionStatus.OPEN,
        )
        ctx.stub.put_state(auction_id, auction.to_bytes())
        return b""

    def query_auction(self, ctx, auction_id: str) -> bytes:
        return self._load_auction(ctx, auction_id).to_bytes()

    def create_bid(self, ctx, auction_id: str) -> bytes:
        """Store the transient bid in the submitter's private partition."""
        raw, bid = self._transient_bid(ctx)

        if ctx.client_msp not in ctx.endorsing_orgs:
            raise ContractError(
                f"Client organization {ctx.client_msp} must endorse writes "
                "to its private partition"
            )
        if bid.org != ctx.client_msp:
            raise ContractError(
                f"Bid organization {bid.org} does not match client organization {ctx.client_msp}"
            )
        if bid.bidder != ctx.client_id:
            raise ContractError("Bidder must be the submitting identity")

        auction = self._load_auction(ctx, auction_id)
        if auction.status != AuctionStatus.OPEN:
            raise ContractError(f"Auction {auction_id} is closed")

        key = composite_key(BID_KEY_TYPE, auction_id, ctx.tx_id)
        ctx.stub.put_private_data(implicit_collection(ctx.client_msp), key, raw)
        return ctx.tx_id.encode("utf-8")

    def query_bid(self, ctx, auction_id: str, bid_id: str) -> bytes:
        """Read a bid from the caller's own private partition."""
        key = composite_key(BID_KEY_TYPE, auction_id, bid_id)
        data = ctx.stub.get_private_data(implicit_collection(ctx.client_msp), key)
        if data is None:
            raise ContractError(f"Bid {bid_id} does not exist")

        bid = FullBid.model_validate_json(data)
        if bid.bidder != ctx.client_id:
            raise ContractError("Permission denied, client id is not the owner of the bid")
        return data

    def submit_bid(self, ctx, auction_id: str, bid_id: str) -> bytes:
        """Record the hash of a private bid in the public auction."""
        auction = self._load_auction(ctx, auction_id)
        if auction.status != AuctionStatus.OPEN:
            raise ContractError(f"Auction {auction_id} is closed, cannot add bid")
        if bid_id in auction.private_bids:
            raise ContractError(f"Bid {bid_id} has already been submitted")

        key = composite_key(BID_KEY_TYPE, auction_id, bid_id)
        bid_hash = ctx.stub.get_private_data_hash(implicit_collection(ctx.client_msp), key)
        if bid_hash is None:
            raise ContractError(f"Bid {bid_id} not found in {ctx.client_msp} partition")

        auction.private_bids[bid_id] = BidHash(org=ctx.client_msp, hash=bid_hash.hex())
        if ctx.client_msp not in auction.organizations:
            auction.organizations.append(ctx.client_msp)
            ctx.stub.set_state_validation_parameter(auction_id, list(auction.organizations))

        ctx.stub.put_state(auction_id, auction.to_bytes())
        return b""

    def reveal_bid(self, ctx, auction_id: str, bid_id: str) -> bytes:
        """Publish a submitted bid after checking it against its commitment."""
        raw, bid = self._transient_bid(ctx)

        auction = self._load_auction(ctx, auction_id)
        if auction.status != AuctionStatus.OPEN:
            raise ContractError(f"Auction {auction_id} is closed, cannot reveal bid")

        commitment = auction.private_bids.get(bid_id)
        if commitment is None:
            raise ContractError(f"Bid {bid_id} has not been submitted to auction {auction_id}")
        if bid_id in auction.revealed_bids:
            raise ContractError(f"Bid {bid_id} has already been revealed")

        if hashlib.sha256(raw).hexdigest() != commitment.hash:
            raise ContractError("Hash of bid in transient map does not match the submitted bid")
        if bid.org != commitment.org:
            raise ContractError("Bid organization does not match the submitted bid")
        if bid.bidder != ctx.client_id:
            raise ContractError("Permission denied, only the bidder can reveal the bid")

        auction.revealed_bids[bid_id] = bid
        ctx.stub.put_state(auction_id, auction.to_bytes())
        return b""

    def end_auction(self, ctx, auction_id: str) -> bytes:
        """Close the auction and record the highest revealed bid."""
        auction = self._load_auction(ctx, auction_id)
        if auction.status != AuctionStatus.OPEN:
            raise ContractError(f"Auction {auction_id} is already closed")
        if auction.seller != ctx.client_id:
            raise ContractError("Only the seller can end the auction")

        best = auction.highest_revealed()
        if best is not None:
            auction.winner = best.bidder
            auction.price = best.price
        auction.status = AuctionStatus.CLOSED

        ctx.stub.put_state(auction_id, auction.to_bytes())
        return b""

    def get_submitting_client_identity(self, ctx) -> bytes:
        return ctx.client_id.encode("utf-8")
