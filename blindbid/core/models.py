"""
Ledger documents and client-side records.

The auction contract exchanges JSON documents; these pydantic models
parse them and serialize them back with the ledger's field names
(objectType, privateBids, revealedBids, ...).

Visibility of a bid is never stored on the client. It is derived from
the auction document the ledger returns:

    PRIVATE    bid id absent from the auction (only in the bidder's
               organization partition)
    SUBMITTED  bid id present in privateBids (hash commitment only)
    REVEALED   bid id present in revealedBids (price and bidder public)
"""

import json
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(str, Enum):
    """Lifecycle state of an auction."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class BidVisibility(str, Enum):
    """Who can see a bid's price and bidder."""
    PRIVATE = "PRIVATE"
    SUBMITTED = "SUBMITTED"
    REVEALED = "REVEALED"


# =============================================================================
# Bids
# =============================================================================


class FullBid(BaseModel):
    """
    Complete bid data: the body of the hidden `bid` envelope, the
    private partition record, and the revealed-bid entry.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    object_type: Literal["bid"] = Field(default="bid", alias="objectType")
    price: int = Field(ge=0)
    org: str
    bidder: str

    def to_bytes(self) -> bytes:
        """Canonical encoding (fixed key order, compact separators)."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class BidHash(BaseModel):
    """Public commitment to a submitted bid."""
    model_config = ConfigDict(frozen=True)

    org: str
    hash: str


class Bid(BaseModel):
    """A bid as seen by its owner."""

    id: str
    auction_id: str
    org: str
    bidder: str
    price: int = Field(ge=0)
    # None when read without the auction document
    visibility: Optional[BidVisibility] = None

    @classmethod
    def from_record(
        cls,
        bid_id: str,
        auction_id: str,
        record: FullBid,
        visibility: Optional[BidVisibility] = None,
    ) -> "Bid":
        return cls(
            id=bid_id,
            auction_id=auction_id,
            org=record.org,
            bidder=record.bidder,
            price=record.price,
            visibility=visibility,
        )

    def to_record(self) -> FullBid:
        return FullBid(price=self.price, org=self.org, bidder=self.bidder)


# =============================================================================
# Auction
# =============================================================================


class Auction(BaseModel):
    """Public auction document."""
    model_config = ConfigDict(populate_by_name=True)

    object_type: str = Field(default="auction", alias="objectType")
    id: str
    item: str
    seller: str = ""
    organizations: List[str] = Field(default_factory=list)
    private_bids: Dict[str, BidHash] = Field(default_factory=dict, alias="privateBids")
    revealed_bids: Dict[str, FullBid] = Field(default_factory=dict, alias="revealedBids")
    winner: str = ""
    price: int = 0
    status: AuctionStatus = AuctionStatus.OPEN

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        # Numeric ids are accepted and kept as their decimal text
        return str(value) if isinstance(value, int) else value

    @field_validator("organizations", mode="before")
    @classmethod
    def _null_organizations(cls, value):
        return [] if value is None else value

    @property
    def is_open(self) -> bool:
        return self.status == AuctionStatus.OPEN

    def visibility_of(self, bid_id: str) -> BidVisibility:
        """Visibility of `bid_id` according to this document."""
        if bid_id in self.revealed_bids:
            return BidVisibility.REVEALED
        if bid_id in self.private_bids:
            return BidVisibility.SUBMITTED
        return BidVisibility.PRIVATE

    def highest_revealed(self) -> Optional[FullBid]:
        """Highest revealed bid; the earliest revealed wins a tie."""
        best = None
        for bid in self.revealed_bids.values():
            if best is None or bid.price > best.price:
                best = bid
        return best

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    def to_pretty_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=2)


# =============================================================================
# Identity
# =============================================================================


class Credential(BaseModel):
    """
    Signing identity held in an identity store.

    Stored as {credentials: {certificate, privateKey}, mspId, type}.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    certificate: str
    private_key: str = Field(alias="privateKey")
    msp_id: str = Field(alias="mspId")
    type: Literal["X.509"] = "X.509"

    def to_store_json(self) -> str:
        return json.dumps(
            {
                "credentials": {
                    "certificate": self.certificate,
                    "privateKey": self.private_key,
                },
                "mspId": self.msp_id,
                "type": self.type,
                "version": 1,
            },
            indent=2,
        )

    @classmethod
    def from_store_json(cls, data: str) -> "Credential":
        raw = json.loads(data)
        if not isinstance(raw, dict):
            raise ValueError(f"identity must be a JSON object, got {type(raw).__name__}")
        creds = raw.get("credentials", {})
        return cls(
            certificate=creds.get("certificate", ""),
            private_key=creds.get("privateKey", ""),
            msp_id=raw.get("mspId", ""),
            type=raw.get("type", "X.509"),
        )


__all__ = [
    "AuctionStatus",
    "BidVisibility",
    "FullBid",
    "BidHash",
    "Bid",
    "Auction",
    "Credential",
]
