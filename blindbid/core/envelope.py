"""
Privacy Envelope Builder - hidden payload for bid writes.

Bid price and bidder identity travel only in the transient map of a
proposal, under the key "bid". The ledger hands the transient map to the
endorsing organizations and never persists it to public state.

The envelope body is canonical JSON, so an envelope rebuilt at reveal
time from the private bid record hashes identically to the one written
at creation time.
"""

from typing import Dict

from blindbid.core.models import FullBid

BID_ENVELOPE_KEY = "bid"


def build_bid_envelope(price: int, org: str, bidder: str) -> Dict[str, bytes]:
    """
    Build the transient map for CreateBid / RevealBid.

    Args:
        price: Bid price (non-negative)
        org: MSP id of the bidder's organization
        bidder: Ledger identity string of the bidder

    Returns:
        {"bid": canonical JSON bytes}

    Raises:
        ValueError: If price is negative or org/bidder empty
    """
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValueError(f"price must be int, got {type(price).__name__}")
    if price < 0:
        raise ValueError(f"price must be >= 0, got {price}")
    if not org:
        raise ValueError("org must be non-empty")
    if not bidder:
        raise ValueError("bidder must be non-empty")

    record = FullBid(price=price, org=org, bidder=bidder)
    return {BID_ENVELOPE_KEY: record.to_bytes()}


def envelope_from_record(record: FullBid) -> Dict[str, bytes]:
    """Rebuild the envelope from a queried private bid record."""
    return build_bid_envelope(record.price, record.org, record.bidder)


def open_bid_envelope(transient: Dict[str, bytes]) -> FullBid:
    """
    Parse the bid carried by a transient map.

    Raises:
        KeyError: If the map has no "bid" entry
        pydantic.ValidationError: If the entry is not a valid bid
    """
    return FullBid.model_validate_json(transient[BID_ENVELOPE_KEY])


__all__ = [
    "BID_ENVELOPE_KEY",
    "build_bid_envelope",
    "envelope_from_record",
    "open_bid_envelope",
]
