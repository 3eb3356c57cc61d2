"""
Operation variants exposed on the command line.

Each variant declares its positional arguments as FieldRule entries and
maps to exactly one orchestrator (or enrollment) call. The CLI builds one
click command per variant from this table and routes them all through a
single dispatcher.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Tuple

from blindbid.utils.validation import FieldRule


class Operation(Enum):
    """Closed set of CLI operations."""
    ENROLL_ADMIN = "enroll-admin"
    REGISTER_USER = "register-user"
    CREATE_AUCTION = "create-auction"
    CREATE_BID = "create-bid"
    SUBMIT_BID = "submit-bid"
    REVEAL_BID = "reveal-bid"
    END_AUCTION = "end-auction"
    QUERY_AUCTION = "query-auction"
    QUERY_BID = "query-bid"


ORG = FieldRule("org", "org", "Org")
USER_ID = FieldRule("user_id", "alphanumeric", "User ID")
AUCTION_ID = FieldRule("auction_id", "numeric", "Auction ID")
ITEM = FieldRule("item", "alphanumeric", "Item")
PRICE = FieldRule("price", "numeric", "Price")
BID_ID = FieldRule("bid_id", "alphanumeric", "Bid ID")


@dataclass(frozen=True)
class OperationSpec:
    """Arguments and description of one operation."""
    fields: Tuple[FieldRule, ...]
    help: str
    uses_ledger: bool = True

    @property
    def usage(self) -> str:
        return " ".join(f"<{f.name}>" for f in self.fields)


OPERATION_SPECS: Dict[Operation, OperationSpec] = {
    Operation.ENROLL_ADMIN: OperationSpec(
        (ORG,),
        "Enroll the CA admin of an organization into its wallet",
        uses_ledger=False,
    ),
    Operation.REGISTER_USER: OperationSpec(
        (ORG, USER_ID),
        "Register and enroll a user with the organization's CA",
        uses_ledger=False,
    ),
    Operation.CREATE_AUCTION: OperationSpec(
        (ORG, USER_ID, AUCTION_ID, ITEM),
        "Create an auction; the user becomes the seller",
    ),
    Operation.CREATE_BID: OperationSpec(
        (ORG, USER_ID, AUCTION_ID, PRICE),
        "Create a private bid and print its bid id",
    ),
    Operation.SUBMIT_BID: OperationSpec(
        (ORG, USER_ID, AUCTION_ID, BID_ID),
        "Add the hash of a private bid to the auction",
    ),
    Operation.REVEAL_BID: OperationSpec(
        (ORG, USER_ID, AUCTION_ID, BID_ID),
        "Reveal a submitted bid to every organization",
    ),
    Operation.END_AUCTION: OperationSpec(
        (ORG, USER_ID, AUCTION_ID),
        "Close the auction and record the winner",
    ),
    Operation.QUERY_AUCTION: OperationSpec(
        (ORG, USER_ID, AUCTION_ID),
        "Print the public auction document",
    ),
    Operation.QUERY_BID: OperationSpec(
        (ORG, USER_ID, AUCTION_ID, BID_ID),
        "Print one of your own bids",
    ),
}


# Orchestrator call per ledger operation: (orchestrator, validated args) -> result
LEDGER_CALLS: Dict[Operation, Callable] = {
    Operation.CREATE_AUCTION: lambda o, a: o.create_auction(a["auction_id"], a["item"]),
    Operation.CREATE_BID: lambda o, a: o.create_bid(
        a["auction_id"], o.config.msp_id, int(a["price"])
    ),
    Operation.SUBMIT_BID: lambda o, a: o.submit_bid(a["auction_id"], a["bid_id"]),
    Operation.REVEAL_BID: lambda o, a: o.reveal_bid(a["auction_id"], a["bid_id"]),
    Operation.END_AUCTION: lambda o, a: o.end_auction(a["auction_id"]),
    Operation.QUERY_AUCTION: lambda o, a: o.query_auction(a["auction_id"]),
    Operation.QUERY_BID: lambda o, a: o.query_bid(a["auction_id"], a["bid_id"]),
}
