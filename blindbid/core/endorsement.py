"""
Endorsement Selector - which organizations must co-sign an auction write.

Every organization with a bid in an auction must endorse any write that
touches it. The auction's recorded organization list is the only valid
source for the selection, so callers re-read the auction right before
selecting.

Only one- and two-organization auctions are defined. An auction with no
organizations yet is written under the channel default endorsement and
never reaches the selector.
"""

from typing import FrozenSet

from blindbid.core.models import Auction
from blindbid.utils.logger import get_logger

logger = get_logger("endorsement")

MAX_PARTICIPATING_ORGS = 2


def select_endorsers(auction: Auction) -> FrozenSet[str]:
    """
    Compute the endorsing organizations for a write to `auction`.

    Args:
        auction: Freshly queried auction document

    Returns:
        The organization identifiers that must endorse

    Raises:
        ValueError: If the auction has no organizations or more than two
    """
    orgs = auction.organizations
    if not orgs:
        raise ValueError(
            f"Auction {auction.id} has no participating organizations; "
            "use the channel default endorsement"
        )
    if len(orgs) > MAX_PARTICIPATING_ORGS:
        raise ValueError(
            f"Auction {auction.id} has {len(orgs)} organizations; "
            f"at most {MAX_PARTICIPATING_ORGS} are supported"
        )

    if len(orgs) == 2:
        endorsers = frozenset((orgs[0], orgs[1]))
    else:
        endorsers = frozenset((orgs[0],))

    logger.debug(f"Auction {auction.id}: endorsers {sorted(endorsers)}")
    return endorsers
