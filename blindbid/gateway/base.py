"""
Ledger gateway interface.

A gateway is the transport a Session drives: it authenticates one
identity against one channel/contract pair and carries evaluate and
submit calls to the ledger. Implementations raise the client error
taxonomy (LedgerConnectionError, QueryError, CommitError).
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional, Sequence

from blindbid.core.models import Credential


class LedgerGateway(ABC):
    """Transport for one identity-bound connection."""

    @abstractmethod
    def connect(self, credential: Credential, channel: str, contract_name: str) -> None:
        """
        Complete discovery and handshake.

        Raises:
            LedgerConnectionError: If the handshake does not complete
        """

    @abstractmethod
    def evaluate(self, tx_name: str, args: Sequence[str], timeout: Optional[float] = None) -> bytes:
        """
        Run a read-only contract function on the client's own peer.

        Raises:
            QueryError: If the ledger or contract rejects the call
        """

    @abstractmethod
    def submit(
        self,
        tx_id: str,
        tx_name: str,
        args: Sequence[str],
        endorsing_orgs: FrozenSet[str],
        transient: Dict[str, bytes],
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Endorse, order and commit a transaction.

        Raises:
            CommitError: On endorsement, validation or consensus failure
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Release the connection. Must tolerate repeated calls."""
