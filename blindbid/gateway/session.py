"""
Session - identity-bound connection to one channel and one contract.

A Session lives for a single client invocation. It is a context manager
so the underlying gateway is released on every exit path:

    with Session.open(gateway, credential, "mychannel", "auction") as session:
        data = session.evaluate("QueryAuction", "1001")

Transaction ids are generated client-side before the proposal is sent,
so a CreateBid caller learns the bid id even though the contract keys
the private bid by it.
"""

import hashlib
import secrets
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Tuple

from blindbid.core.errors import (
    AuctionClientError,
    CommitError,
    LedgerConnectionError,
    QueryError,
)
from blindbid.core.models import Credential
from blindbid.gateway.base import LedgerGateway
from blindbid.utils.logger import get_logger

logger = get_logger("session")

NONCE_SIZE = 24


class SessionState(Enum):
    """Connection state of a session."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Session:
    """
    One identity bound to one channel/contract pair.

    Attributes:
        credential: Signing identity used for every call
        channel: Channel name
        contract_name: Contract (chaincode) name
        timeout: Per-call deadline in seconds
        state: Current connection state
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        credential: Credential,
        channel: str,
        contract_name: str,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.credential = credential
        self.channel = channel
        self.contract_name = contract_name
        self.timeout = timeout
        self.state = SessionState.CLOSED

    @classmethod
    def open(
        cls,
        gateway: LedgerGateway,
        credential: Credential,
        channel: str,
        contract_name: str,
        timeout: Optional[float] = None,
    ) -> "Session":
        """
        Connect and return an open session.

        Raises:
            LedgerConnectionError: If discovery/handshake does not complete
        """
        session = cls(gateway, credential, channel, contract_name, timeout)
        session._connect()
        return session

    def _connect(self) -> None:
        self.state = SessionState.CONNECTING
        try:
            self.gateway.connect(self.credential, self.channel, self.contract_name)
        except LedgerConnectionError:
            self.state = SessionState.CLOSED
            raise
        except Exception as e:
            self.state = SessionState.CLOSED
            raise LedgerConnectionError(
                f"Failed to connect to {self.channel}/{self.contract_name}",
                detail=str(e),
            ) from e

        self.state = SessionState.OPEN
        logger.info(
            f"Connected to {self.channel}/{self.contract_name} as {self.credential.msp_id}"
        )

    @property
    def msp_id(self) -> str:
        return self.credential.msp_id

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    def _require_open(self, tx_name: str) -> None:
        if not self.is_open:
            raise LedgerConnectionError("Session is not open", operation=tx_name)

    def new_transaction_id(self) -> str:
        """Hex SHA-256 of a random nonce followed by the creator certificate."""
        nonce = secrets.token_bytes(NONCE_SIZE)
        return hashlib.sha256(nonce + self.credential.certificate.encode("utf-8")).hexdigest()

    # =========================================================================
    # Calls
    # =========================================================================

    def evaluate(self, tx_name: str, *args: str) -> bytes:
        """
        Read-only call; no endorsement selection involved.

        Raises:
            QueryError: If the ledger rejects or the function is unknown
        """
        self._require_open(tx_name)
        logger.info(f"--> Evaluate Transaction: {tx_name}{_render_args(args)}")

        try:
            return self.gateway.evaluate(tx_name, [str(a) for a in args], self.timeout)
        except AuctionClientError as e:
            raise e.with_context(operation=tx_name)
        except Exception as e:
            raise QueryError(
                f"Evaluation of {tx_name} failed", operation=tx_name, detail=str(e)
            ) from e

    def submit(
        self,
        tx_name: str,
        args: Sequence[str],
        endorsing_orgs: Iterable[str],
        transient: Optional[Dict[str, bytes]] = None,
    ) -> Tuple[str, bytes]:
        """
        Write call endorsed by `endorsing_orgs`.

        Args:
            tx_name: Contract function
            args: Public arguments (recorded on the ledger)
            endorsing_orgs: Organizations that must endorse (non-empty)
            transient: Hidden payload routed only to the endorsers

        Returns:
            (tx_id, result bytes)

        Raises:
            CommitError: On endorsement or consensus failure
        """
        self._require_open(tx_name)

        endorsers: FrozenSet[str] = frozenset(endorsing_orgs)
        if not endorsers:
            raise CommitError("Endorsing organizations must be non-empty", operation=tx_name)

        tx_id = self.new_transaction_id()
        logger.info(
            f"--> Submit Transaction: {tx_name}{_render_args(args)} "
            f"endorsers={sorted(endorsers)}"
            + (f" transient={sorted(transient)}" if transient else "")
        )

        try:
            result = self.gateway.submit(
                tx_id,
                tx_name,
                [str(a) for a in args],
                endorsers,
                dict(transient or {}),
                self.timeout,
            )
        except AuctionClientError as e:
            raise e.with_context(operation=tx_name)
        except Exception as e:
            raise CommitError(
                f"Submission of {tx_name} failed", operation=tx_name, detail=str(e)
            ) from e

        logger.info(f"<-- Committed {tx_name} tx {tx_id[:16]}...")
        return tx_id, result

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        try:
            self.gateway.disconnect()
        finally:
            logger.info(f"Disconnected from {self.channel}/{self.contract_name}")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _render_args(args: Sequence[str]) -> str:
    return "(" + ", ".join(str(a) for a in args) + ")"
