"""
Local Ledger - single-process simulation of the auction channel.

Conceptual Background:
---------------------
A production ledger executes a proposal on the endorsing peers, collects
their signatures, orders the transaction and validates it before
commit. The local ledger keeps the parts that matter to the auction
client:

1. **Simulation**: the contract runs against a stub; reads see committed
   state plus the proposal's own writes, writes are buffered. The stub
   records the version of every public key it reads.
2. **Private partitions**: one implicit collection per organization.
   Values are readable only by members of that organization; their
   SHA-256 hashes are readable by everyone.
3. **Endorsement validation**: every public key written must be endorsed
   by all organizations of its validation parameter (the auction's
   participant list). Keys without one fall back to the channel default:
   any single member. Private writes need their own organization.
4. **Commit**: the write set and a transaction log entry (function and
   public arguments, never transient data) are applied atomically, and
   only if no public key the simulation read has been written since.

Evaluate runs the simulation and discards the write set.
"""

import hashlib
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from cryptography import x509
from pydantic import ValidationError

from blindbid.core.errors import CommitError, LedgerConnectionError, QueryError
from blindbid.core.models import Credential
from blindbid.gateway.base import LedgerGateway
from blindbid.gateway.contract import AuctionContract, ContractError, implicit_collection
from blindbid.gateway.sqlite_adapter import LedgerStateAdapter, ReadConflictError
from blindbid.utils.logger import get_logger

logger = get_logger("ledger")


# =============================================================================
# Identities
# =============================================================================


@dataclass(frozen=True)
class ClientIdentity:
    """Identity admitted to the channel."""
    msp_id: str
    client_id: str  # x509::<subject>::<issuer>


def client_id_from_certificate(certificate_pem: str) -> str:
    """
    Ledger identity string of a certificate.

    Raises:
        ValueError: If the PEM cannot be parsed
    """
    cert = x509.load_pem_x509_certificate(certificate_pem.encode("utf-8"))
    return f"x509::{cert.subject.rfc4514_string()}::{cert.issuer.rfc4514_string()}"


# =============================================================================
# Simulation
# =============================================================================


class LedgerStub:
    """State access for one proposal simulation."""

    def __init__(self, adapter: LedgerStateAdapter, peer_msp: str):
        self._adapter = adapter
        self.peer_msp = peer_msp
        self.public_writes: Dict[str, bytes] = {}
        self.read_versions: Dict[str, int] = {}
        self.private_writes: Dict[Tuple[str, str], Tuple[bytes, bytes]] = {}
        self.param_writes: Dict[str, List[str]] = {}

    def get_state(self, key: str) -> Optional[bytes]:
        if key in self.public_writes:
            return self.public_writes[key]
        value, version = self._adapter.get_versioned_state(key)
        self.read_versions.setdefault(key, version)
        return value

    def put_state(self, key: str, value: bytes) -> None:
        self.public_writes[key] = value

    def get_private_data(self, collection: str, key: str) -> Optional[bytes]:
        if collection != implicit_collection(self.peer_msp):
            raise ContractError(
                f"Peer of {self.peer_msp} is not a member of collection {collection}"
            )
        if (collection, key) in self.private_writes:
            return self.private_writes[(collection, key)][0]
        return self._adapter.get_private(collection, key)

    def get_private_data_hash(self, collection: str, key: str) -> Optional[bytes]:
        if (collection, key) in self.private_writes:
            return self.private_writes[(collection, key)][1]
        return self._adapter.get_private_hash(collection, key)

    def put_private_data(self, collection: str, key: str, value: bytes) -> None:
        self.private_writes[(collection, key)] = (value, hashlib.sha256(value).digest())

    def set_state_validation_parameter(self, key: str, orgs: List[str]) -> None:
        self.param_writes[key] = list(orgs)


@dataclass
class TransactionContext:
    """What a contract function sees of its caller and proposal."""
    stub: LedgerStub
    client_msp: str
    client_id: str
    tx_id: str = ""
    endorsing_orgs: FrozenSet[str] = frozenset()
    transient: Dict[str, bytes] = field(default_factory=dict)


@dataclass
class EndorsedProposal:
    """A simulated proposal waiting to be committed."""
    tx_id: str
    tx_name: str
    args: List[str]
    creator: str
    endorsing_orgs: FrozenSet[str]
    stub: LedgerStub
    result: bytes


# =============================================================================
# Network
# =============================================================================


class LocalLedgerNetwork:
    """
    One channel with the auction contract installed.

    Attributes:
        channel: Channel name
        contract_name: Name the contract is installed under
        members: MSP ids of the channel's organizations
        adapter: SQLite state backend
    """

    def __init__(
        self,
        channel: str = "mychannel",
        members: Iterable[str] = ("Org1MSP", "Org2MSP"),
        contract_name: str = "auction-chaincode",
        data_dir: Optional[Path] = None,
        db_name: str = "ledger.db",
    ):
        """
        Initialize the network.

        Args:
            channel: Channel name
            members: Member organization MSP ids
            contract_name: Contract name
            data_dir: Directory for the SQLite file. None = in-memory only.
            db_name: SQLite file name
        """
        self.channel = channel
        self.contract_name = contract_name
        self.members: Tuple[str, ...] = tuple(members)
        self.contract = AuctionContract()

        db_path = Path(data_dir) / db_name if data_dir is not None else None
        self.adapter = LedgerStateAdapter(db_path)

        logger.info(
            f"Local ledger {channel}/{contract_name} ready "
            f"({', '.join(self.members)}; {db_path or 'in-memory'})"
        )

    def gateway(self) -> "LocalLedgerGateway":
        """New gateway onto this network."""
        return LocalLedgerGateway(self)

    # =========================================================================
    # Handshake
    # =========================================================================

    def admit(self, credential: Credential, channel: str, contract_name: str) -> ClientIdentity:
        """
        Authenticate a credential for channel/contract.

        Raises:
            LedgerConnectionError: If any part of the handshake fails
        """
        if channel != self.channel:
            raise LedgerConnectionError(f"Channel {channel} not found")
        if contract_name != self.contract_name:
            raise LedgerConnectionError(
                f"Contract {contract_name} is not installed on {channel}"
            )
        if credential.msp_id not in self.members:
            raise LedgerConnectionError(
                f"Organization {credential.msp_id} is not a member of {channel}"
            )
        try:
            client_id = client_id_from_certificate(credential.certificate)
        except ValueError as e:
            raise LedgerConnectionError("Invalid identity certificate", detail=str(e)) from e

        return ClientIdentity(msp_id=credential.msp_id, client_id=client_id)

    # =========================================================================
    # Calls
    # =========================================================================

    def evaluate(self, identity: ClientIdentity, tx_name: str, args: Sequence[str]) -> bytes:
        """
        Simulate on the caller's own peer and return the result.

        Raises:
            QueryError: If the contract rejects the call or the function is
                not read-only
        """
        entry = self.contract.functions.get(tx_name)
        if entry is not None and not entry[1]:
            raise QueryError(f"{tx_name} is a write and cannot be evaluated")

        ctx = TransactionContext(
            stub=LedgerStub(self.adapter, peer_msp=identity.msp_id),
            client_msp=identity.msp_id,
            client_id=identity.client_id,
        )
        try:
            return self.contract.invoke(ctx, tx_name, args)
        except (ContractError, ValidationError) as e:
            raise QueryError(str(e)) from e

    def submit(
        self,
        identity: ClientIdentity,
        tx_id: str,
        tx_name: str,
        args: Sequence[str],
        endorsing_orgs: FrozenSet[str],
        transient: Dict[str, bytes],
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Endorse, validate and commit a transaction.

        Raises:
            CommitError: On contract rejection, endorsement policy
                failure, read conflict, duplicate transaction id or
                commit timeout
        """
        proposal = self.endorse(identity, tx_id, tx_name, args, endorsing_orgs, transient)
        return self.commit(proposal, timeout=timeout)

    def endorse(
        self,
        identity: ClientIdentity,
        tx_id: str,
        tx_name: str,
        args: Sequence[str],
        endorsing_orgs: FrozenSet[str],
        transient: Dict[str, bytes],
    ) -> EndorsedProposal:
        """
        Simulate the proposal and return it ready for commit.

        Raises:
            CommitError: If an endorser is unknown or the contract rejects
                the proposal
        """
        unknown = sorted(set(endorsing_orgs) - set(self.members))
        if unknown:
            raise CommitError(f"Endorsing organizations not on channel: {unknown}")
        if not endorsing_orgs:
            raise CommitError("No endorsing organizations")

        # Simulate on the client's own peer when it endorses
        if identity.msp_id in endorsing_orgs:
            peer_msp = identity.msp_id
        else:
            peer_msp = sorted(endorsing_orgs)[0]
        stub = LedgerStub(self.adapter, peer_msp=peer_msp)
        ctx = TransactionContext(
            stub=stub,
            client_msp=identity.msp_id,
            client_id=identity.client_id,
            tx_id=tx_id,
            endorsing_orgs=frozenset(endorsing_orgs),
            transient=dict(transient),
        )

        try:
            result = self.contract.invoke(ctx, tx_name, args)
        except (ContractError, ValidationError) as e:
            raise CommitError(f"Endorsement of {tx_name} failed: {e}") from e

        return EndorsedProposal(
            tx_id=tx_id,
            tx_name=tx_name,
            args=list(args),
            creator=identity.msp_id,
            endorsing_orgs=frozenset(endorsing_orgs),
            stub=stub,
            result=result,
        )

    def commit(self, proposal: EndorsedProposal, timeout: Optional[float] = None) -> bytes:
        """
        Validate an endorsed proposal and apply its write set.

        Raises:
            CommitError: On endorsement policy failure, read conflict,
                duplicate transaction id or commit timeout
        """
        stub = proposal.stub
        self._validate_endorsement(stub, proposal.endorsing_orgs)

        if self.adapter.has_transaction(proposal.tx_id):
            raise CommitError(f"Duplicate transaction id {proposal.tx_id}")

        try:
            self.adapter.commit_write_set(
                tx_id=proposal.tx_id,
                function=proposal.tx_name,
                args=proposal.args,
                creator=proposal.creator,
                endorsers=proposal.endorsing_orgs,
                public_writes=stub.public_writes,
                private_writes=stub.private_writes,
                param_writes=stub.param_writes,
                read_versions=stub.read_versions,
                busy_timeout=timeout,
            )
        except ReadConflictError as e:
            logger.warning(f"Rejected {proposal.tx_name} tx {proposal.tx_id[:12]}...: {e}")
            raise CommitError(
                f"Read conflict on {proposal.tx_name}: state changed after endorsement",
                detail=str(e),
            ) from e
        except sqlite3.IntegrityError as e:
            raise CommitError(f"Duplicate transaction id {proposal.tx_id}") from e
        except sqlite3.OperationalError as e:
            raise CommitError(f"Commit of {proposal.tx_name} timed out", detail=str(e)) from e

        return proposal.result

    def _validate_endorsement(self, stub: LedgerStub, endorsing_orgs: FrozenSet[str]) -> None:
        """Check every written key against its endorsement policy."""
        endorsers = set(endorsing_orgs)

        for key in stub.public_writes:
            policy = self.adapter.get_validation_param(key)
            if policy is None:
                # Channel default: any single member
                continue
            missing = sorted(set(policy) - endorsers)
            if missing:
                raise CommitError(
                    "Endorsement policy failure: missing endorsement from "
                    f"{', '.join(missing)}",
                    detail=f"required={sorted(policy)} provided={sorted(endorsers)}",
                )

        for collection, _ in stub.private_writes:
            owner = collection[len(implicit_collection("")):]
            if owner not in endorsers:
                raise CommitError(
                    f"Endorsement policy failure: {collection} requires {owner}"
                )

    # =========================================================================
    # Inspection
    # =========================================================================

    def transaction_log(self) -> List[Dict]:
        """Committed transactions with their public arguments."""
        return self.adapter.get_transactions()

    def public_state(self) -> List[bytes]:
        """Every value in public world state."""
        return self.adapter.get_public_values()


class LocalLedgerGateway(LedgerGateway):
    """Gateway onto a LocalLedgerNetwork."""

    def __init__(self, network: LocalLedgerNetwork):
        self.network = network
        self.identity: Optional[ClientIdentity] = None

    def connect(self, credential: Credential, channel: str, contract_name: str) -> None:
        self.identity = self.network.admit(credential, channel, contract_name)

    def _require_identity(self, error_cls, tx_name: str) -> ClientIdentity:
        if self.identity is None:
            raise error_cls("Gateway is not connected", operation=tx_name)
        return self.identity

    def evaluate(self, tx_name: str, args: Sequence[str], timeout: Optional[float] = None) -> bytes:
        identity = self._require_identity(QueryError, tx_name)
        started = time.monotonic()
        result = self.network.evaluate(identity, tx_name, args)
        if timeout is not None and time.monotonic() - started > timeout:
            raise QueryError(f"Evaluation of {tx_name} exceeded {timeout}s", operation=tx_name)
        return result

    def submit(
        self,
        tx_id: str,
        tx_name: str,
        args: Sequence[str],
        endorsing_orgs: FrozenSet[str],
        transient: Dict[str, bytes],
        timeout: Optional[float] = None,
    ) -> bytes:
        identity = self._require_identity(CommitError, tx_name)
        return self.network.submit(
            identity, tx_id, tx_name, args, endorsing_orgs, transient, timeout
        )

    def disconnect(self) -> None:
        self.identity = None
