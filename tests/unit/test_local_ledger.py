"""
Unit tests for the local ledger: contract rules, private partitions,
endorsement validation and the SQLite state backend.
"""

import hashlib
import secrets

import pytest

from blindbid.core.envelope import build_bid_envelope
from blindbid.core.errors import CommitError, LedgerConnectionError, QueryError
from blindbid.core.models import Auction, Credential, FullBid
from blindbid.gateway.contract import composite_key, implicit_collection
from blindbid.gateway.local import LocalLedgerNetwork, client_id_from_certificate
from blindbid.gateway.sqlite_adapter import LedgerStateAdapter, ReadConflictError
from blindbid.identity import InMemoryIdentityStore, LocalCertificateAuthority, enroll_admin, register_and_enroll_user


def issue(msp_id, ca_name, affiliation, users):
    ca = LocalCertificateAuthority(ca_name)
    store = InMemoryIdentityStore()
    enroll_admin(ca, store, msp_id)
    for user in users:
        register_and_enroll_user(ca, store, msp_id, user, affiliation)
    return store


@pytest.fixture(scope="module")
def org1():
    return issue("Org1MSP", "ca.org1.example.com", "org1.department1", ["seller", "alice", "carol"])


@pytest.fixture(scope="module")
def org2():
    return issue("Org2MSP", "ca.org2.example.com", "org2.department1", ["bob"])


@pytest.fixture
def network():
    return LocalLedgerNetwork()


def tx_id():
    return secrets.token_hex(32)


class Client:
    """Direct network access for one identity."""

    def __init__(self, network, credential):
        self.network = network
        self.identity = network.admit(credential, network.channel, network.contract_name)
        self.msp_id = credential.msp_id

    def evaluate(self, name, *args):
        return self.network.evaluate(self.identity, name, list(args))

    def submit(self, name, args, endorsers, transient=None, tid=None):
        tid = tid or tx_id()
        self.network.submit(self.identity, tid, name, list(args), frozenset(endorsers), transient or {})
        return tid

    def bid(self, auction_id, price):
        envelope = build_bid_envelope(price, self.msp_id, self.identity.client_id)
        return self.submit("CreateBid", [auction_id], {self.msp_id}, envelope), envelope

    def auction(self, auction_id):
        return Auction.model_validate_json(self.evaluate("QueryAuction", auction_id))


@pytest.fixture
def seller(network, org1):
    return Client(network, org1.get("seller"))


@pytest.fixture
def alice(network, org1):
    return Client(network, org1.get("alice"))


@pytest.fixture
def bob(network, org2):
    return Client(network, org2.get("bob"))


# =============================================================================
# Handshake
# =============================================================================


class TestAdmit:
    """Tests for channel admission."""

    def test_client_id_format(self, org1):
        client_id = client_id_from_certificate(org1.get("alice").certificate)
        assert client_id.startswith("x509::")
        assert "CN=alice" in client_id
        assert client_id.endswith("::CN=ca.org1.example.com")

    def test_wrong_channel(self, network, org1):
        with pytest.raises(LedgerConnectionError, match="not found"):
            network.admit(org1.get("alice"), "otherchannel", "auction-chaincode")

    def test_wrong_contract(self, network, org1):
        with pytest.raises(LedgerConnectionError, match="not installed"):
            network.admit(org1.get("alice"), "mychannel", "basic")

    def test_non_member(self, network, org1):
        cred = org1.get("alice")
        outsider = Credential(certificate=cred.certificate, private_key=cred.private_key, msp_id="Org3MSP")
        with pytest.raises(LedgerConnectionError, match="not a member"):
            network.admit(outsider, "mychannel", "auction-chaincode")

    def test_bad_certificate(self, network):
        cred = Credential(certificate="not a pem", private_key="", msp_id="Org1MSP")
        with pytest.raises(LedgerConnectionError):
            network.admit(cred, "mychannel", "auction-chaincode")


# =============================================================================
# Contract
# =============================================================================


class TestContract:
    """Tests for the auction contract rules."""

    def test_create_auction(self, seller):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        auction = seller.auction("1001")
        assert auction.seller == seller.identity.client_id
        assert auction.organizations == []
        assert auction.is_open

    def test_duplicate_auction(self, seller):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        with pytest.raises(CommitError, match="already exists"):
            seller.submit("CreateAuction", ["1001", "lamp"], {"Org1MSP"})

    def test_query_missing_auction(self, seller):
        with pytest.raises(QueryError, match="does not exist"):
            seller.evaluate("QueryAuction", "404")

    def test_evaluate_write_rejected(self, seller):
        with pytest.raises(QueryError):
            seller.evaluate("CreateAuction", "1001", "vase")

    def test_wrong_arity(self, seller):
        with pytest.raises(QueryError, match="Incorrect number of arguments"):
            seller.evaluate("QueryAuction")

    def test_unknown_function(self, seller):
        with pytest.raises(QueryError, match="not found"):
            seller.evaluate("DeleteAuction", "1001")

    def test_bid_keyed_by_tx_id(self, network, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, envelope = alice.bid("1001", 500)

        stored = alice.evaluate("QueryBid", "1001", bid_id)
        assert stored == envelope["bid"]
        key = composite_key("bid", "1001", bid_id)
        assert network.adapter.get_private_hash(implicit_collection("Org1MSP"), key) == (
            hashlib.sha256(envelope["bid"]).digest()
        )

    def test_create_bid_requires_own_endorsement(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        envelope = build_bid_envelope(500, "Org1MSP", alice.identity.client_id)
        with pytest.raises(CommitError, match="must endorse"):
            alice.submit("CreateBid", ["1001"], {"Org2MSP"}, envelope)

    def test_create_bid_for_other_identity(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        envelope = build_bid_envelope(500, "Org1MSP", seller.identity.client_id)
        with pytest.raises(CommitError, match="submitting identity"):
            alice.submit("CreateBid", ["1001"], {"Org1MSP"}, envelope)

    def test_create_bid_without_envelope(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        with pytest.raises(CommitError, match="transient"):
            alice.submit("CreateBid", ["1001"], {"Org1MSP"})

    def test_other_org_cannot_read_bid(self, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, _ = alice.bid("1001", 500)
        with pytest.raises(QueryError):
            bob.evaluate("QueryBid", "1001", bid_id)

    def test_same_org_other_user_cannot_read_bid(self, network, org1, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, _ = alice.bid("1001", 500)
        carol = Client(network, org1.get("carol"))
        with pytest.raises(QueryError, match="Permission denied"):
            carol.evaluate("QueryBid", "1001", bid_id)

    def test_submit_adds_org_once(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        first, _ = alice.bid("1001", 500)
        second, _ = alice.bid("1001", 600)
        alice.submit("SubmitBid", ["1001", first], {"Org1MSP"})
        alice.submit("SubmitBid", ["1001", second], {"Org1MSP"})

        auction = alice.auction("1001")
        assert auction.organizations == ["Org1MSP"]
        assert set(auction.private_bids) == {first, second}

    def test_submit_twice_rejected(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, _ = alice.bid("1001", 500)
        alice.submit("SubmitBid", ["1001", bid_id], {"Org1MSP"})
        with pytest.raises(CommitError, match="already been submitted"):
            alice.submit("SubmitBid", ["1001", bid_id], {"Org1MSP"})

    def test_reveal_hash_mismatch(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, _ = alice.bid("1001", 500)
        alice.submit("SubmitBid", ["1001", bid_id], {"Org1MSP"})

        forged = build_bid_envelope(5000, "Org1MSP", alice.identity.client_id)
        with pytest.raises(CommitError, match="does not match"):
            alice.submit("RevealBid", ["1001", bid_id], {"Org1MSP"}, forged)

    def test_reveal_unsubmitted(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, envelope = alice.bid("1001", 500)
        with pytest.raises(CommitError, match="has not been submitted"):
            alice.submit("RevealBid", ["1001", bid_id], {"Org1MSP"}, envelope)

    def test_end_by_non_seller(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        with pytest.raises(CommitError, match="Only the seller"):
            alice.submit("EndAuction", ["1001"], {"Org1MSP"})

    def test_end_without_bids(self, seller):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        seller.submit("EndAuction", ["1001"], {"Org1MSP"})
        auction = seller.auction("1001")
        assert not auction.is_open
        assert auction.winner == ""
        assert auction.price == 0

    def test_bid_on_closed_auction(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        seller.submit("EndAuction", ["1001"], {"Org1MSP"})
        with pytest.raises(CommitError, match="closed"):
            alice.bid("1001", 500)

    def test_unrevealed_higher_bid_does_not_block_end(self, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        low, low_envelope = alice.bid("1001", 500)
        high, _ = bob.bid("1001", 900)
        alice.submit("SubmitBid", ["1001", low], {"Org1MSP"})
        bob.submit("SubmitBid", ["1001", high], {"Org1MSP", "Org2MSP"})
        alice.submit("RevealBid", ["1001", low], {"Org1MSP", "Org2MSP"}, low_envelope)

        seller.submit("EndAuction", ["1001"], {"Org1MSP", "Org2MSP"})

        auction = seller.auction("1001")
        assert not auction.is_open
        assert auction.winner == alice.identity.client_id
        assert auction.price == 500
        assert high in auction.private_bids
        assert high not in auction.revealed_bids


# =============================================================================
# Endorsement Validation
# =============================================================================


class TestEndorsementValidation:
    """Tests for per-key endorsement policies."""

    def test_unknown_endorser(self, seller):
        with pytest.raises(CommitError, match="not on channel"):
            seller.submit("CreateAuction", ["1001", "vase"], {"Org9MSP"})

    def test_policy_follows_organizations(self, network, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        a, _ = alice.bid("1001", 500)
        alice.submit("SubmitBid", ["1001", a], {"Org1MSP"})
        assert network.adapter.get_validation_param("1001") == ["Org1MSP"]

        # Org2 may not change an auction Org1 participates in on its own
        b, _ = bob.bid("1001", 700)
        with pytest.raises(CommitError, match="missing endorsement from Org1MSP"):
            bob.submit("SubmitBid", ["1001", b], {"Org2MSP"})

        bob.submit("SubmitBid", ["1001", b], {"Org1MSP"})
        assert network.adapter.get_validation_param("1001") == ["Org1MSP", "Org2MSP"]

        with pytest.raises(CommitError, match="Org2MSP"):
            seller.submit("EndAuction", ["1001"], {"Org1MSP"})
        seller.submit("EndAuction", ["1001"], {"Org1MSP", "Org2MSP"})

        auction = seller.auction("1001")
        assert not auction.is_open

    def test_rejected_write_not_applied(self, network, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        a, _ = alice.bid("1001", 500)
        alice.submit("SubmitBid", ["1001", a], {"Org1MSP"})
        before = seller.auction("1001")

        b, _ = bob.bid("1001", 700)
        with pytest.raises(CommitError):
            bob.submit("SubmitBid", ["1001", b], {"Org2MSP"})
        assert seller.auction("1001") == before

    def test_duplicate_tx_id(self, seller):
        tid = tx_id()
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"}, tid=tid)
        with pytest.raises(CommitError, match="Duplicate transaction"):
            seller.submit("CreateAuction", ["1002", "lamp"], {"Org1MSP"}, tid=tid)


# =============================================================================
# State Backend
# =============================================================================


class TestLedgerState:
    """Tests for the transaction log and persistence."""

    def test_log_has_no_transient_data(self, network, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, envelope = alice.bid("1001", 48213)

        log = network.transaction_log()
        assert [entry["function"] for entry in log] == ["CreateAuction", "CreateBid"]
        assert log[1]["args"] == ["1001"]
        assert log[1]["tx_id"] == bid_id
        assert log[1]["endorsers"] == ["Org1MSP"]
        for value in network.public_state():
            assert envelope["bid"] not in value
            assert alice.identity.client_id.encode() not in value

    def test_persistence(self, tmp_path, org1):
        first = LocalLedgerNetwork(data_dir=tmp_path)
        Client(first, org1.get("seller")).submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        first.adapter.close()

        second = LocalLedgerNetwork(data_dir=tmp_path)
        auction = Client(second, org1.get("seller")).auction("1001")
        assert auction.item == "vase"
        assert len(second.transaction_log()) == 1

    def test_private_record_parses(self, seller, alice):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        bid_id, _ = alice.bid("1001", 0)
        record = FullBid.model_validate_json(alice.evaluate("QueryBid", "1001", bid_id))
        assert record.price == 0
        assert record.org == "Org1MSP"


# =============================================================================
# Concurrent Commits
# =============================================================================


BOTH = frozenset({"Org1MSP", "Org2MSP"})


class TestReadConflicts:
    """Tests for commits whose simulated reads went stale."""

    @pytest.fixture
    def shared_auction(self, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        a, _ = alice.bid("1001", 500)
        b, _ = bob.bid("1001", 700)
        alice.submit("SubmitBid", ["1001", a], {"Org1MSP"})
        bob.submit("SubmitBid", ["1001", b], BOTH)
        return a, b

    def test_interleaved_submit_bids(self, network, shared_auction, seller, alice, bob):
        second_a, _ = alice.bid("1001", 550)
        second_b, _ = bob.bid("1001", 750)

        # Alice's proposal is simulated, then Bob commits before it
        proposal = network.endorse(alice.identity, tx_id(), "SubmitBid", ["1001", second_a], BOTH, {})
        bob.submit("SubmitBid", ["1001", second_b], BOTH)

        with pytest.raises(CommitError, match="Read conflict on SubmitBid"):
            network.commit(proposal)

        auction = seller.auction("1001")
        assert second_b in auction.private_bids
        assert second_a not in auction.private_bids
        assert proposal.tx_id not in [entry["tx_id"] for entry in network.transaction_log()]

        # A fresh simulation sees Bob's bid and commits
        alice.submit("SubmitBid", ["1001", second_a], BOTH)
        auction = seller.auction("1001")
        assert set(auction.private_bids) == {*shared_auction, second_a, second_b}

    def test_interleaved_reveals(self, network, seller, alice, bob):
        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        a, a_envelope = alice.bid("1001", 500)
        b, b_envelope = bob.bid("1001", 700)
        alice.submit("SubmitBid", ["1001", a], {"Org1MSP"})
        bob.submit("SubmitBid", ["1001", b], BOTH)

        proposal = network.endorse(alice.identity, tx_id(), "RevealBid", ["1001", a], BOTH, a_envelope)
        bob.submit("RevealBid", ["1001", b], BOTH, b_envelope)

        with pytest.raises(CommitError, match="Read conflict"):
            network.commit(proposal)
        assert set(seller.auction("1001").revealed_bids) == {b}

    def test_interleaved_create_auctions(self, network, seller, org1):
        other = Client(network, org1.get("carol"))
        first = network.endorse(seller.identity, tx_id(), "CreateAuction", ["1001", "vase"], {"Org1MSP"}, {})
        other.submit("CreateAuction", ["1001", "lamp"], {"Org1MSP"})

        with pytest.raises(CommitError, match="Read conflict"):
            network.commit(first)
        auction = seller.auction("1001")
        assert auction.item == "lamp"
        assert auction.seller == other.identity.client_id

    def test_unrelated_commit_does_not_conflict(self, network, shared_auction, seller, alice):
        second_a, _ = alice.bid("1001", 550)
        proposal = network.endorse(alice.identity, tx_id(), "SubmitBid", ["1001", second_a], BOTH, {})
        seller.submit("CreateAuction", ["1002", "lamp"], {"Org1MSP"})

        network.commit(proposal)
        assert second_a in seller.auction("1001").private_bids

    def test_separate_processes(self, tmp_path, org1, org2):
        first = LocalLedgerNetwork(data_dir=tmp_path)
        second = LocalLedgerNetwork(data_dir=tmp_path)
        seller = Client(first, org1.get("seller"))
        alice = Client(first, org1.get("alice"))
        bob = Client(second, org2.get("bob"))

        seller.submit("CreateAuction", ["1001", "vase"], {"Org1MSP"})
        a, _ = alice.bid("1001", 500)
        b, _ = bob.bid("1001", 700)

        proposal = first.endorse(alice.identity, tx_id(), "SubmitBid", ["1001", a], {"Org1MSP"}, {})
        bob.submit("SubmitBid", ["1001", b], {"Org1MSP"})

        with pytest.raises(CommitError, match="Read conflict"):
            first.commit(proposal)
        assert set(seller.auction("1001").private_bids) == {b}

        first.adapter.close()
        second.adapter.close()

    def test_adapter_version_check(self):
        adapter = LedgerStateAdapter()
        assert adapter.get_versioned_state("k") == (None, 0)

        def write(tid, value, read_versions):
            adapter.commit_write_set(
                tx_id=tid, function="Put", args=[], creator="Org1MSP", endorsers=["Org1MSP"],
                public_writes={"k": value}, private_writes={}, param_writes={},
                read_versions=read_versions,
            )

        write("t1", b"a", {"k": 0})
        write("t2", b"b", {"k": 1})
        assert adapter.get_versioned_state("k") == (b"b", 2)

        with pytest.raises(ReadConflictError) as exc:
            write("t3", b"c", {"k": 1})
        assert exc.value.expected == 1
        assert exc.value.found == 2
        assert adapter.get_versioned_state("k") == (b"b", 2)
        assert not adapter.has_transaction("t3")
