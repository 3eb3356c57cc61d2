"""
Unit tests for identity stores, the local CA and enrollment helpers.
"""

import stat

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from blindbid.core.errors import EnrollmentError
from blindbid.core.models import Credential
from blindbid.identity import (
    CertificateAuthorityClient,
    FileSystemIdentityStore,
    InMemoryIdentityStore,
    LocalCertificateAuthority,
    enroll_admin,
    register_and_enroll_user,
)


class CountingCA(CertificateAuthorityClient):
    """Wraps a CA and counts register/enroll calls."""

    def __init__(self, inner):
        self.inner = inner
        self.ca_name = inner.ca_name
        self.enroll_calls = 0
        self.register_calls = 0

    def register(self, registrar, enrollment_id, affiliation, role="client", secret=None):
        self.register_calls += 1
        return self.inner.register(registrar, enrollment_id, affiliation, role, secret)

    def enroll(self, enrollment_id, secret):
        self.enroll_calls += 1
        return self.inner.enroll(enrollment_id, secret)


@pytest.fixture
def ca():
    return CountingCA(LocalCertificateAuthority("ca.org1.example.com"))


@pytest.fixture
def store():
    return InMemoryIdentityStore()


def load_cert(credential):
    return x509.load_pem_x509_certificate(credential.certificate.encode())


# =============================================================================
# Enrollment
# =============================================================================


class TestEnrollAdmin:
    """Tests for enroll_admin."""

    def test_enrolls_once(self, ca, store):
        """Running twice contacts the CA exactly once."""
        assert enroll_admin(ca, store, "Org1MSP") is True
        assert enroll_admin(ca, store, "Org1MSP") is False
        assert ca.enroll_calls == 1
        assert store.list() == ["admin"]

    def test_credential_msp(self, ca, store):
        enroll_admin(ca, store, "Org1MSP")
        admin = store.get("admin")
        assert admin.msp_id == "Org1MSP"
        assert admin.type == "X.509"
        assert "BEGIN CERTIFICATE" in admin.certificate

    def test_wrong_secret(self, ca, store):
        with pytest.raises(EnrollmentError) as exc:
            enroll_admin(ca, store, "Org1MSP", admin_secret="wrong")
        assert exc.value.operation == "EnrollAdmin"
        assert "admin" not in store


class TestRegisterUser:
    """Tests for register_and_enroll_user."""

    def test_register_and_enroll(self, ca, store):
        enroll_admin(ca, store, "Org1MSP")
        assert register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")

        cert = load_cert(store.get("alice"))
        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "alice"
        units = [a.value for a in cert.subject.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME)]
        assert "client" in units
        assert "department1" in units
        assert cert.issuer == x509.load_pem_x509_certificate(
            ca.inner.root_certificate.encode()
        ).subject

    def test_already_stored(self, ca, store):
        enroll_admin(ca, store, "Org1MSP")
        register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")
        assert not register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")
        assert ca.register_calls == 1

    def test_missing_admin(self, ca, store):
        with pytest.raises(EnrollmentError, match="admin"):
            register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")
        assert ca.register_calls == 0

    def test_duplicate_registration(self, ca, store):
        enroll_admin(ca, store, "Org1MSP")
        register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")

        other = InMemoryIdentityStore()
        other.put("admin", store.get("admin"))
        with pytest.raises(EnrollmentError, match="already registered"):
            register_and_enroll_user(ca, other, "Org1MSP", "alice", "org1.department1")

    def test_client_cannot_register(self, ca, store):
        enroll_admin(ca, store, "Org1MSP")
        register_and_enroll_user(ca, store, "Org1MSP", "alice", "org1.department1")
        with pytest.raises(EnrollmentError, match="may not register"):
            ca.register(store.get("alice"), "eve", "org1.department1")

    def test_foreign_registrar(self, ca, store):
        other_ca = LocalCertificateAuthority("ca.org2.example.com")
        other_store = InMemoryIdentityStore()
        enroll_admin(other_ca, other_store, "Org2MSP")
        with pytest.raises(EnrollmentError, match="not issued by"):
            ca.register(other_store.get("admin"), "eve", "org1.department1")


# =============================================================================
# Persistence
# =============================================================================


class TestFileSystemStore:
    """Tests for the one-file-per-identity store."""

    def test_put_get(self, tmp_path):
        store = FileSystemIdentityStore(tmp_path / "wallet" / "org1")
        cred = Credential(certificate="CERT", private_key="KEY", msp_id="Org1MSP")
        assert store.get("alice") is None

        store.put("alice", cred)
        assert store.get("alice") == cred
        assert "alice" in store
        assert store.list() == ["alice"]

    def test_private_file_mode(self, tmp_path):
        store = FileSystemIdentityStore(tmp_path)
        store.put("alice", Credential(certificate="C", private_key="K", msp_id="Org1MSP"))
        mode = stat.S_IMODE((tmp_path / "alice.id").stat().st_mode)
        assert mode == 0o600

    def test_invalid_label(self, tmp_path):
        store = FileSystemIdentityStore(tmp_path)
        with pytest.raises(ValueError):
            store.get("../alice")

    def test_list_missing_directory(self, tmp_path):
        assert FileSystemIdentityStore(tmp_path / "nowhere").list() == []


class TestCAPersistence:
    """Tests for a CA reloaded from its state directory."""

    def test_reload(self, tmp_path):
        first = LocalCertificateAuthority("ca.org1.example.com", state_dir=tmp_path)
        store = FileSystemIdentityStore(tmp_path / "wallet")
        enroll_admin(first, store, "Org1MSP")

        second = LocalCertificateAuthority("ca.org1.example.com", state_dir=tmp_path)
        assert second.root_certificate == first.root_certificate

        # The reloaded CA still recognizes the admin it issued
        assert register_and_enroll_user(second, store, "Org1MSP", "alice", "org1.department1")
        assert "alice" in store
