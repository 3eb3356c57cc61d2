"""
Certificate authority clients.

The enrollment helpers only need two CA operations:

    register(registrar, enrollment_id, affiliation, role) -> secret
    enroll(enrollment_id, secret) -> Enrollment

LocalCertificateAuthority implements them for one organization with an
EC P-256 root held on disk (or in memory). Key generation, signing and
verification are delegated to the `cryptography` library.

State layout (state_dir):
    ca-key.pem     root private key
    ca-cert.pem    self-signed root certificate
    registry.json  registered identities (secrets stored as SHA-256)
"""

import datetime
import hashlib
import hmac
import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from blindbid.core.errors import EnrollmentError
from blindbid.core.models import Credential
from blindbid.utils.logger import get_logger

logger = get_logger("identity.ca")

ROOT_VALIDITY_DAYS = 3650
CERT_VALIDITY_DAYS = 365
CLOCK_SKEW = datetime.timedelta(minutes=5)


@dataclass(frozen=True)
class Enrollment:
    """Result of a successful enroll: PEM certificate and PKCS#8 key."""
    certificate: str
    private_key: str

    def to_credential(self, msp_id: str) -> Credential:
        return Credential(
            certificate=self.certificate,
            private_key=self.private_key,
            msp_id=msp_id,
        )


class CertificateAuthorityClient(ABC):
    """Register/enroll interface of an organization's CA."""

    ca_name: str

    @abstractmethod
    def register(
        self,
        registrar: Credential,
        enrollment_id: str,
        affiliation: str,
        role: str = "client",
        secret: Optional[str] = None,
    ) -> str:
        """
        Register a new identity and return its enrollment secret.

        Raises:
            EnrollmentError: If the registrar is not authorized or the
                identity already exists
        """

    @abstractmethod
    def enroll(self, enrollment_id: str, secret: str) -> Enrollment:
        """
        Issue a certificate for a registered identity.

        Raises:
            EnrollmentError: If the identity is unknown or the secret is wrong
        """


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _pem_key(key: ec.EllipticCurvePrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def _pem_cert(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


class LocalCertificateAuthority(CertificateAuthorityClient):
    """
    Single-organization CA.

    Attributes:
        ca_name: CA host name, used as the root's common name
        state_dir: Persistence directory. None = in-memory only.
    """

    def __init__(
        self,
        ca_name: str,
        state_dir: Optional[Path] = None,
        bootstrap_id: str = "admin",
        bootstrap_secret: str = "adminpw",
    ):
        self.ca_name = ca_name
        self.state_dir = Path(state_dir) if state_dir is not None else None
        self._registry: Dict[str, Dict] = {}

        if self.state_dir is not None and (self.state_dir / "ca-cert.pem").exists():
            self._load()
        else:
            self._create_root()
            self._registry[bootstrap_id] = {
                "secret_hash": _hash_secret(bootstrap_secret),
                "role": "admin",
                "affiliation": "",
                "enrollments": 0,
            }
            self._save()
            logger.info(f"Created CA {ca_name}")

    # =========================================================================
    # Persistence
    # =========================================================================

    def _create_root(self) -> None:
        self._ca_key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, self.ca_name)])
        now = datetime.datetime.now(datetime.timezone.utc)
        self._ca_cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self._ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - CLOCK_SKEW)
            .not_valid_after(now + datetime.timedelta(days=ROOT_VALIDITY_DAYS))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self._ca_key, hashes.SHA256())
        )

    def _load(self) -> None:
        key_pem = (self.state_dir / "ca-key.pem").read_bytes()
        self._ca_key = serialization.load_pem_private_key(key_pem, password=None)
        self._ca_cert = x509.load_pem_x509_certificate(
            (self.state_dir / "ca-cert.pem").read_bytes()
        )
        self._registry = json.loads((self.state_dir / "registry.json").read_text(encoding="utf-8"))
        logger.debug(f"Loaded CA {self.ca_name} from {self.state_dir}")

    def _save(self) -> None:
        if self.state_dir is None:
            return
        self.state_dir.mkdir(parents=True, exist_ok=True)
        key_path = self.state_dir / "ca-key.pem"
        key_path.write_text(_pem_key(self._ca_key), encoding="ascii")
        key_path.chmod(0o600)
        (self.state_dir / "ca-cert.pem").write_text(_pem_cert(self._ca_cert), encoding="ascii")
        (self.state_dir / "registry.json").write_text(
            json.dumps(self._registry, indent=2), encoding="utf-8"
        )

    @property
    def root_certificate(self) -> str:
        return _pem_cert(self._ca_cert)

    # =========================================================================
    # CA operations
    # =========================================================================

    def _registrar_id(self, registrar: Credential) -> str:
        """Common name of a registrar certificate issued by this CA."""
        try:
            cert = x509.load_pem_x509_certificate(registrar.certificate.encode("utf-8"))
        except ValueError as e:
            raise EnrollmentError("Registrar certificate is not valid PEM", detail=str(e)) from e

        if cert.issuer != self._ca_cert.subject:
            raise EnrollmentError(f"Registrar certificate was not issued by {self.ca_name}")
        try:
            self._ca_cert.public_key().verify(
                cert.signature,
                cert.tbs_certificate_bytes,
                ec.ECDSA(cert.signature_hash_algorithm),
            )
        except InvalidSignature as e:
            raise EnrollmentError("Registrar certificate signature is invalid") from e

        names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not names:
            raise EnrollmentError("Registrar certificate has no common name")
        return names[0].value

    def register(
        self,
        registrar: Credential,
        enrollment_id: str,
        affiliation: str,
        role: str = "client",
        secret: Optional[str] = None,
    ) -> str:
        registrar_id = self._registrar_id(registrar)
        entry = self._registry.get(registrar_id)
        if entry is None or entry["role"] != "admin":
            raise EnrollmentError(f"Identity {registrar_id} may not register identities")
        if enrollment_id in self._registry:
            raise EnrollmentError(f"Identity {enrollment_id} is already registered")

        secret = secret or secrets.token_urlsafe(12)
        self._registry[enrollment_id] = {
            "secret_hash": _hash_secret(secret),
            "role": role,
            "affiliation": affiliation,
            "enrollments": 0,
        }
        self._save()

        logger.info(f"Registered {enrollment_id} ({role}, {affiliation}) with {self.ca_name}")
        return secret

    def enroll(self, enrollment_id: str, secret: str) -> Enrollment:
        entry = self._registry.get(enrollment_id)
        if entry is None:
            raise EnrollmentError(f"Identity {enrollment_id} is not registered")
        if not hmac.compare_digest(entry["secret_hash"], _hash_secret(secret)):
            raise EnrollmentError(f"Authentication failure for {enrollment_id}")

        key = ec.generate_private_key(ec.SECP256R1())
        attributes = [x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, entry["role"])]
        for part in filter(None, entry["affiliation"].split(".")):
            attributes.append(x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, part))
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, enrollment_id))

        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name(attributes))
            .issuer_name(self._ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - CLOCK_SKEW)
            .not_valid_after(now + datetime.timedelta(days=CERT_VALIDITY_DAYS))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(self._ca_key, hashes.SHA256())
        )

        entry["enrollments"] += 1
        self._save()

        logger.info(f"Enrolled {enrollment_id} with {self.ca_name}")
        return Enrollment(certificate=_pem_cert(cert), private_key=_pem_key(key))


__all__ = [
    "Enrollment",
    "CertificateAuthorityClient",
    "LocalCertificateAuthority",
]
