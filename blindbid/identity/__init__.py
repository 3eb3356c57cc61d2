"""
Identity Module.

- Identity stores (in-memory, one-file-per-identity)
- Certificate authority client interface and a local CA
- Idempotent admin/user enrollment
"""

from blindbid.identity.store import (
    IdentityStore,
    InMemoryIdentityStore,
    FileSystemIdentityStore,
)
from blindbid.identity.ca import (
    Enrollment,
    CertificateAuthorityClient,
    LocalCertificateAuthority,
)
from blindbid.identity.enrollment import (
    enroll_admin,
    register_and_enroll_user,
    ADMIN_ID,
    ADMIN_SECRET,
)

__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "FileSystemIdentityStore",
    "Enrollment",
    "CertificateAuthorityClient",
    "LocalCertificateAuthority",
    "enroll_admin",
    "register_and_enroll_user",
    "ADMIN_ID",
    "ADMIN_SECRET",
]
