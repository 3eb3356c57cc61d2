"""
Identity enrollment helpers.

Both helpers consult the identity store before contacting the CA, so
running them again for an identity that is already stored does nothing.
"""

from blindbid.core.errors import AuctionClientError, EnrollmentError
from blindbid.identity.ca import CertificateAuthorityClient
from blindbid.identity.store import IdentityStore
from blindbid.utils.logger import get_logger

logger = get_logger("identity.enrollment")

ADMIN_ID = "admin"
ADMIN_SECRET = "adminpw"


def enroll_admin(
    ca: CertificateAuthorityClient,
    store: IdentityStore,
    msp_id: str,
    admin_id: str = ADMIN_ID,
    admin_secret: str = ADMIN_SECRET,
) -> bool:
    """
    Enroll the CA's administrative identity into `store`.

    Returns:
        True if an enrollment happened, False if the admin was already stored

    Raises:
        EnrollmentError: If the CA rejects the enrollment
    """
    if store.get(admin_id) is not None:
        logger.info(f"An identity for the admin user already exists in the {msp_id} store")
        return False

    try:
        enrollment = ca.enroll(admin_id, admin_secret)
    except AuctionClientError as e:
        raise e.with_context(operation="EnrollAdmin")
    except Exception as e:
        raise EnrollmentError(
            f"Failed to enroll admin user with {ca.ca_name}",
            operation="EnrollAdmin",
            detail=str(e),
        ) from e

    store.put(admin_id, enrollment.to_credential(msp_id))
    logger.info(f"Successfully enrolled admin user and imported it into the {msp_id} store")
    return True


def register_and_enroll_user(
    ca: CertificateAuthorityClient,
    store: IdentityStore,
    msp_id: str,
    user_id: str,
    affiliation: str,
    admin_id: str = ADMIN_ID,
) -> bool:
    """
    Register `user_id` with the CA, enroll it and store the credential.

    Args:
        ca: CA of the user's organization
        store: Identity store of the user's organization
        msp_id: Organization identifier recorded in the credential
        user_id: New identity's id (also the store label)
        affiliation: CA affiliation, e.g. "org1.department1"
        admin_id: Label of the registrar identity in `store`

    Returns:
        True if the user was enrolled, False if already stored

    Raises:
        EnrollmentError: If the admin is missing or the CA rejects a call
    """
    if store.get(user_id) is not None:
        logger.info(f"An identity for the user {user_id} already exists in the {msp_id} store")
        return False

    admin = store.get(admin_id)
    if admin is None:
        raise EnrollmentError(
            "An identity for the admin user does not exist in the store; enroll the admin first",
            operation="RegisterAndEnrollUser",
        )

    try:
        secret = ca.register(admin, user_id, affiliation, role="client")
        enrollment = ca.enroll(user_id, secret)
    except AuctionClientError as e:
        raise e.with_context(operation="RegisterAndEnrollUser")
    except Exception as e:
        raise EnrollmentError(
            f"Failed to register user {user_id} with {ca.ca_name}",
            operation="RegisterAndEnrollUser",
            detail=str(e),
        ) from e

    store.put(user_id, enrollment.to_credential(msp_id))
    logger.info(f"Successfully registered and enrolled user {user_id} into the {msp_id} store")
    return True
