"""
Ledger access.

Provides:
- Session: identity-bound connection with guaranteed release
- LedgerGateway: transport interface a Session drives
- LocalLedgerNetwork / LocalLedgerGateway: SQLite-backed local channel
"""

from blindbid.gateway.base import LedgerGateway
from blindbid.gateway.session import Session, SessionState
from blindbid.gateway.local import (
    LocalLedgerNetwork,
    LocalLedgerGateway,
    ClientIdentity,
    client_id_from_certificate,
)

__all__ = [
    "LedgerGateway",
    "Session",
    "SessionState",
    "LocalLedgerNetwork",
    "LocalLedgerGateway",
    "ClientIdentity",
    "client_id_from_certificate",
]
