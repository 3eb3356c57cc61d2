"""
Identity stores - keyed storage of signing credentials.

One store per organization. Entries are keyed by user id; the value is
a Credential (certificate, private key, MSP id, type "X.509").
"""

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from blindbid.core.models import Credential
from blindbid.utils.logger import get_logger

logger = get_logger("identity.store")

LABEL_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class IdentityStore(ABC):
    """get/put store of user id -> Credential."""

    @abstractmethod
    def get(self, label: str) -> Optional[Credential]:
        """Credential stored under `label`, or None."""

    @abstractmethod
    def put(self, label: str, credential: Credential) -> None:
        """Store (or replace) the credential under `label`."""

    @abstractmethod
    def list(self) -> List[str]:
        """Labels present in the store."""

    def __contains__(self, label: str) -> bool:
        return self.get(label) is not None


class InMemoryIdentityStore(IdentityStore):
    """Store kept in a dict; lost when the process exits."""

    def __init__(self):
        self._entries: Dict[str, Credential] = {}

    def get(self, label: str) -> Optional[Credential]:
        return self._entries.get(label)

    def put(self, label: str, credential: Credential) -> None:
        self._entries[label] = credential

    def list(self) -> List[str]:
        return sorted(self._entries)


class FileSystemIdentityStore(IdentityStore):
    """
    One JSON file per identity: <directory>/<label>.id

    Files are written with mode 0600 since they hold private keys.
    """

    SUFFIX = ".id"

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, label: str) -> Path:
        if not LABEL_PATTERN.match(label):
            raise ValueError(f"Invalid identity label: {label!r}")
        return self.directory / f"{label}{self.SUFFIX}"

    def get(self, label: str) -> Optional[Credential]:
        path = self._path(label)
        if not path.exists():
            return None
        return Credential.from_store_json(path.read_text(encoding="utf-8"))

    def put(self, label: str, credential: Credential) -> None:
        path = self._path(label)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(credential.to_store_json(), encoding="utf-8")
        path.chmod(0o600)
        logger.debug(f"Stored identity {label} at {path}")

    def list(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{self.SUFFIX}"))


__all__ = ["IdentityStore", "InMemoryIdentityStore", "FileSystemIdentityStore"]
