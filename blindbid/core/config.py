"""
Client configuration for blindbid.

Defines the channel, the contract, the participating organizations and
operational limits. A ClientConfig value is passed explicitly into the
orchestrator and the CLI helpers; there is no process-wide instance.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv


ENV_PREFIX = "BLINDBID_"


@dataclass(frozen=True)
class OrgProfile:
    """Static description of one participating organization."""

    name: str  # short CLI name, e.g. "org1"
    msp_id: str  # identifier the ledger knows the org by
    ca_name: str  # certificate authority host name
    affiliation: str  # default affiliation for registered users


DEFAULT_ORGANIZATIONS: Dict[str, OrgProfile] = {
    "org1": OrgProfile("org1", "Org1MSP", "ca.org1.example.com", "org1.department1"),
    "org2": OrgProfile("org2", "Org2MSP", "ca.org2.example.com", "org2.department1"),
}


@dataclass
class ClientConfig:
    """Configuration for one client invocation"""

    # Ledger addressing
    channel: str = "mychannel"
    contract_name: str = "auction-chaincode"

    # Participants (short name -> profile)
    organizations: Dict[str, OrgProfile] = field(
        default_factory=lambda: dict(DEFAULT_ORGANIZATIONS)
    )

    # Organization this client acts for (None until bound with for_org)
    org: Optional[str] = None

    # Identity authority
    admin_id: str = "admin"
    admin_secret: str = "adminpw"

    # Operational limits
    call_timeout: float = 30.0  # seconds per evaluate/submit call

    # Paths
    data_dir: Path = Path("~/.blindbid")
    log_dir: Optional[Path] = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir).expanduser()
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir).expanduser()

    # =========================================================================
    # Organization lookups
    # =========================================================================

    def profile(self, org: Optional[str] = None) -> OrgProfile:
        """Return the profile of `org` (defaults to the bound org)."""
        name = (org or self.org or "").lower()
        if not name:
            raise ValueError("No organization bound to this configuration")
        try:
            return self.organizations[name]
        except KeyError:
            raise ValueError(f"Unknown organization: {org}") from None

    def for_org(self, org: str) -> "ClientConfig":
        """Return a copy of this configuration bound to `org`."""
        return replace(self, org=self.profile(org).name)

    @property
    def msp_id(self) -> str:
        """MSP id of the bound organization."""
        return self.profile().msp_id

    @property
    def channel_members(self) -> List[str]:
        """MSP ids of every organization on the channel."""
        return [p.msp_id for p in self.organizations.values()]

    # =========================================================================
    # Paths
    # =========================================================================

    def wallet_dir(self, org: Optional[str] = None) -> Path:
        """Directory holding the identity store of `org`."""
        return self.data_dir / "wallet" / self.profile(org).name

    def ca_dir(self, org: Optional[str] = None) -> Path:
        """State directory of the local certificate authority of `org`."""
        return self.data_dir / "ca" / self.profile(org).name

    @property
    def ledger_dir(self) -> Path:
        """State directory of the local ledger network."""
        return self.data_dir / "ledger"


def load_config(env_file: Optional[str] = None, **overrides) -> ClientConfig:
    """
    Load configuration from the environment.

    Variables prefixed with BLINDBID_ override the defaults; when
    `env_file` is given (or a .env exists in the working directory)
    it is loaded first without replacing variables already set.

    Args:
        env_file: Optional path to a dotenv file
        **overrides: Explicit values that win over the environment

    Returns:
        ClientConfig instance
    """
    load_dotenv(env_file or Path.cwd() / ".env", override=False)

    values = {}
    env_map = {
        "channel": "CHANNEL",
        "contract_name": "CONTRACT",
        "admin_id": "ADMIN_ID",
        "admin_secret": "ADMIN_SECRET",
        "data_dir": "DATA_DIR",
        "log_dir": "LOG_DIR",
    }
    for attr, suffix in env_map.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value:
            values[attr] = value

    timeout = os.environ.get(ENV_PREFIX + "TIMEOUT")
    if timeout:
        values["call_timeout"] = float(timeout)

    values.update({k: v for k, v in overrides.items() if v is not None})
    return ClientConfig(**values)
