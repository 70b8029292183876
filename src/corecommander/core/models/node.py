"""Node instance data models.

NodeSpec is the read-only identity/topology description of one node under test.
It is supplied by the orchestrating test driver and never mutated afterwards.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Identity(BaseModel):
    """Cryptographic identity of a node."""

    model_config = ConfigDict(frozen=True)

    seed: str = Field(min_length=1)


class SpecialPeer(BaseModel):
    """Quorum member whose history name and get command are overridden.

    `get` contains a single `%s` placeholder replaced with `name`, plus the
    node's own `{0}`/`{1}` placeholders which are left untouched.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    get: str


_TESTNET_GET = "curl -sf http://history.stellar.org/prd/core-testnet/%s/{0} -o {1}"

DEFAULT_SPECIAL_PEERS: dict[str, SpecialPeer] = {
    "testnet1": SpecialPeer(name="core_testnet_001", get=_TESTNET_GET),
    "testnet2": SpecialPeer(name="core_testnet_002", get=_TESTNET_GET),
    "testnet3": SpecialPeer(name="core_testnet_003", get=_TESTNET_GET),
}


class NodeSpec(BaseModel):
    """Identity, network, quorum and runtime options of one node instance."""

    model_config = ConfigDict(frozen=True)

    # Identity
    name: str = Field(min_length=1)
    identity: Identity
    validate_scp: bool = False

    # Network
    peer_port: int = Field(default=11625, gt=0, lt=65536)
    http_port: int = Field(default=11626, gt=0, lt=65536)
    peer_connections: list[str] = Field(default_factory=list)

    # Quorum (order preserved, never deduplicated)
    quorum: list[str] = Field(default_factory=list)
    threshold: int | None = None
    validators: list[str] | None = None

    # Runtime options
    accelerate_time: bool = False
    catchup_complete: bool = False
    manual_close: bool = False
    debug: bool = False
    keep_database: bool = False
    forcescp: bool = False

    # Database
    database_url: str | None = None

    @field_validator("database_url")
    @classmethod
    def _strip_database_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def validator_entries(self) -> list[str]:
        """VALIDATORS entries: explicit list if given, else the quorum names."""
        if self.validators is not None:
            return list(self.validators)
        return list(self.quorum)
