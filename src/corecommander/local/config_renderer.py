"""Node configuration rendering.

The configuration is assembled as structured data first (ConfigDocument holding
top-level entries and ordered sections) and turned into text only in render().
Conditional keys are simply not added when their option is off, so the output
never contains empty or commented-out placeholders.

Output format:

    KEY=value
    ...

    [QUORUM_SET]
    VALIDATORS=["a", "b"]

    [HISTORY.a]
    get="cp /archives/a/{0} {1}"
"""

from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

from corecommander.core.errors import ConfigRenderError
from corecommander.core.models import DEFAULT_SPECIAL_PEERS, NodeSpec, SpecialPeer

ConfigValue = str | bool | int | list[str]

DEBUG_COMMANDS = ["ll?level=debug"]
PEER_GET_TEMPLATE = "cp {history_dir}/%s/{{0}} {{1}}"


def format_value(value: ConfigValue) -> str:
    """Render a single value: strings quoted, bools lowercase, ints bare."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    return "[" + ", ".join(_quote(item) for item in value) + "]"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ConfigSection(BaseModel):
    """Ordered key/value entries, optionally under a [header]."""

    header: str | None = None
    entries: list[tuple[str, ConfigValue]] = Field(default_factory=list)

    def set(self, key: str, value: ConfigValue) -> "ConfigSection":
        self.entries.append((key, value))
        return self

    def set_if(self, condition: bool, key: str, value: ConfigValue) -> "ConfigSection":
        if condition:
            self.entries.append((key, value))
        return self

    def keys(self) -> list[str]:
        return [key for key, _ in self.entries]

    def get(self, key: str) -> ConfigValue | None:
        for entry_key, value in self.entries:
            if entry_key == key:
                return value
        return None

    def render(self) -> str:
        lines = []
        if self.header is not None:
            lines.append(f"[{self.header}]")
        lines.extend(f"{key}={format_value(value)}" for key, value in self.entries)
        return "\n".join(lines)


class ConfigDocument(BaseModel):
    """Top-level entries followed by ordered sections."""

    root: ConfigSection = Field(default_factory=ConfigSection)
    sections: list[ConfigSection] = Field(default_factory=list)

    def add_section(self, header: str) -> ConfigSection:
        section = ConfigSection(header=header)
        self.sections.append(section)
        return section

    def section(self, header: str) -> ConfigSection | None:
        for section in self.sections:
            if section.header == header:
                return section
        return None

    @property
    def headers(self) -> list[str]:
        return [section.header for section in self.sections if section.header is not None]

    def render(self) -> str:
        blocks = [self.root.render()] if self.root.entries else []
        blocks.extend(section.render() for section in self.sections)
        return "\n\n".join(blocks) + "\n"


def history_section(
    peer: str,
    *,
    own_name: str,
    history_dir: Path,
    special_peers: Mapping[str, SpecialPeer],
) -> ConfigSection:
    """Build the [HISTORY.<name>] section for one quorum member.

    The node's own archive gets local get/put/mkdir commands; any other peer
    gets a get command only, using the special-peer override when registered.
    """
    if peer == own_name:
        archive = f"{history_dir}/{peer}"
        return (
            ConfigSection(header=f"HISTORY.{peer}")
            .set("get", f"cp {archive}/{{0}} {{1}}")
            .set("put", f"cp {{0}} {archive}/{{1}}")
            .set("mkdir", f"mkdir -p {archive}/{{0}}")
        )

    name = peer
    get = PEER_GET_TEMPLATE.format(history_dir=history_dir)
    special = special_peers.get(peer)
    if special is not None:
        name = special.name
        get = special.get
    get = get.replace("%s", name, 1)

    return ConfigSection(header=f"HISTORY.{name}").set("get", get)


def build_config(
    spec: NodeSpec,
    *,
    dsn: str,
    history_dir: Path,
    special_peers: Mapping[str, SpecialPeer] | None = None,
) -> ConfigDocument:
    """Build the structured configuration for one node."""
    if not spec.identity.seed:
        raise ConfigRenderError(f"Node {spec.name} has no identity seed")

    peers = DEFAULT_SPECIAL_PEERS if special_peers is None else special_peers
    doc = ConfigDocument()

    (
        doc.root
        .set("PEER_PORT", spec.peer_port)
        .set("RUN_STANDALONE", False)
        .set("HTTP_PORT", spec.http_port)
        .set("PUBLIC_HTTP_PORT", False)
        .set("PEER_SEED", spec.identity.seed)
        .set_if(spec.validate_scp, "VALIDATION_SEED", spec.identity.seed)
        .set("ARTIFICIALLY_GENERATE_LOAD_FOR_TESTING", True)
        .set_if(spec.accelerate_time, "ARTIFICIALLY_ACCELERATE_TIME_FOR_TESTING", True)
        .set_if(spec.catchup_complete, "CATCHUP_COMPLETE", True)
        .set("DATABASE", dsn)
        .set("PREFERRED_PEERS", list(spec.peer_connections))
        .set_if(spec.manual_close, "MANUAL_CLOSE", True)
        .set_if(spec.debug, "COMMANDS", list(DEBUG_COMMANDS))
        .set("FAILURE_SAFETY", 0)
        .set("UNSAFE_QUORUM", True)
    )

    (
        doc.add_section("QUORUM_SET")
        .set_if(spec.threshold is not None, "THRESHOLD", spec.threshold or 0)
        .set("VALIDATORS", spec.validator_entries)
    )

    for peer in spec.quorum:
        doc.sections.append(
            history_section(
                peer,
                own_name=spec.name,
                history_dir=history_dir,
                special_peers=peers,
            )
        )

    return doc


def render_config(
    spec: NodeSpec,
    *,
    dsn: str,
    history_dir: Path,
    special_peers: Mapping[str, SpecialPeer] | None = None,
) -> str:
    """Render the node configuration file contents."""
    return build_config(
        spec, dsn=dsn, history_dir=history_dir, special_peers=special_peers
    ).render()
