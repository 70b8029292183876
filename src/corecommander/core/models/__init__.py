"""Data models for corecommander."""

from corecommander.core.models.node import (
    DEFAULT_SPECIAL_PEERS,
    Identity,
    NodeSpec,
    SpecialPeer,
)

__all__ = [
    "Identity",
    "NodeSpec",
    "SpecialPeer",
    "DEFAULT_SPECIAL_PEERS",
]
