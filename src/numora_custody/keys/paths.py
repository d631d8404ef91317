"""
HD derivation paths for the embedded wallet.

Solana keys use SLIP-0010 over ed25519, which only defines hardened
children; EVM keys use BIP-32 over secp256k1 and one EVM key is reused for
every EVM chain (coin type 60).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from ..models import ChainFamily

HARDENED_OFFSET = 0x80000000
MAX_INDEX = HARDENED_OFFSET - 1


class CoinType(int, Enum):
    """SLIP-44 coin type values."""
    ETHEREUM = 60
    SOLANA = 501


@dataclass
class HDPathComponent:
    """A single component of an HD derivation path."""
    index: int
    hardened: bool = False

    def __str__(self) -> str:
        suffix = "'" if self.hardened else ""
        return f"{self.index}{suffix}"

    @property
    def value(self) -> int:
        """Index as used in child derivation, hardened offset applied."""
        return self.index + HARDENED_OFFSET if self.hardened else self.index

    @classmethod
    def from_string(cls, s: str) -> "HDPathComponent":
        s = s.strip()
        hardened = s.endswith("'") or s.endswith("h") or s.endswith("H")
        index_str = s.rstrip("'hH")
        if not index_str.isdigit():
            raise ValueError(f"Invalid HD path component: {s!r}")
        return cls(index=int(index_str), hardened=hardened)


@dataclass
class HDPath:
    """Parsed derivation path, e.g. ``m/44'/60'/0'/0/0``."""
    components: List[HDPathComponent] = field(default_factory=list)

    def __str__(self) -> str:
        return "/".join(["m", *(str(c) for c in self.components)])

    @property
    def all_hardened(self) -> bool:
        return all(c.hardened for c in self.components)

    @classmethod
    def parse(cls, path_string: str) -> "HDPath":
        """
        Parse a path string into an HDPath object.

        Args:
            path_string: Path in format "m/44'/60'/0'/0/0"

        Returns:
            HDPath object
        """
        path_string = path_string.strip()
        if path_string in ("m", "M"):
            return cls()
        if not path_string.lower().startswith("m/"):
            raise ValueError(f"Invalid HD path: {path_string!r} must start with 'm/'")
        parts = path_string[2:].split("/")
        return cls(components=[HDPathComponent.from_string(p) for p in parts])

    def validate(self, family: ChainFamily) -> List[str]:
        """Validate the path for the curve used by ``family``."""
        errors = []

        for component in self.components:
            if component.index > MAX_INDEX:
                errors.append(f"Index {component.index} exceeds maximum value")

        if family == ChainFamily.SOLANA and not self.all_hardened:
            errors.append("ed25519 derivation only supports hardened components")

        if len(self.components) >= 2 and not (
            self.components[0].hardened and self.components[1].hardened
        ):
            errors.append("Purpose and coin type should be hardened")

        return errors


SOLANA_PATH = HDPath.parse("m/44'/501'/0'/0'")
EVM_PATH = HDPath.parse("m/44'/60'/0'/0/0")

# Chains that reuse the single EVM key
EVM_CHAINS: Tuple[str, ...] = ("ethereum", "arbitrum", "polygon", "bnb", "hyperliquid")
