"""
Containers for secret material with explicit destruction.

Secrets live in mutable ``bytearray`` buffers so they can be overwritten in
place. Python cannot guarantee that no other copy exists (``reveal()`` hands
out immutable ``bytes`` for signing libraries), so callers keep revealed
values in local scope only and destroy the container as soon as they are done.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union

from .exceptions import SecretConsumedError
from .models import ChainFamily


class SecretBytes:
    """Owned, zeroizable secret buffer.

    Takes ownership of ``bytearray`` inputs: the caller's buffer is wiped
    after it has been copied in.
    """

    __slots__ = ("_buffer", "_destroyed")

    def __init__(self, data: Union[bytes, bytearray]) -> None:
        self._buffer = bytearray(data)
        self._destroyed = False
        if isinstance(data, bytearray):
            data[:] = bytes(len(data))

    def reveal(self) -> bytes:
        if self._destroyed:
            raise SecretConsumedError("Secret has been destroyed")
        return bytes(self._buffer)

    def raw_view(self) -> memoryview:
        return memoryview(self._buffer)

    def zeroize(self) -> None:
        # Slice assignment of equal length overwrites in place
        self._buffer[:] = bytes(len(self._buffer))
        self._destroyed = True

    def is_zeroed(self) -> bool:
        return not any(self._buffer)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else f"{len(self._buffer)} bytes"
        return f"SecretBytes(<redacted {state}>)"

    __str__ = __repr__

    def __copy__(self):
        raise TypeError("SecretBytes cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("SecretBytes cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("SecretBytes cannot be pickled")

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.zeroize()


class MnemonicSecret:
    """A BIP-39 phrase that may be disclosed exactly once."""

    __slots__ = ("_secret", "_disclosed", "word_count")

    def __init__(self, phrase: str) -> None:
        self.word_count = len(phrase.split())
        self._secret = SecretBytes(bytearray(phrase.encode("utf-8")))
        self._disclosed = False

    def consume(self) -> str:
        """Return the phrase for the disclosure surface, once."""
        if self._disclosed:
            raise SecretConsumedError("Seed phrase has already been disclosed")
        phrase = self._secret.reveal().decode("utf-8")
        self._disclosed = True
        return phrase

    def words(self) -> List[str]:
        return self.consume().split()

    def destroy(self) -> None:
        self._secret.zeroize()

    def is_zeroed(self) -> bool:
        return self._secret.is_zeroed()

    @property
    def disclosed(self) -> bool:
        return self._disclosed

    @property
    def destroyed(self) -> bool:
        return self._secret.destroyed

    def __repr__(self) -> str:
        return f"MnemonicSecret(<redacted {self.word_count} words>)"

    def __copy__(self):
        raise TypeError("MnemonicSecret cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("MnemonicSecret cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("MnemonicSecret cannot be pickled")


@dataclass(repr=False)
class ChainKeyPair:
    """Key material for one chain family."""
    family: ChainFamily
    public_address: str
    signing_key: SecretBytes
    derivation_path: str

    def destroy(self) -> None:
        self.signing_key.zeroize()

    def __repr__(self) -> str:
        return (
            f"ChainKeyPair(family={self.family.value}, "
            f"public_address={self.public_address}, path={self.derivation_path})"
        )


@dataclass
class DerivedKeySet:
    pairs: List[ChainKeyPair] = field(default_factory=list)

    def for_family(self, family: ChainFamily) -> ChainKeyPair:
        for pair in self.pairs:
            if pair.family == family:
                return pair
        raise KeyError(family)

    @property
    def evm(self) -> ChainKeyPair:
        return self.for_family(ChainFamily.EVM)

    @property
    def solana(self) -> ChainKeyPair:
        return self.for_family(ChainFamily.SOLANA)

    def destroy(self) -> None:
        for pair in self.pairs:
            pair.destroy()

    def is_zeroed(self) -> bool:
        return all(pair.signing_key.is_zeroed() for pair in self.pairs)


def destroy_all(*items: Optional[object]) -> None:
    """Destroy every non-None secret holder passed in."""
    for item in items:
        if item is None:
            continue
        if isinstance(item, SecretBytes):
            item.zeroize()
        else:
            item.destroy()
