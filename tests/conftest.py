"""
Pytest configuration for numora-custody tests.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

# Set test environment
os.environ.setdefault("NUMORA_ENVIRONMENT", "dev")

from numora_custody.backends.memory import InMemoryCustodyBackend
from numora_custody.config import CustodySettings
from numora_custody.keys import KeyDerivationEngine

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
TEST_EVM_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RPCStub:
    """JSON-RPC responder for httpx.MockTransport.

    ``results`` maps method name to a value, a callable taking the params,
    or ``{"__error__": {...}}`` for a JSON-RPC error response.
    """

    def __init__(self, results: Dict[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: List[Tuple[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        params = body.get("params", [])
        self.calls.append((method, params))
        value = self.results[method]
        if callable(value):
            value = value(params)
        if isinstance(value, dict) and "__error__" in value:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": value["__error__"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})

    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def route_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def test_mnemonic() -> str:
    """BIP-39 reference mnemonic."""
    return TEST_MNEMONIC


@pytest.fixture
def engine() -> KeyDerivationEngine:
    return KeyDerivationEngine()


@pytest.fixture
def settings() -> CustodySettings:
    return CustodySettings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> InMemoryCustodyBackend:
    return InMemoryCustodyBackend(clock=clock)


@pytest.fixture
def rpc_stub() -> type:
    return RPCStub


@pytest.fixture
def sample_eth_address() -> str:
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def sample_tx_hash() -> str:
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64
