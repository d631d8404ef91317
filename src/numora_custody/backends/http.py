"""Custody backend over the platform's wallet HTTP API."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from ..exceptions import (
    BackendError,
    CredentialRenewalFailedError,
    SigningKeyUnavailableError,
    WalletAlreadyExistsError,
)
from ..models import ApiCredentialStatus, Balances, ChainFamily, EmbeddedWallet, WalletAddresses
from ..sensitive import SecretBytes

logger = logging.getLogger(__name__)


class HttpCustodyBackend:
    """Async client for the /api/wallets endpoints.

    Requests authenticate with the session's bearer token; the user id is
    sent alongside for server-side audit logging.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str = "",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._auth_token = auth_token

    def _headers(self, user_id: str) -> dict[str, str]:
        headers = {"X-User-Id": user_id}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method, f"{self._base_url}{path}", headers=self._headers(user_id), **kwargs
            )
        except httpx.HTTPError as e:
            raise BackendError(f"{operation} failed: {e}", operation=operation) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        raise BackendError(
            f"{operation} failed: {response.status_code} - {response.text}",
            operation=operation,
            status_code=response.status_code,
        )

    @staticmethod
    def _wallet_from(payload: dict[str, Any], user_id: str) -> EmbeddedWallet:
        data = payload.get("wallet", payload)
        return EmbeddedWallet.model_validate({**data, "userId": data.get("userId", user_id)})

    async def create_wallet(
        self,
        user_id: str,
        addresses: WalletAddresses,
        exchange_signing_key: SecretBytes,
    ) -> EmbeddedWallet:
        body = addresses.model_dump(by_alias=True)
        body["hyperliquidPrivateKey"] = "0x" + exchange_signing_key.reveal().hex()
        response = await self._request(
            "POST", "/api/wallets/embedded", user_id, "create_wallet", json=body
        )
        del body

        if response.status_code == 409 or (
            response.status_code == 400 and "already exist" in response.text.lower()
        ):
            raise WalletAlreadyExistsError(user_id)
        self._raise_for_status(response, "create_wallet")
        return self._wallet_from(response.json(), user_id)

    async def get_wallet(self, user_id: str) -> Optional[EmbeddedWallet]:
        response = await self._request("GET", "/api/wallets/embedded", user_id, "get_wallet")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "get_wallet")
        payload = response.json()
        if payload.get("wallet", payload) is None:
            return None
        return self._wallet_from(payload, user_id)

    async def confirm_seed_shown(self, user_id: str) -> None:
        response = await self._request(
            "POST", "/api/wallets/embedded/confirm-seed", user_id, "confirm_seed_shown"
        )
        self._raise_for_status(response, "confirm_seed_shown")

    @staticmethod
    def _credential_from(payload: dict[str, Any]) -> ApiCredentialStatus:
        return ApiCredentialStatus(
            has_credential=bool(payload.get("hasApiWallet", payload.get("hasCredential", False))),
            expires_at=payload.get("expirationDate") or payload.get("expiresAt"),
            approved_at=payload.get("approvalTimestamp") or payload.get("approvedAt"),
        )

    async def get_credential_status(self, user_id: str) -> ApiCredentialStatus:
        response = await self._request(
            "GET", "/api/wallets/hyperliquid-expiration", user_id, "get_credential_status"
        )
        self._raise_for_status(response, "get_credential_status")
        return self._credential_from(response.json())

    async def renew_credential(self, user_id: str) -> ApiCredentialStatus:
        response = await self._request(
            "POST", "/api/wallets/renew-hyperliquid", user_id, "renew_credential"
        )
        if not response.is_success:
            raise CredentialRenewalFailedError(
                f"Renewal rejected: {response.status_code} - {response.text}",
                details={"status_code": response.status_code},
            )
        payload = response.json()
        return self._credential_from({"hasApiWallet": True, **payload})

    async def get_balances(self, user_id: str) -> Balances:
        response = await self._request("GET", "/api/wallets/balances", user_id, "get_balances")
        self._raise_for_status(response, "get_balances")
        raw = response.json().get("balances", {})
        balances: Balances = {}
        for chain, tokens in raw.items():
            for token, amount in (tokens or {}).items():
                try:
                    value = Decimal(str(amount))
                except InvalidOperation:
                    logger.warning("Ignoring malformed balance %s/%s: %r", chain, token, amount)
                    continue
                balances.setdefault(chain.lower(), {})[token.upper()] = value
        return balances

    async def get_signing_key(self, user_id: str, family: ChainFamily) -> SecretBytes:
        response = await self._request(
            "GET",
            "/api/wallets/embedded/signing-key",
            user_id,
            "get_signing_key",
            params={"family": family.value},
        )
        if response.status_code == 404:
            raise SigningKeyUnavailableError(user_id, family.value)
        self._raise_for_status(response, "get_signing_key")
        key_hex = response.json().get("privateKey", "")
        return SecretBytes(bytearray.fromhex(key_hex.removeprefix("0x")))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
