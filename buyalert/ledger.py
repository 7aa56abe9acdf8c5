"""HTTP client for the ledger explorer and the token price API."""

from __future__ import annotations

import json
from typing import Any, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from buyalert.errors import DecodeError, NetworkError
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
USER_AGENT = "buyalert/0.1"

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AddressInfo(_Lenient):
    hash: str = ""
    name: Optional[str] = None
    is_contract: bool = False

    @property
    def display_name(self) -> str:
        return (self.name or "").strip()


class TokenInfo(_Lenient):
    address: str = ""
    name: str = ""
    symbol: str = ""
    decimals: Optional[str] = "0"
    total_supply: Optional[str] = "0"


class Total(_Lenient):
    value: str = "0"
    decimals: Optional[str] = "0"


class TransferItem(_Lenient):
    tx_hash: str
    block_hash: str = ""
    from_: AddressInfo = Field(default_factory=AddressInfo, alias="from")
    to: AddressInfo = Field(default_factory=AddressInfo)
    token: TokenInfo = Field(default_factory=TokenInfo)
    total: Total = Field(default_factory=Total)
    method: Optional[str] = None
    timestamp: Optional[str] = None
    type: Optional[str] = None


class TokenTransferPage(_Lenient):
    items: List[TransferItem] = Field(default_factory=list)

    @property
    def first(self) -> Optional[TransferItem]:
        return self.items[0] if self.items else None


class Fee(_Lenient):
    type: Optional[str] = None
    value: str = "0"


class TxInfo(_Lenient):
    fee: Fee = Field(default_factory=Fee)
    status: Optional[str] = None
    timestamp: Optional[str] = None
    value: Optional[str] = None
    method: Optional[str] = None


class TokenOverview(_Lenient):
    id: str = ""
    name: str = ""
    symbol: str = ""
    price: float


class LedgerClient:
    """Read-only access to transfers, transactions and prices.

    Every call either returns a parsed model or raises ``NetworkError`` /
    ``DecodeError``. There are no retries here; the watcher decides policy.
    """

    def __init__(
        self,
        explorer_base_url: str,
        price_base_url: str,
        chain_id: str = "ape",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.explorer_base_url = str(explorer_base_url).rstrip("/")
        self.price_base_url = str(price_base_url).rstrip("/")
        self.chain_id = chain_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def latest_transfers(self, token_address: str) -> TokenTransferPage:
        """Most-recent-first token transfers for ``token_address``."""
        url = f"{self.explorer_base_url}/tokens/{token_address}/transfers"
        return await self._get(url, TokenTransferPage)

    async def transaction_detail(self, tx_hash: str) -> TxInfo:
        url = f"{self.explorer_base_url}/transactions/{tx_hash}"
        return await self._get(url, TxInfo)

    async def token_overview(self, api_key: str, token_address: str) -> TokenOverview:
        url = f"{self.price_base_url}/token"
        return await self._get(
            url,
            TokenOverview,
            params={"chain_id": self.chain_id, "id": token_address},
            headers={"AccessKey": api_key},
        )

    async def _get(
        self,
        url: str,
        model: Type[ModelT],
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> ModelT:
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request timed out: {exc}", url=url) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Request failed: {type(exc).__name__}: {exc}", url=url
            ) from exc

        if response.status_code >= 400:
            raise NetworkError(
                f"HTTP {response.status_code} from upstream",
                url=url,
                status_code=response.status_code,
            )

        text = response.text
        try:
            data = json.loads(text)
            return model.model_validate(data)
        except (json.JSONDecodeError, SchemaError) as exc:
            error = DecodeError(
                f"Unexpected {model.__name__} payload: {exc}", url=url, payload=text
            )
            logger.error(
                "ledger_decode_failed",
                url=url,
                model=model.__name__,
                error=str(exc),
                payload=error.payload_preview,
            )
            raise error from exc


__all__ = [
    "AddressInfo",
    "TokenInfo",
    "Total",
    "TransferItem",
    "TokenTransferPage",
    "Fee",
    "TxInfo",
    "TokenOverview",
    "LedgerClient",
]
