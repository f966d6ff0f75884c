"""HTTP client for the Click de Pago processor API."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

import httpx

from ..errors import ProcessorConnectionError, ProcessorResponseError
from .base import ProcessorClientBase, ProcessorConfig, LiquidationListResponse

logger = logging.getLogger(__name__)


class ClicPagoClient(ProcessorClientBase):
    """
    Click de Pago client bound to one payment button's credentials.

    No retries happen here; a failed call surfaces as a ProcessorError and
    the next scheduled pass picks the window up again.
    """

    def __init__(
        self,
        config: ProcessorConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            config: Credentials and endpoint settings for one button.
            transport: Optional httpx transport (used by tests).

        Raises:
            ValueError: If the credentials are empty.
        """
        if not config.api_key or not config.secret_key:
            raise ValueError("Click de Pago api_key and secret_key are required")
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.config.api_key}",
                    "X-Api-Secret": self.config.secret_key,
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        client = self._get_client()
        try:
            response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling processor {path}")
            raise ProcessorConnectionError(f"timeout calling {path}") from e
        except httpx.TransportError as e:
            logger.error(f"Failed to reach processor {path}: {type(e).__name__}")
            raise ProcessorConnectionError(f"failed to reach {path}: {e}") from e

        if response.status_code != 200:
            raise ProcessorResponseError(
                f"{path} answered HTTP {response.status_code}",
                status_code=response.status_code,
                details=response.text[:500],
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProcessorResponseError(
                f"{path} returned a non-JSON body",
                status_code=response.status_code,
            ) from e

    async def list_transactions(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> List[Dict[str, Any]]:
        """Fetch all transactions in the window, following pages until a short one."""
        records: List[Dict[str, Any]] = []
        page = 1
        limit = self.config.page_size

        logger.info(
            f"Fetching transactions from {from_date:%Y-%m-%d} to {to_date:%Y-%m-%d}"
        )

        while True:
            body = await self._get(
                "/transactions",
                params={
                    "from_date": from_date.strftime("%Y-%m-%d"),
                    "to_date": to_date.strftime("%Y-%m-%d"),
                    "page": page,
                    "limit": limit,
                },
            )
            batch = body.get("data") if isinstance(body, dict) else body
            if batch is None:
                batch = []
            if not isinstance(batch, list):
                raise ProcessorResponseError("/transactions data is not a list")
            records.extend(batch)
            if len(batch) < limit:
                break
            page += 1

        logger.info(f"Fetched {len(records)} transactions from processor")
        return records

    async def list_liquidations(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> LiquidationListResponse:
        """Fetch liquidations settled since from_date.

        The endpoint filters by a single dateLiquidacion lower bound; to_date
        is accepted for interface symmetry.

        Raises:
            ProcessorResponseError: If the envelope reports a failure.
        """
        collected: List[Dict[str, Any]] = []
        page = 1
        limit = self.config.page_size
        envelope = LiquidationListResponse()

        while True:
            body = await self._get(
                "/liquidaciones",
                params={
                    "dateLiquidacion": from_date.strftime("%d/%m/%Y"),
                    "page": page,
                    "limit": limit,
                },
            )
            if not isinstance(body, dict):
                raise ProcessorResponseError("/liquidaciones returned an unexpected body")
            data = body.get("data") or {}
            envelope = LiquidationListResponse(
                status=bool(body.get("status")),
                code=body.get("code"),
                message=body.get("message"),
            )
            if not envelope.ok:
                raise ProcessorResponseError(
                    f"liquidations listing failed: {envelope.message or 'unknown error'}",
                    status_code=envelope.code,
                )
            batch = data.get("liquidaciones") if isinstance(data, dict) else None
            batch = batch or []
            collected.extend(batch)
            if len(batch) < limit:
                break
            page += 1

        envelope.liquidaciones = collected
        logger.info(f"Fetched {len(collected)} liquidations from processor")
        return envelope

    async def get_liquidation_transactions(self, liquidation_id: str) -> List[str]:
        body = await self._get(f"/liquidations/{liquidation_id}/transactions")
        items = body.get("data") if isinstance(body, dict) else body
        ids: List[str] = []
        for item in items or []:
            if isinstance(item, dict) and item.get("id") is not None:
                ids.append(str(item["id"]))
        return ids
