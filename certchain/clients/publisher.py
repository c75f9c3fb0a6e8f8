"""
CertChain — Metadata Publisher (Pinata / IPFS)

Pins certificate metadata JSON to IPFS through Pinata's pinning API and
returns the content identifier plus its gateway URI.

Publishing is not idempotent: pinning the same JSON twice may return the
same CID or a distinct one, and both are accepted. Nothing deduplicates.
The orchestrator never writes a record before publish() has returned.

Environment variables consumed (via PinataConfig):
  PINATA_JWT            — Pinata API JWT (Bearer)
  GATEWAY_URL           — Gateway base, e.g. https://mydomain.mypinata.cloud
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from certchain.config import PinataConfig
from certchain.errors import UploadError
from certchain.primitives.certificate import PublishedMetadata

logger = structlog.get_logger()

_PIN_JSON_PATH = "/pinning/pinJSONToIPFS"


class PinataPublisher:
    """
    Async Pinata client.

    Lifecycle: construct → connect() → publish() → close().
    An httpx.AsyncClient may be injected; the publisher then does not own it.
    """

    def __init__(
        self,
        config: PinataConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._logger = logger.bind(component="clients.publisher")

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.api_url,
                timeout=self._config.timeout_s,
                headers={"Authorization": f"Bearer {self._config.jwt}"},
            )
            self._owns_client = True
        self._logger.info("publisher_connected", api_url=self._config.api_url)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._logger.info("publisher_disconnected")

    def uri_for(self, cid: str) -> str:
        return f"{self._config.gateway_url}/ipfs/{cid}"

    async def publish(self, payload: dict[str, Any], name: str | None = None) -> PublishedMetadata:
        """
        Pin a JSON object.

        Raises:
            UploadError: network failure, auth failure, non-2xx response, or
                a response without an IpfsHash.
        """
        client = self._require_client()
        body: dict[str, Any] = {"pinataContent": payload}
        if name:
            body["pinataMetadata"] = {"name": name}

        try:
            response = await client.post(_PIN_JSON_PATH, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            self._logger.error(
                "publish_rejected",
                status=status,
                response=exc.response.text[:500],
            )
            raise UploadError(
                f"Failed to upload to Pinata (status {status})",
                status=status,
            ) from exc
        except httpx.HTTPError as exc:
            self._logger.error("publish_failed", error=str(exc))
            raise UploadError(f"Failed to upload to Pinata: {exc}") from exc

        try:
            cid = str(response.json()["IpfsHash"])
        except (ValueError, KeyError, TypeError) as exc:
            raise UploadError("Pinata response did not include an IpfsHash") from exc

        published = PublishedMetadata(cid=cid, uri=self.uri_for(cid))
        self._logger.info("metadata_published", cid=cid, uri=published.uri)
        return published

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("PinataPublisher not connected. Call connect() first.")
        return self._client
