"""Async client for ArcGIS FeatureServer layers.

Only the two calls the monitor needs: ``query`` on a layer (paged) and the
layer metadata document.  Every failure that should skip a source for one
tick surfaces as FetchError.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from overflow_watch.domain.errors import FetchError
from overflow_watch.domain.sources import SourceConfig

logger = logging.getLogger(__name__)

USER_AGENT = "overflow-watch/1.0"


class ArcGISQueryError(Exception):
    """A FeatureServer request failed or returned an ArcGIS error object."""


class ArcGISClient:
    """Queries FeatureServer layers over HTTPS.

    Args:
        client: Optional pre-built httpx.AsyncClient (tests inject one with a
            MockTransport).  When omitted the ArcGISClient owns its client.
        timeout: Per-request timeout in seconds.
        page_size: ``resultRecordCount`` requested per page.
        max_pages: Upper bound on pages followed for one layer.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        page_size: int = 2000,
        max_pages: int = 50,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
        self._page_size = page_size
        self._max_pages = max_pages

    # ── Public API ───────────────────────────────────────────────────────

    async def fetch_all(self, source: SourceConfig) -> list[dict[str, Any]]:
        """Return every feature of the source's layer.

        Raises:
            FetchError: On transport failure, HTTP error status, non-JSON
                body, or an ArcGIS error payload.
        """
        features: list[dict[str, Any]] = []
        offset = 0
        try:
            for _ in range(self._max_pages):
                page = await self.query_layer(
                    source.endpoint,
                    source.layer_id,
                    offset=offset,
                    record_count=self._page_size,
                )
                batch = page.get("features") or []
                features.extend(batch)
                if not page.get("exceededTransferLimit") or not batch:
                    break
                offset += len(batch)
            else:
                logger.warning(
                    "%s: stopped paging after %d pages (%d features)",
                    source.name,
                    self._max_pages,
                    len(features),
                )
        except ArcGISQueryError as exc:
            raise FetchError(source.source_id, str(exc)) from exc

        logger.debug("%s: fetched %d features", source.name, len(features))
        return features

    async def query_layer(
        self,
        endpoint: str,
        layer_id: int = 0,
        *,
        where: str = "1=1",
        out_fields: str = "*",
        return_geometry: bool = True,
        offset: int | None = None,
        record_count: int | None = None,
    ) -> dict[str, Any]:
        """Run one ``/query`` request against a layer."""
        params: dict[str, Any] = {
            "where": where,
            "outFields": out_fields,
            "f": "json",
            "returnGeometry": "true" if return_geometry else "false",
            "outSR": 4326,
        }
        if offset is not None:
            params["resultOffset"] = offset
        if record_count is not None:
            params["resultRecordCount"] = record_count
        return await self._get_json(f"{endpoint.rstrip('/')}/{layer_id}/query", params)

    async def get_layer_info(self, endpoint: str, layer_id: int = 0) -> dict[str, Any]:
        """Return the layer metadata document (fields, capabilities, …)."""
        return await self._get_json(f"{endpoint.rstrip('/')}/{layer_id}", {"f": "json"})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ArcGISClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── Internals ────────────────────────────────────────────────────────

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise ArcGISQueryError(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            raise ArcGISQueryError(f"HTTP {response.status_code} from {url}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ArcGISQueryError(f"non-JSON response from {url}") from exc

        if not isinstance(data, dict):
            raise ArcGISQueryError(f"unexpected JSON {type(data).__name__} from {url}")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise ArcGISQueryError(f"ArcGIS API error: {message}")
        return data
