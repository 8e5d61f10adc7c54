"""HTTP implementations of the extraction and inventory boundaries using httpx."""

from __future__ import annotations

from typing import Any

import httpx

from ..exceptions import ConfigurationError, ExtractionError
from ..schemas.analysis import TemplateConfig
from ..schemas.enums import ContentType
from ..utils.config import get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "HttpBoundary"})


def _client(
    base_url: str | None,
    setting_name: str,
    timeout: float | None,
    transport: httpx.BaseTransport | None,
) -> httpx.Client:
    if not base_url:
        raise ConfigurationError(f"{setting_name} must be set to use the HTTP boundary")
    return httpx.Client(
        base_url=base_url,
        timeout=timeout or get_settings().http_timeout_seconds,
        transport=transport,
    )


class HttpExtractor:
    """Posts content and template configuration to an extraction service.

    The service answers with ``{"data": {...}, "confidence": ..., "field_errors": [...]}``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = _client(
            base_url or get_settings().extractor_url,
            "INTAKE_EXTRACTOR_URL",
            timeout,
            transport,
        )

    def extract(
        self,
        content: str,
        content_type: ContentType,
        template_config: TemplateConfig | None,
    ) -> dict[str, Any]:
        payload = {
            "content": content,
            "content_type": content_type.value,
            "template": template_config.model_dump(mode="json") if template_config else None,
        }
        try:
            response = self._client.post("/extract", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"Extraction service timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Extraction service request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ExtractionError("Extraction service returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise ExtractionError("Extraction service returned a non-object body")
        return body

    def close(self) -> None:
        self._client.close()


class HttpInventoryGateway:
    """Creates catalog products through an inventory service's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = _client(
            base_url or get_settings().inventory_url,
            "INTAKE_INVENTORY_URL",
            timeout,
            transport,
        )

    def commit_product(self, merged_data: dict[str, Any]) -> str:
        """Create the product and return the reference assigned by the inventory service.

        Transport and HTTP status errors propagate as ``httpx`` exceptions.
        """
        response = self._client.post("/products", json=merged_data)
        response.raise_for_status()
        body = response.json()
        reference = None
        if isinstance(body, dict):
            reference = body.get("product_reference") or body.get("id")
        if not reference:
            logger.error(
                "Inventory response carried no product reference",
                extra={"status": "failed"},
            )
            raise ValueError("Inventory response carried no product reference")
        return str(reference)

    def close(self) -> None:
        self._client.close()
