"""Extraction and inventory collaborators injected into the pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from importlib import import_module
from typing import Any, Protocol, runtime_checkable

from ..exceptions import ConfigurationError
from ..schemas.analysis import TemplateConfig
from ..schemas.enums import ContentType
from ..schemas.submission import ExtractionResult
from ..utils.config import get_settings


@runtime_checkable
class Extractor(Protocol):
    """Opaque capability turning raw content into structured product data.

    ``confidence`` may be reported on a 0..100 scale or as a 0..1 fraction.
    Any value in [0, 1], including exactly 1, is read as a fraction, so an
    extractor on the 0..100 scale reports 1 as 100% rather than 1%.
    """

    def extract(
        self,
        content: str,
        content_type: ContentType,
        template_config: TemplateConfig | None,
    ) -> ExtractionResult | Mapping[str, Any]:
        ...


@runtime_checkable
class InventoryGateway(Protocol):
    """Boundary that creates or updates catalog and stock records."""

    def commit_product(self, merged_data: dict[str, Any]) -> str:
        ...


_EXTRACTOR: Extractor | None = None
_INVENTORY: InventoryGateway | None = None


def load_object(path: str) -> Any:
    """
    Resolve ``package.module:attribute`` (or ``package.module.attribute``).

    Classes are instantiated without arguments; any other object is returned as is.

    Raises:
        ConfigurationError: If the module or attribute cannot be resolved
    """
    module_name, sep, attribute = path.partition(":")
    if not sep:
        module_name, _, attribute = path.rpartition(".")
    if not module_name or not attribute:
        raise ConfigurationError(f"Invalid dotted path '{path}'")

    try:
        module = import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import module '{module_name}': {exc}") from exc

    try:
        target = getattr(module, attribute)
    except AttributeError as exc:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attribute}'") from exc

    if isinstance(target, type):
        return target()
    return target


def set_extractor(extractor: Extractor | None) -> None:
    """Register the extractor used by workers and the API (``None`` clears it)."""

    global _EXTRACTOR
    _EXTRACTOR = extractor


def set_inventory_gateway(gateway: InventoryGateway | None) -> None:
    """Register the inventory gateway used by workers and the API (``None`` clears it)."""

    global _INVENTORY
    _INVENTORY = gateway


def get_extractor() -> Extractor:
    """Return the registered extractor, loading it from settings on first use."""

    global _EXTRACTOR
    if _EXTRACTOR is None:
        path = get_settings().extractor_path
        if not path:
            raise ConfigurationError(
                "No extractor configured. Set INTAKE_EXTRACTOR_PATH to a dotted path."
            )
        candidate = load_object(path)
        if not isinstance(candidate, Extractor):
            raise ConfigurationError(f"'{path}' does not provide an extract() method")
        _EXTRACTOR = candidate
    return _EXTRACTOR


def get_inventory_gateway() -> InventoryGateway:
    """Return the registered inventory gateway, loading it from settings on first use."""

    global _INVENTORY
    if _INVENTORY is None:
        path = get_settings().inventory_path
        if not path:
            raise ConfigurationError(
                "No inventory gateway configured. Set INTAKE_INVENTORY_PATH to a dotted path."
            )
        candidate = load_object(path)
        if not isinstance(candidate, InventoryGateway):
            raise ConfigurationError(f"'{path}' does not provide a commit_product() method")
        _INVENTORY = candidate
    return _INVENTORY
