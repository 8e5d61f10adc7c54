"""Tests for resolving extractor and inventory collaborators from settings."""

from __future__ import annotations

import json

import pytest

from catalog_intake.exceptions import ConfigurationError
from catalog_intake.pipeline.boundaries import (
    get_extractor,
    get_inventory_gateway,
    load_object,
    set_extractor,
)
from catalog_intake.pipeline.http import HttpExtractor
from catalog_intake.utils.config import get_settings


def test_load_object_accepts_colon_and_dotted_paths() -> None:
    assert load_object("json:loads") is json.loads
    assert load_object("json.dumps") is json.dumps


@pytest.mark.parametrize(
    "path",
    ["not_a_module_anywhere:thing", "json:not_there", "plainname", ":loads"],
)
def test_load_object_rejects_bad_paths(path: str) -> None:
    with pytest.raises(ConfigurationError):
        load_object(path)


def test_get_extractor_requires_configuration() -> None:
    with pytest.raises(ConfigurationError, match="INTAKE_EXTRACTOR_PATH"):
        get_extractor()


def test_get_inventory_gateway_requires_configuration() -> None:
    with pytest.raises(ConfigurationError, match="INTAKE_INVENTORY_PATH"):
        get_inventory_gateway()


def test_get_extractor_rejects_objects_without_extract(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTAKE_EXTRACTOR_PATH", "json:loads")
    get_settings(reload=True)

    with pytest.raises(ConfigurationError, match="extract"):
        get_extractor()


def test_get_extractor_instantiates_configured_class(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTAKE_EXTRACTOR_PATH", "catalog_intake.pipeline.http:HttpExtractor")
    monkeypatch.setenv("INTAKE_EXTRACTOR_URL", "http://extractor.internal")
    get_settings(reload=True)

    extractor = get_extractor()

    assert isinstance(extractor, HttpExtractor)
    assert get_extractor() is extractor
    extractor.close()


def test_registered_extractor_wins(make_extractor) -> None:
    extractor = make_extractor()
    set_extractor(extractor)

    assert get_extractor() is extractor
