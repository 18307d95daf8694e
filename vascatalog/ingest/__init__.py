"""Supplier ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from vascatalog.ingest.models import SupplierSettings

SUPPLIERS_PATH = pathlib.Path(__file__).with_name("suppliers.yml")


def load_supplier_settings(path: pathlib.Path | None = None) -> dict[str, SupplierSettings]:
    data = yaml.safe_load((path or SUPPLIERS_PATH).read_text()) or []
    settings = [SupplierSettings(**item) for item in data]
    return {item.code: item for item in settings}


def supplier_priority(settings: dict[str, SupplierSettings]) -> dict[str, int]:
    return {code: item.priority for code, item in settings.items()}
