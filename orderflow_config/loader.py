"""
Configuration Loader (``orderflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``orderflow_config.schema`` dataclasses.  Services never call this
directly; the runtime entry point is ``orderflow_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or an invalid value  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from orderflow_config.schema import (
    DatabaseConfig,
    DocumentGraphConfig,
    OrderflowConfig,
    OverReceiptPolicy,
    ReceivingConfig,
    TaxConfig,
)

_SECTIONS = {
    "tax": {"default_rate"},
    "receiving": {"over_receipt_policy"},
    "document_graph": {"backfill_legacy_references"},
    "database": {"url", "echo"},
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _check_keys(data: dict[str, Any]) -> None:
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {sorted(unknown)}")
    for section, allowed in _SECTIONS.items():
        body = data.get(section) or {}
        if not isinstance(body, dict):
            raise ValueError(f"Section '{section}' must be a mapping")
        extra = set(body) - allowed
        if extra:
            raise ValueError(f"Unknown key(s) in '{section}': {sorted(extra)}")


def _parse_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def parse_config(data: dict[str, Any]) -> OrderflowConfig:
    """Parse a raw mapping into an ``OrderflowConfig``."""
    _check_keys(data)

    tax = data.get("tax") or {}
    receiving = data.get("receiving") or {}
    graph = data.get("document_graph") or {}
    database = data.get("database") or {}

    tax_config = TaxConfig()
    if "default_rate" in tax:
        tax_config = TaxConfig(
            default_rate=_parse_decimal(tax["default_rate"], "tax.default_rate")
        )

    receiving_config = ReceivingConfig()
    if "over_receipt_policy" in receiving:
        try:
            policy = OverReceiptPolicy(receiving["over_receipt_policy"])
        except ValueError as exc:
            raise ValueError(
                "receiving.over_receipt_policy must be one of "
                f"{[p.value for p in OverReceiptPolicy]}"
            ) from exc
        receiving_config = ReceivingConfig(over_receipt_policy=policy)

    graph_config = DocumentGraphConfig()
    if "backfill_legacy_references" in graph:
        graph_config = DocumentGraphConfig(
            backfill_legacy_references=_parse_bool(
                graph["backfill_legacy_references"],
                "document_graph.backfill_legacy_references",
            )
        )

    database_config = DatabaseConfig(
        url=str(database.get("url", DatabaseConfig.url)),
        echo=_parse_bool(database.get("echo", False), "database.echo"),
    )

    return OrderflowConfig(
        tax=tax_config,
        receiving=receiving_config,
        document_graph=graph_config,
        database=database_config,
    )


def load_config(path: Path) -> OrderflowConfig:
    """Load and parse the YAML file at ``path``."""
    return parse_config(load_yaml_file(path))
