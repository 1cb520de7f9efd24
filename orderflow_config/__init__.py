"""
orderflow_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits below ``orderflow_services``.  The kernel, engines
    and modules never import from here; services receive an
    ``OrderflowConfig`` by constructor injection.

Failure modes:
    - ``FileNotFoundError`` -- ``ORDERFLOW_CONFIG`` names a missing file.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from orderflow_config.loader import load_config, parse_config
from orderflow_config.schema import (
    DatabaseConfig,
    DocumentGraphConfig,
    OrderflowConfig,
    OverReceiptPolicy,
    ReceivingConfig,
    TaxConfig,
)

_logger = logging.getLogger("orderflow.config")

CONFIG_ENV_VAR = "ORDERFLOW_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | None = None) -> OrderflowConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``config_path``, then the file named by the
    ``ORDERFLOW_CONFIG`` environment variable, then the packaged defaults.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    config = load_config(config_path)
    _logger.info(
        "config_loaded",
        extra={
            "config_path": str(config_path),
            "tax_rate": str(config.tax.default_rate),
            "over_receipt_policy": config.receiving.over_receipt_policy.value,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "DocumentGraphConfig",
    "OrderflowConfig",
    "OverReceiptPolicy",
    "ReceivingConfig",
    "TaxConfig",
    "get_active_config",
    "load_config",
    "parse_config",
]
