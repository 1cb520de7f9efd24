"""
Configuration Schema (``orderflow_config.schema``).

Frozen dataclasses describing the runtime configuration.  Every value
(the default tax rate included) is an explicit field and reaches services
by constructor injection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class OverReceiptPolicy(str, Enum):
    """What receiving does with a quantity above the line's remaining."""

    CLAMP = "clamp"
    REJECT = "reject"


@dataclass(frozen=True)
class TaxConfig:
    """Tax rate (percent) applied to taxable lines."""

    default_rate: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.default_rate < 0 or self.default_rate > 100:
            raise ValueError(
                f"tax.default_rate must be between 0 and 100, got {self.default_rate}"
            )


@dataclass(frozen=True)
class ReceivingConfig:
    over_receipt_policy: OverReceiptPolicy = OverReceiptPolicy.CLAMP


@dataclass(frozen=True)
class DocumentGraphConfig:
    backfill_legacy_references: bool = True


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///orderflow.db"
    echo: bool = False


@dataclass(frozen=True)
class OrderflowConfig:
    """Root configuration object."""

    tax: TaxConfig = field(default_factory=TaxConfig)
    receiving: ReceivingConfig = field(default_factory=ReceivingConfig)
    document_graph: DocumentGraphConfig = field(default_factory=DocumentGraphConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
