"""
orderflow_engines.line_pricing -- Line totals, tax and document totals.

Responsibility:
    Price order and invoice lines: ``line_total = quantity * unit_price``,
    per-line tax at an explicitly supplied rate for taxable lines, and the
    document subtotal / tax / total.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The tax rate is a
    parameter (from ``orderflow_config``), never read from ambient state.

Invariants enforced:
    - Amounts are quantized to cents with ROUND_HALF_UP.
    - ``total = subtotal + tax``; non-taxable lines carry zero tax.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from orderflow_engines.tracer import traced_engine

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LinePricing:
    line_total: Decimal
    tax_rate: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def price_line(
    quantity: Decimal,
    unit_price: Decimal,
    is_taxable: bool,
    tax_rate: Decimal,
) -> LinePricing:
    line_total = to_cents(quantity * unit_price)
    rate = tax_rate if is_taxable else ZERO
    return LinePricing(
        line_total=line_total,
        tax_rate=rate,
        tax_amount=to_cents(line_total * rate / HUNDRED),
    )


@traced_engine("line_pricing", "1.0", fingerprint_fields=("lines",))
def document_totals(*, lines: Iterable[LinePricing]) -> DocumentTotals:
    lines = tuple(lines)
    subtotal = sum((p.line_total for p in lines), ZERO)
    tax = sum((p.tax_amount for p in lines), ZERO)
    return DocumentTotals(
        subtotal=to_cents(subtotal),
        tax_amount=to_cents(tax),
        total_amount=to_cents(subtotal + tax),
    )
