"""Raw Dune rows to fixed-precision valuation records."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, getcontext, localcontext
from typing import Any, Iterable, Optional

from .models import EvaluationResult, ValuationRow

USD_PLACES = Decimal("0.01")
ETH_PLACES = Decimal("0.000001")


def _to_decimal(value: Any) -> Decimal:
    """Coerce a raw numeric field, falling back to zero."""
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(0)
    if not number.is_finite() or number.adjusted() > getcontext().Emax:
        return Decimal(0)
    return number


def format_amount(value: Any, places: Decimal) -> str:
    number = _to_decimal(value)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, number.adjusted() - places.adjusted() + 2)
        try:
            amount = number.quantize(places, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            # exponent beyond the context's Emax; treated like any other unusable value
            amount = Decimal(0).quantize(places)
    # quantize keeps the sign of a rounded-away negative, e.g. -0.001 -> -0.00
    if amount.is_zero():
        amount = abs(amount)
    return f"{amount:f}"


def format_row(row: dict) -> ValuationRow:
    category = row.get("category")
    return ValuationRow(
        category="" if category is None else str(category),
        usd_valuation=format_amount(row.get("usd_valuation"), USD_PLACES),
        eth_valuation=format_amount(row.get("eth_valuation"), ETH_PLACES),
    )


def format_result(
    level: Any,
    cm_type: Any,
    rows: Iterable[dict],
    donation_address: Optional[str] = None,
) -> EvaluationResult:
    """Build the evaluation result from completed execution rows."""
    return EvaluationResult(
        level=str(level),
        cm_type=str(cm_type),
        valuations=[format_row(r) for r in rows],
        donation_address=donation_address,
    )


def find_final_valuation(result: EvaluationResult) -> Optional[ValuationRow]:
    """The summary row shown on the result card, if the query produced one."""
    return result.final
