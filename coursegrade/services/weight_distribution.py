"""
Weight Distribution Calculator

Splits a fixed weight budget (percentage points) between sibling items
proportional to a numeric basis: duration for lectures, marks for exams.

Deterministic by construction:
- Decimal arithmetic only
- Items ordered by (sort_key, id), never by input order
- All items but the last are truncated to the configured precision;
  the last item absorbs the remainder so the sum is exact
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Iterable, List, Optional, Sequence, Union

from coursegrade.config.weight_settings import get_weight_settings, quantizer_for
from coursegrade.exceptions import InvalidInputError
from coursegrade.schemas.weights import WeightAssignment, WeightItem

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    """Convert a numeric input to a finite Decimal without binary float artefacts."""
    if isinstance(value, bool):
        raise InvalidInputError(f"Expected a number, got {value!r}")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise InvalidInputError(f"Expected a number, got {value!r}")
    if not number.is_finite():
        raise InvalidInputError(f"Expected a finite number, got {value!r}")
    return number


def _ordered(items: Iterable[WeightItem]) -> List[WeightItem]:
    return sorted(items, key=lambda item: (item.sort_key, item.id))


def _raw_shares(budget: Decimal, items: Sequence[WeightItem]) -> List[Decimal]:
    """Full-precision shares before truncation."""
    if len(items) == 1:
        return [budget]

    total_basis = sum((item.basis for item in items), ZERO)
    if total_basis == ZERO:
        equal_share = budget / Decimal(len(items))
        return [equal_share for _ in items]

    return [budget * item.basis / total_basis for item in items]


def distribute(
    total_budget: Number,
    items: Iterable[WeightItem],
    precision: Optional[int] = None,
) -> List[WeightAssignment]:
    """
    Divide total_budget between items proportional to their basis.

    Args:
        total_budget: Non-negative percentage points to allocate
        items: Siblings with non-negative basis values
        precision: Decimal places for truncation (defaults to settings)

    Returns:
        One WeightAssignment per item, ordered by (sort_key, id).
        Weights sum exactly to total_budget.

    Raises:
        InvalidInputError: negative or non-finite budget or basis
    """
    budget = to_decimal(total_budget)
    if budget < ZERO:
        raise InvalidInputError(f"Weight budget must be non-negative, got {budget}")

    ordered = _ordered(items)
    for item in ordered:
        if not item.basis.is_finite() or item.basis < ZERO:
            raise InvalidInputError(
                f"Basis for item {item.id} must be a non-negative number, got {item.basis}"
            )

    if not ordered:
        return []

    if precision is None:
        quantizer = get_weight_settings().quantizer
    else:
        quantizer = quantizer_for(precision)

    shares = _raw_shares(budget, ordered)

    assignments: List[WeightAssignment] = []
    allocated = ZERO
    for item, share in zip(ordered[:-1], shares[:-1]):
        weight = share.quantize(quantizer, rounding=ROUND_DOWN)
        allocated += weight
        assignments.append(WeightAssignment(id=item.id, weight=weight))

    # Remainder to the last item in stable order
    assignments.append(WeightAssignment(id=ordered[-1].id, weight=budget - allocated))
    return assignments


def items_from_pairs(pairs: Iterable[tuple]) -> List[WeightItem]:
    """Build WeightItems from (id, basis) or (id, basis, sort_key) tuples."""
    items = []
    for pair in pairs:
        if len(pair) == 3:
            item_id, basis, sort_key = pair
        else:
            item_id, basis = pair
            sort_key = 0
        items.append(WeightItem(id=item_id, basis=to_decimal(basis), sort_key=sort_key or 0))
    return items
