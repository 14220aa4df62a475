"""Merge manually entered income with figures from an imported summary."""

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from itr_wizard.models.income import (
    AREA_FIELDS,
    BusinessExpenseItem,
    BusinessIncomeItem,
    IncomeArea,
    IncomeComposition,
)

logger = logging.getLogger(__name__)

# Source field -> (category label, description) for derived line items.
DERIVED_INCOME_ENTRIES = {
    "intraday_trading_income": ("Intraday Trading", "Income from intraday trading activities"),
    "professional_income": ("Professional Income", "Income from profession"),
    "business_income_small": ("Business Income", "Business income with turnover below ₹3 crore"),
    "large_business_income": ("Large Business Income", "Business income with turnover of ₹3 crore or more"),
    "other_business_income": ("Other Business Income", "Other business income"),
}

DERIVED_EXPENSE_ENTRIES = {
    "trading_business_expenses": ("Trading Expenses", "Expenses related to trading activities"),
    "professional_expenses": ("Professional Expenses", "Expenses related to the profession"),
    "business_expenses_small": ("Operating Expenses", "Operating expenses of the business"),
    "large_business_expenses": ("Large Business Expenses", "Expenses of the large business"),
    "business_expenses": ("Business Expenses", "Other business expenses"),
}

# Period and employer details copied from an import only when still blank.
_IMPORTED_DETAILS = ("assessment_year", "financial_year", "employer_name", "employer_tan")


def _amount(source: Any, name: str) -> float:
    if isinstance(source, Mapping):
        value = source.get(name)
    else:
        value = getattr(source, name, None)
    return value or 0.0


def area_total(source: Any, area: IncomeArea) -> float:
    """Sum an area's sub-fields, treating absent values as zero."""
    return sum(_amount(source, name) for name in AREA_FIELDS[area])


def area_present(source: Any, area: IncomeArea) -> bool:
    """
    Presence test for an income area.

    The area counts as held when the sum of its sub-fields is strictly
    positive. Works on an IncomeComposition, an ImportedIncomeSummary or a
    plain mapping of field names to amounts.
    """
    return area_total(source, area) > 0


def import_sourced_areas(summary: Any) -> frozenset[IncomeArea]:
    """Areas the imported summary reports figures for."""
    if summary is None:
        return frozenset()
    return frozenset(area for area in IncomeArea if area_present(summary, area))


def present_business_fields(source: Any) -> list[str]:
    """Business income and expense fields holding a non-zero amount."""
    return [name for name in AREA_FIELDS[IncomeArea.BUSINESS_INCOME] if _amount(source, name) > 0]


def _derived_income_items(merged: IncomeComposition) -> list[BusinessIncomeItem]:
    items = []
    for name, (label, description) in DERIVED_INCOME_ENTRIES.items():
        amount = getattr(merged, name)
        if amount > 0:
            items.append(BusinessIncomeItem(
                income_type=label,
                description=description,
                gross_receipts=amount,
                other_income=0.0,
                derived=True,
            ))
    return items


def _derived_expense_items(
    merged: IncomeComposition, prior_dates: dict[str, str], merged_on: date
) -> list[BusinessExpenseItem]:
    items = []
    for name, (label, description) in DERIVED_EXPENSE_ENTRIES.items():
        amount = getattr(merged, name)
        if amount > 0:
            items.append(BusinessExpenseItem(
                expense_category=label,
                description=description,
                amount=amount,
                date=prior_dates.get(label, merged_on.isoformat()),
                is_capital_expense=False,
                derived=True,
            ))
    return items


def merge_income(
    composition: IncomeComposition,
    summary: Any = None,
    *,
    merged_on: date | None = None,
) -> IncomeComposition:
    """
    Combine a manually built composition with an imported summary.

    Reported import figures replace the matching manual figures rather than
    being added to them, so overlapping fields are never double counted.
    Derived business line items are rebuilt from scratch on every call and
    keep their original date, which makes repeated merges idempotent.

    Args:
        composition: The composition accumulated so far
        summary: An ImportedIncomeSummary, or None to re-derive flags only
        merged_on: Date stamped on new derived expense items (defaults to today)

    Returns:
        A new IncomeComposition; the inputs are not modified
    """
    merged_on = merged_on or date.today()
    updates: dict[str, Any] = {}
    if summary is not None:
        updates.update(summary.provided_values())
        for name, value in summary.provided_identity().items():
            if name in _IMPORTED_DETAILS and not getattr(composition, name):
                updates[name] = value

    merged = composition.model_copy(update=updates, deep=True)

    if area_present(merged, IncomeArea.CAPITAL_GAINS):
        merged.has_capital_gains = True
    if area_present(merged, IncomeArea.FOREIGN_ASSETS):
        merged.has_foreign_assets = True
    merged.has_business_income = composition.has_business_income or area_present(
        merged, IncomeArea.BUSINESS_INCOME
    )

    prior_dates = {
        item.expense_category: item.date
        for item in merged.business_expense_items
        if item.derived
    }
    merged.business_income_items = [
        item for item in merged.business_income_items if not item.derived
    ] + _derived_income_items(merged)
    merged.business_expense_items = [
        item for item in merged.business_expense_items if not item.derived
    ] + _derived_expense_items(merged, prior_dates, merged_on)

    logger.debug(
        f"Merged composition: {len(updates)} imported fields, "
        f"business={merged.has_business_income}, "
        f"derived items={sum(i.derived for i in merged.business_income_items)}"
        f"/{sum(e.derived for e in merged.business_expense_items)}"
    )
    return merged


def entered_income(merged: IncomeComposition, business_declared: bool) -> IncomeComposition:
    """
    Reduce a merged composition to what the user entered or imported.

    Derived line items are dropped and the business flag goes back to the
    user's own declaration. The result is what gets stored; merge_income()
    rebuilds the derived view from it whenever one is needed.
    """
    return merged.model_copy(update={
        "has_business_income": business_declared,
        "business_income_items": [i for i in merged.business_income_items if not i.derived],
        "business_expense_items": [e for e in merged.business_expense_items if not e.derived],
    })
