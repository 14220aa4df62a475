"""Rule-based ITR form recommendation.

The rules are applied in order and the first match wins:

1. Any business or professional income (even a loss) requires ITR-3.
2. Capital gains, income above ₹50 lakh, foreign income or assets,
   house property income or filing as a HUF require ITR-2.
3. Everything else can use ITR-1 (Sahaj).
"""

from itr_wizard.merger import area_present, present_business_fields
from itr_wizard.models.filing import FormCategory, RecommendationResult
from itr_wizard.models.income import BUSINESS_INCOME_FIELDS, IncomeArea, IncomeComposition
from itr_wizard.utils import format_inr

HIGH_INCOME_THRESHOLD = 5_000_000  # ₹50 lakh

FIELD_LABELS = {
    "intraday_trading_income": "intraday trading income",
    "professional_income": "professional income",
    "business_income_small": "business income",
    "large_business_income": "large business income",
    "other_business_income": "other business income",
    "trading_business_expenses": "trading expenses",
    "professional_expenses": "professional expenses",
    "business_expenses_small": "business operating expenses",
    "large_business_expenses": "large business expenses",
    "business_expenses": "other business expenses",
}

REQUIREMENTS = {
    FormCategory.ITR1: (
        "Total income should not exceed ₹50,00,000",
        "Only salary, interest and dividend income allowed",
        "No capital gains allowed",
        "No business/professional income",
        "Individual taxpayers only (not HUF)",
    ),
    FormCategory.ITR2: (
        "For individuals and HUFs",
        "Can have multiple income sources",
        "Allows capital gains and house property income",
        "Can declare foreign income and assets",
        "No business/professional income allowed",
    ),
    FormCategory.ITR3: (
        "For individuals and HUFs with business/professional income",
        "Required for intraday trading income",
        "Allows all types of income including business",
        "Balance Sheet and P&L statements may be required",
        "Audit may be required if business income exceeds certain limits",
    ),
}

LIMITATIONS = {
    FormCategory.ITR1: (
        "Income limit of ₹50,00,000",
        "No house property income",
        "Cannot report capital gains",
        "Limited deductions available (new tax regime focus)",
    ),
    FormCategory.ITR2: (
        "Cannot be used for business/professional income",
        "More complex than ITR-1",
        "Requires detailed reporting of all income sources",
    ),
    FormCategory.ITR3: (
        "Most complex ITR form",
        "Requires detailed business records",
        "May require professional accounting help",
        "Balance Sheet and P&L statements required for certain cases",
        "Audit compliance may be necessary",
    ),
}


def _join(labels: list[str]) -> str:
    if len(labels) <= 1:
        return "".join(labels)
    return ", ".join(labels[:-1]) + " and " + labels[-1]


def has_business_income(composition: IncomeComposition) -> bool:
    """Business presence: declared toggle, line items, or non-zero business fields."""
    return bool(
        composition.has_business_income
        or composition.business_income_items
        or composition.business_expense_items
        or area_present(composition, IncomeArea.BUSINESS_INCOME)
    )


def has_foreign_income(composition: IncomeComposition) -> bool:
    return composition.has_foreign_income or composition.foreign_income > 0


def has_foreign_assets(composition: IncomeComposition) -> bool:
    return bool(
        composition.has_foreign_assets
        or composition.foreign_assets
        or area_present(composition, IncomeArea.FOREIGN_ASSETS)
    )


def has_capital_gains(composition: IncomeComposition) -> bool:
    return bool(
        composition.has_capital_gains
        or composition.capital_gain_items
        or area_present(composition, IncomeArea.CAPITAL_GAINS)
    )


def has_house_property(composition: IncomeComposition) -> bool:
    return bool(composition.has_house_property or composition.house_properties)


def _intermediate_triggers(composition: IncomeComposition, total_income: float) -> list[str]:
    triggers = []
    if has_capital_gains(composition):
        triggers.append("capital gains")
    if total_income > HIGH_INCOME_THRESHOLD:
        triggers.append(f"total income above {format_inr(HIGH_INCOME_THRESHOLD)}")
    if has_foreign_income(composition):
        triggers.append("foreign income")
    if has_foreign_assets(composition):
        triggers.append("foreign assets")
    if has_house_property(composition):
        triggers.append("house property income")
    if composition.is_huf:
        triggers.append("filing as a HUF")
    return triggers


def recommend(composition: IncomeComposition, total_income: float) -> RecommendationResult:
    """
    Recommend the ITR form a taxpayer must file.

    Deterministic and free of side effects.

    Args:
        composition: The taxpayer's income composition
        total_income: Gross total income used for the ₹50 lakh threshold

    Returns:
        RecommendationResult naming the category and what triggered it
    """
    if has_business_income(composition):
        fields = present_business_fields(composition)
        income_fields = [f for f in fields if f in BUSINESS_INCOME_FIELDS]
        labels = [FIELD_LABELS[f] for f in (income_fields or fields)] or ["declared business income"]
        category = FormCategory.ITR3
        reason = (
            "ITR-3 is required for business or professional income. "
            f"Triggered by: {_join(labels)}."
        )
        triggers = labels
    else:
        triggers = _intermediate_triggers(composition, total_income)
        if triggers:
            category = FormCategory.ITR2
            reason = f"ITR-2 is recommended due to {_join(triggers)}."
        else:
            category = FormCategory.ITR1
            reason = (
                "Your income profile fits ITR-1 (Sahaj) criteria: "
                "salary income up to ₹50L with simple income sources."
            )

    return RecommendationResult(
        category=category,
        reason=reason,
        triggers=tuple(triggers),
        requirements=REQUIREMENTS[category],
        limitations=LIMITATIONS[category],
    )


def eligibility(composition: IncomeComposition, total_income: float) -> tuple[bool, bool]:
    """Whether ITR-1 and ITR-2 may be used, in that order."""
    can_use_itr2 = not has_business_income(composition)
    can_use_itr1 = can_use_itr2 and not _intermediate_triggers(composition, total_income)
    return can_use_itr1, can_use_itr2


def summarize(result: RecommendationResult, total_income: float) -> str:
    """One-line summary such as the service returns with its recommendation."""
    return (
        f"Based on your income of {format_inr(total_income)}, {result.reason} "
        f"Recommended form: {result.category.value}"
    )
