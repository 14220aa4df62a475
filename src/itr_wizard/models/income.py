"""Income composition models.

Every rupee amount is a non-negative float that defaults to zero. Missing
values (``None``) are normalized to zero when a model is built, so no
downstream computation ever sees an absent amount.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, create_model, field_validator
from pydantic.alias_generators import to_camel

SALARY_FIELDS = ("salary_section17", "perquisites", "profits_in_lieu")

OTHER_SOURCE_FIELDS = ("interest_on_savings", "interest_on_fixed_deposits", "dividend_income")

# Shared by the merger's presence test and the recommendation engine.
CAPITAL_GAINS_FIELDS = (
    "stocks_stcg",
    "stocks_ltcg",
    "mutual_funds_stcg",
    "mutual_funds_ltcg",
    "fno_gains",
    "real_estate_stcg",
    "real_estate_ltcg",
    "bonds_stcg",
    "bonds_ltcg",
    "gold_stcg",
    "gold_ltcg",
    "crypto_gains",
    "us_stocks_stcg",
    "us_stocks_ltcg",
    "other_foreign_assets_gains",
    "rsu_gains",
    "esop_gains",
    "essp_gains",
)

FOREIGN_ASSET_FIELDS = ("us_stocks_stcg", "us_stocks_ltcg", "other_foreign_assets_gains")

BUSINESS_INCOME_FIELDS = (
    "intraday_trading_income",
    "professional_income",
    "business_income_small",
    "large_business_income",
    "other_business_income",
)

# Positionally paired with BUSINESS_INCOME_FIELDS.
BUSINESS_EXPENSE_FIELDS = (
    "trading_business_expenses",
    "professional_expenses",
    "business_expenses_small",
    "large_business_expenses",
    "business_expenses",
)

BUSINESS_FIELDS = BUSINESS_INCOME_FIELDS + BUSINESS_EXPENSE_FIELDS

DEDUCTION_FIELDS = ("standard_deduction", "professional_tax", "total_tax_deducted")

AMOUNT_FIELDS = (
    SALARY_FIELDS
    + OTHER_SOURCE_FIELDS
    + CAPITAL_GAINS_FIELDS
    + BUSINESS_FIELDS
    + DEDUCTION_FIELDS
)

IDENTITY_FIELDS = (
    "employee_name",
    "pan",
    "assessment_year",
    "financial_year",
    "employer_name",
    "employer_tan",
)

DEFAULT_STANDARD_DEDUCTION = 75000.0


class IncomeArea(str, Enum):
    """Income areas that can arrive from manual entry or an imported summary."""

    CAPITAL_GAINS = "capital_gains"
    FOREIGN_ASSETS = "foreign_assets"
    BUSINESS_INCOME = "business_income"


AREA_FIELDS = {
    IncomeArea.CAPITAL_GAINS: CAPITAL_GAINS_FIELDS,
    IncomeArea.FOREIGN_ASSETS: FOREIGN_ASSET_FIELDS,
    IncomeArea.BUSINESS_INCOME: BUSINESS_FIELDS,
}

# Wire names that do not follow plain camelCase.
_WIRE_NAMES = {
    "stocks_stcg": "stocksSTCG",
    "stocks_ltcg": "stocksLTCG",
    "mutual_funds_stcg": "mutualFundsSTCG",
    "mutual_funds_ltcg": "mutualFundsLTCG",
    "real_estate_stcg": "realEstateSTCG",
    "real_estate_ltcg": "realEstateLTCG",
    "bonds_stcg": "bondsSTCG",
    "bonds_ltcg": "bondsLTCG",
    "gold_stcg": "goldSTCG",
    "gold_ltcg": "goldLTCG",
    "us_stocks_stcg": "usStocksSTCG",
    "us_stocks_ltcg": "usStocksLTCG",
    "employer_tan": "tan",
    "is_huf": "isHUF",
}


def wire_name(field_name: str) -> str:
    """Return the service-side JSON name of a model field."""
    return _WIRE_NAMES.get(field_name) or to_camel(field_name)


def _zero_if_missing(value):
    if value is None or value == "":
        return 0.0
    return value


class WireModel(BaseModel):
    """Base for models exchanged with the filing service in camelCase."""

    model_config = ConfigDict(alias_generator=wire_name, populate_by_name=True)


class HouseProperty(WireModel):
    """A house property declared by the taxpayer."""

    property_address: str = Field(default="", description="Address of the property")
    annual_value: float = Field(default=0.0, ge=0, description="Gross annual value")
    property_tax: float = Field(default=0.0, ge=0, description="Municipal taxes paid")
    interest_on_loan: float = Field(default=0.0, ge=0, description="Home loan interest paid")


class CapitalGainItem(WireModel):
    """A single capital asset sale entered manually."""

    asset_type: str = Field(description="Type of asset sold")
    date_of_sale: str | None = Field(default=None, description="Sale date (YYYY-MM-DD)")
    date_of_purchase: str | None = Field(default=None, description="Purchase date (YYYY-MM-DD)")
    sale_price: float = Field(default=0.0, ge=0)
    cost_of_acquisition: float = Field(default=0.0, ge=0)
    cost_of_improvement: float = Field(default=0.0, ge=0)
    expenses_on_transfer: float = Field(default=0.0, ge=0)


class ForeignAsset(WireModel):
    """A foreign asset held during the year."""

    asset_type: str = Field(description="Type of foreign asset")
    country: str = Field(default="", description="Country where the asset is held")
    value: float = Field(default=0.0, ge=0, description="Value in the stated currency")
    currency: str = Field(default="USD")


class BusinessIncomeItem(WireModel):
    """A business income line item."""

    income_type: str = Field(description="Category label, e.g. Intraday Trading")
    description: str = Field(default="")
    gross_receipts: float = Field(default=0.0, ge=0)
    other_income: float = Field(default=0.0, ge=0)
    derived: bool = Field(
        default=False,
        description="Generated by the income merger rather than entered by the user",
    )


class BusinessExpenseItem(WireModel):
    """A business expense line item."""

    expense_category: str = Field(description="Category label, e.g. Trading Expenses")
    description: str = Field(default="")
    amount: float = Field(default=0.0, ge=0)
    date: str = Field(description="Expense date (YYYY-MM-DD)")
    is_capital_expense: bool = Field(default=False)
    derived: bool = Field(
        default=False,
        description="Generated by the income merger rather than entered by the user",
    )


class IncomeComposition(WireModel):
    """Categorized income, deductions and compliance details for one filing."""

    # Filing period and employer
    assessment_year: str = Field(default="", description="Assessment year, e.g. 2025-26")
    financial_year: str = Field(default="", description="Financial year, e.g. 2024-25")
    employer_name: str = Field(default="")
    employer_tan: str = Field(default="", description="Employer TAN")

    # Salary
    salary_section17: float = Field(default=0.0, ge=0, description="Salary under section 17(1)")
    perquisites: float = Field(default=0.0, ge=0, description="Perquisites under section 17(2)")
    profits_in_lieu: float = Field(default=0.0, ge=0, description="Profits under section 17(3)")
    standard_deduction: float = Field(default=DEFAULT_STANDARD_DEDUCTION, ge=0)
    professional_tax: float = Field(default=0.0, ge=0)
    total_tax_deducted: float = Field(default=0.0, ge=0, description="TDS deducted by employer")

    # Interest and dividends
    interest_on_savings: float = Field(default=0.0, ge=0)
    interest_on_fixed_deposits: float = Field(default=0.0, ge=0)
    dividend_income: float = Field(default=0.0, ge=0)

    # Capital gains
    stocks_stcg: float = Field(default=0.0, ge=0)
    stocks_ltcg: float = Field(default=0.0, ge=0)
    mutual_funds_stcg: float = Field(default=0.0, ge=0)
    mutual_funds_ltcg: float = Field(default=0.0, ge=0)
    fno_gains: float = Field(default=0.0, ge=0, description="Futures and options gains")
    real_estate_stcg: float = Field(default=0.0, ge=0)
    real_estate_ltcg: float = Field(default=0.0, ge=0)
    bonds_stcg: float = Field(default=0.0, ge=0)
    bonds_ltcg: float = Field(default=0.0, ge=0)
    gold_stcg: float = Field(default=0.0, ge=0)
    gold_ltcg: float = Field(default=0.0, ge=0)
    crypto_gains: float = Field(default=0.0, ge=0)
    us_stocks_stcg: float = Field(default=0.0, ge=0)
    us_stocks_ltcg: float = Field(default=0.0, ge=0)
    other_foreign_assets_gains: float = Field(default=0.0, ge=0)
    rsu_gains: float = Field(default=0.0, ge=0)
    esop_gains: float = Field(default=0.0, ge=0)
    essp_gains: float = Field(default=0.0, ge=0)

    # Business and professional income
    intraday_trading_income: float = Field(default=0.0, ge=0)
    trading_business_expenses: float = Field(default=0.0, ge=0)
    professional_income: float = Field(default=0.0, ge=0, description="Turnover below ₹75L")
    professional_expenses: float = Field(default=0.0, ge=0)
    business_income_small: float = Field(default=0.0, ge=0, description="Turnover below ₹3cr")
    business_expenses_small: float = Field(default=0.0, ge=0)
    large_business_income: float = Field(default=0.0, ge=0, description="Turnover ₹3cr or more")
    large_business_expenses: float = Field(default=0.0, ge=0)
    other_business_income: float = Field(default=0.0, ge=0)
    business_expenses: float = Field(default=0.0, ge=0)

    # Compliance
    is_presumptive_taxation: bool = Field(default=False)
    presumptive_income_rate: float = Field(default=0.0, ge=0, le=100)
    total_turnover: float = Field(default=0.0, ge=0)
    requires_audit: bool = Field(default=False)
    auditor_name: str = Field(default="")
    audit_report_date: str = Field(default="")
    total_assets: float = Field(default=0.0, ge=0)
    total_liabilities: float = Field(default=0.0, ge=0)
    gross_profit: float = Field(default=0.0)
    net_profit: float = Field(default=0.0)
    maintains_books_of_accounts: bool = Field(default=False)
    has_quantitative_details: bool = Field(default=False)
    quantitative_details: str = Field(default="")

    # Area toggles and user-entered details
    has_house_property: bool = Field(default=False)
    house_properties: list[HouseProperty] = Field(default_factory=list)
    has_capital_gains: bool = Field(default=False)
    capital_gain_items: list[CapitalGainItem] = Field(default_factory=list)
    has_foreign_income: bool = Field(default=False)
    foreign_income: float = Field(default=0.0, ge=0)
    has_foreign_assets: bool = Field(default=False)
    foreign_assets: list[ForeignAsset] = Field(default_factory=list)
    has_business_income: bool = Field(default=False)
    business_income_items: list[BusinessIncomeItem] = Field(default_factory=list)
    business_expense_items: list[BusinessExpenseItem] = Field(default_factory=list)
    is_huf: bool = Field(default=False, description="Filing as a Hindu Undivided Family")

    @field_validator(
        *(name for name in AMOUNT_FIELDS if name != "standard_deduction"),
        "presumptive_income_rate",
        "total_turnover",
        "total_assets",
        "total_liabilities",
        "gross_profit",
        "net_profit",
        "foreign_income",
        mode="before",
    )
    @classmethod
    def _normalize_missing(cls, value):
        return _zero_if_missing(value)

    @field_validator("standard_deduction", mode="before")
    @classmethod
    def _default_standard_deduction(cls, value):
        if value is None or value == "":
            return DEFAULT_STANDARD_DEDUCTION
        return value

    def amounts(self, fields: tuple[str, ...]) -> dict[str, float]:
        """Return the named amount fields as a dict."""
        return {name: getattr(self, name) for name in fields}

    def gross_salary(self) -> float:
        """Salary under sections 17(1), 17(2) and 17(3)."""
        return sum(self.amounts(SALARY_FIELDS).values())

    def other_sources_income(self) -> float:
        """Interest and dividend income."""
        return sum(self.amounts(OTHER_SOURCE_FIELDS).values())

    def total_capital_gains(self) -> float:
        """Sum of every capital-gains sub-category."""
        return sum(self.amounts(CAPITAL_GAINS_FIELDS).values())

    def net_business_income(self) -> float:
        """Business income net of matching expenses, each pair floored at zero.

        Intraday trading and other business income are netted together
        against trading and general business expenses.
        """
        trading = max(
            0.0,
            self.intraday_trading_income
            + self.other_business_income
            - self.trading_business_expenses
            - self.business_expenses,
        )
        rest = sum(
            max(0.0, getattr(self, income) - getattr(self, expense))
            for income, expense in zip(BUSINESS_INCOME_FIELDS[1:4], BUSINESS_EXPENSE_FIELDS[1:4])
        )
        return trading + rest

    def total_income(self) -> float:
        """Gross total income across all heads."""
        return (
            self.gross_salary()
            + self.other_sources_income()
            + self.total_capital_gains()
            + self.net_business_income()
        )

    def taxable_income(self) -> float:
        """Total income less standard deduction and professional tax."""
        return max(0.0, self.total_income() - self.standard_deduction - self.professional_tax)


class _SummaryIdentity(WireModel):
    """Identity and period fields carried by an imported summary."""

    model_config = ConfigDict(alias_generator=wire_name, populate_by_name=True, frozen=True)

    employee_name: str | None = Field(default=None)
    pan: str | None = Field(default=None)
    assessment_year: str | None = Field(default=None)
    financial_year: str | None = Field(default=None)
    employer_name: str | None = Field(default=None)
    employer_tan: str | None = Field(default=None)

    def provided_values(self) -> dict[str, float]:
        """Return only the amounts the imported document actually reported."""
        return {
            name: getattr(self, name)
            for name in AMOUNT_FIELDS
            if getattr(self, name) is not None
        }

    def provided_identity(self) -> dict[str, str]:
        """Return the non-blank identity and period fields."""
        return {
            name: getattr(self, name)
            for name in IDENTITY_FIELDS
            if getattr(self, name) not in (None, "")
        }


# Sparse mirror of IncomeComposition's amounts: None means "not reported".
ImportedIncomeSummary = create_model(
    "ImportedIncomeSummary",
    __base__=_SummaryIdentity,
    __doc__="Income figures surfaced by an imported Form 16 style summary.",
    **{name: (float | None, Field(default=None, ge=0)) for name in AMOUNT_FIELDS},
)
