"""Form categories, recommendation results and filing service exchange models."""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from itr_wizard.models.income import IncomeComposition, WireModel
from itr_wizard.models.taxpayer import TaxpayerProfile


class FormCategory(str, Enum):
    """Income-tax return form categories, simplest first."""

    ITR1 = "ITR1"  # Salaried, low complexity
    ITR2 = "ITR2"  # Capital gains, foreign assets, higher income
    ITR3 = "ITR3"  # Business or professional income

    @property
    def display_name(self) -> str:
        return FORM_INFO[self]["name"]


FORM_INFO = {
    FormCategory.ITR1: {
        "name": "ITR-1 (Sahaj)",
        "description": "Salary, one house property and other sources",
    },
    FormCategory.ITR2: {
        "name": "ITR-2",
        "description": "Capital gains, foreign income or assets, income above ₹50 lakh",
    },
    FormCategory.ITR3: {
        "name": "ITR-3",
        "description": "Business or professional income, including intraday trading",
    },
}


class RecommendationResult(BaseModel):
    """Locally derived form recommendation. Never persisted."""

    model_config = ConfigDict(frozen=True)

    category: FormCategory = Field(description="Recommended form category")
    reason: str = Field(description="Why this category applies")
    triggers: tuple[str, ...] = Field(
        default=(), description="Income areas that forced the decision"
    )
    requirements: tuple[str, ...] = Field(default=())
    limitations: tuple[str, ...] = Field(default=())


class TaxSlab(WireModel):
    """Tax computed for one income slab."""

    slab_description: str = Field(default="")
    income_in_slab: float = Field(default=0.0)
    tax_rate: float = Field(default=0.0)
    tax_amount: float = Field(default=0.0)


class TaxCalculationResult(BaseModel):
    """Liability and refund figures returned by the calculation service."""

    total_income: float = Field(description="Gross total income sent for calculation")
    taxable_income: float
    income_tax: float = Field(default=0.0, description="Tax before surcharge and cess")
    surcharge: float = Field(default=0.0)
    cess: float = Field(default=0.0, description="Health and education cess")
    total_tax: float = Field(default=0.0, description="Tax including surcharge and cess")
    effective_tax_rate: float = Field(default=0.0)
    tax_paid: float = Field(default=0.0, description="TDS already deducted")
    refund_amount: float = Field(default=0.0)
    additional_tax_due: float = Field(default=0.0)
    slabs: list[TaxSlab] = Field(default_factory=list)

    @property
    def is_refund_due(self) -> bool:
        return self.refund_amount > 0

    @property
    def refund_or_demand(self) -> float:
        """Positive for a refund, negative for tax payable."""
        return self.refund_amount - self.additional_tax_due

    @classmethod
    def from_response(
        cls, data: dict[str, Any], total_income: float, taxable_income: float
    ) -> "TaxCalculationResult":
        """Build a result from the service's calculate response body."""
        calc = data.get("taxCalculation") or {}
        refund = data.get("refundCalculation") or {}
        return cls(
            total_income=total_income,
            taxable_income=calc.get("taxableIncome", taxable_income),
            income_tax=calc.get("totalTax", 0.0),
            surcharge=calc.get("surcharge", 0.0),
            cess=calc.get("healthAndEducationCess", 0.0),
            total_tax=calc.get("totalTaxWithCess", 0.0),
            effective_tax_rate=calc.get("effectiveTaxRate", 0.0),
            tax_paid=refund.get("tdsDeducted", 0.0),
            refund_amount=refund.get("refundAmount", 0.0),
            additional_tax_due=refund.get("additionalTaxDue", 0.0),
            slabs=[TaxSlab.model_validate(s) for s in calc.get("taxBreakdown", [])],
        )


class RecommendationRequest(WireModel):
    """Body of a recommendation request."""

    income_composition: IncomeComposition
    has_house_property: bool = False
    has_capital_gains: bool = False
    has_business_income: bool = False
    has_foreign_income: bool = False
    has_foreign_assets: bool = False
    is_huf: bool = False
    total_income: float = 0.0


class ServiceRecommendation(WireModel):
    """Recommendation returned by the filing service."""

    recommended_type: str = Field(
        validation_alias=AliasChoices("recommendedITRType", "recommendedType", "recommended_type")
    )
    reason: str = Field(default="")
    requirements: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)
    can_use_simplest: bool = Field(
        default=False,
        validation_alias=AliasChoices("canUseITR1", "canUseSimplest", "can_use_simplest"),
    )
    can_use_intermediate: bool = Field(
        default=False,
        validation_alias=AliasChoices("canUseITR2", "canUseIntermediate", "can_use_intermediate"),
    )
    summary: str = Field(
        default="",
        validation_alias=AliasChoices("recommendationSummary", "summary"),
    )


class GenerationRequest(WireModel):
    """Body of a generation or download request."""

    income_composition: IncomeComposition
    taxpayer_profile: TaxpayerProfile
    preferred_form_type: str | None = None


class GenerationResult(WireModel):
    """Outcome of a return generation request."""

    is_success: bool = Field(default=False)
    recommended_type: str = Field(
        default="",
        validation_alias=AliasChoices("recommendedITRType", "recommendedType", "recommended_type"),
    )
    form_xml: str = Field(
        default="", validation_alias=AliasChoices("itrFormXml", "formXml", "form_xml")
    )
    form_json: str = Field(
        default="", validation_alias=AliasChoices("itrFormJson", "formJson", "form_json")
    )
    file_name: str = Field(default="")
    validation_errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    generation_summary: str = Field(default="")


class DownloadFormat(str, Enum):
    """Downloadable return formats."""

    XML = "xml"
    JSON = "json"

    @property
    def media_type(self) -> str:
        return "application/xml" if self is DownloadFormat.XML else "application/json"


class DownloadPayload(BaseModel):
    """A downloaded return file."""

    content: bytes
    file_name: str
    media_type: str
