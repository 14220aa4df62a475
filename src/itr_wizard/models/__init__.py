"""Data models for taxpayer profiles, income composition and wizard state."""

from itr_wizard.models.filing import (
    DownloadFormat,
    DownloadPayload,
    FormCategory,
    GenerationRequest,
    GenerationResult,
    RecommendationRequest,
    RecommendationResult,
    ServiceRecommendation,
    TaxCalculationResult,
)
from itr_wizard.models.income import (
    BusinessExpenseItem,
    BusinessIncomeItem,
    ImportedIncomeSummary,
    IncomeArea,
    IncomeComposition,
)
from itr_wizard.models.taxpayer import Gender, MaritalStatus, TaxpayerProfile
from itr_wizard.models.wizard import PersistedSnapshot, WizardState, WizardStep, STEP_INFO

__all__ = [
    "BusinessExpenseItem",
    "BusinessIncomeItem",
    "DownloadFormat",
    "DownloadPayload",
    "FormCategory",
    "Gender",
    "GenerationRequest",
    "GenerationResult",
    "ImportedIncomeSummary",
    "IncomeArea",
    "IncomeComposition",
    "MaritalStatus",
    "PersistedSnapshot",
    "RecommendationRequest",
    "RecommendationResult",
    "ServiceRecommendation",
    "STEP_INFO",
    "TaxCalculationResult",
    "TaxpayerProfile",
    "WizardState",
    "WizardStep",
]
