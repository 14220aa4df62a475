"""Wizard position and saved-progress models."""

from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, Field

from itr_wizard.models.filing import GenerationResult, ServiceRecommendation, TaxCalculationResult
from itr_wizard.models.income import IncomeArea, IncomeComposition
from itr_wizard.models.taxpayer import TaxpayerProfile, new_profile

SNAPSHOT_SCHEMA_VERSION = 1


class WizardStep(IntEnum):
    """Ordered stages of the filing workflow."""

    PERSONAL_DETAILS = 0
    TAX_DATA_INPUT = 1
    TAX_RESULTS = 2
    ITR_GENERATION = 3

    @property
    def title(self) -> str:
        return STEP_INFO[self]["title"]


STEP_INFO = {
    WizardStep.PERSONAL_DETAILS: {
        "title": "Personal Details",
        "description": "Identity, contact and refund bank details",
    },
    WizardStep.TAX_DATA_INPUT: {
        "title": "Tax Data",
        "description": "Salary, investment and business income",
    },
    WizardStep.TAX_RESULTS: {
        "title": "Tax Results",
        "description": "Tax liability and refund",
    },
    WizardStep.ITR_GENERATION: {
        "title": "ITR Generation",
        "description": "Form recommendation and download",
    },
}


class WizardState(BaseModel):
    """Everything the wizard has accumulated during a session."""

    step: WizardStep = Field(default=WizardStep.PERSONAL_DETAILS)
    profile: TaxpayerProfile = Field(default_factory=new_profile)
    composition: IncomeComposition = Field(default_factory=IncomeComposition)
    calculation: TaxCalculationResult | None = Field(
        default=None, description="Result for the current composition, if calculated"
    )
    service_recommendation: ServiceRecommendation | None = Field(default=None)
    generation: GenerationResult | None = Field(default=None)
    import_sourced_areas: frozenset[IncomeArea] = Field(
        default_factory=frozenset,
        description="Income areas filled from an imported summary",
    )


class PersistedSnapshot(BaseModel):
    """The subset of wizard state written to local storage."""

    profile: TaxpayerProfile
    composition: IncomeComposition
    current_step: WizardStep
    saved_at: datetime
