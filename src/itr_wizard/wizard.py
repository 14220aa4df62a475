"""Step state machine for the filing wizard."""

import logging
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from itr_wizard.errors import (
    GenerationRejectedError,
    PersistenceError,
    RequestInFlightError,
    ServiceError,
    TransitionError,
    ValidationError,
)
from itr_wizard.merger import entered_income, import_sourced_areas, merge_income
from itr_wizard.models.filing import (
    DownloadFormat,
    DownloadPayload,
    GenerationRequest,
    GenerationResult,
    RecommendationRequest,
    RecommendationResult,
    TaxCalculationResult,
)
from itr_wizard.models.income import ImportedIncomeSummary, IncomeComposition
from itr_wizard.models.taxpayer import TaxpayerProfile
from itr_wizard.models.wizard import PersistedSnapshot, WizardState, WizardStep
from itr_wizard.recommendation import (
    has_capital_gains,
    has_foreign_assets,
    has_foreign_income,
    has_house_property,
    recommend,
)
from itr_wizard.service.client import FilingServiceClient
from itr_wizard.storage.snapshot_store import SnapshotStore
from itr_wizard.utils import describe_last_saved

logger = logging.getLogger(__name__)

REQUIRED_TAX_DATA_FIELDS = ("assessment_year", "financial_year")

# Results that no longer hold once the composition changes.
_STALE_RESULTS = {"calculation": None, "service_recommendation": None, "generation": None}

_YEAR_PATTERN = re.compile(r"^(\d{4})")


def _financial_year_end(financial_year: str) -> date | None:
    """31 March closing a financial year such as 2024-25."""
    match = _YEAR_PATTERN.match(financial_year or "")
    if not match:
        return None
    return date(int(match.group(1)) + 1, 3, 31)


def _as_payload(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if isinstance(payload, BaseModel):
        return payload.model_dump()
    return dict(payload)


def _merge_into(model: BaseModel, payload: dict[str, Any]) -> BaseModel:
    """Validate a payload laid over an existing model, by field name or wire alias."""
    cls = type(model)
    aliases = {
        field.alias: name
        for name, field in cls.model_fields.items()
        if field.alias and field.alias != name
    }
    data = model.model_dump()
    unknown = {}
    for key, value in payload.items():
        name = aliases.get(key, key)
        if name not in cls.model_fields:
            unknown[key] = "unknown field"
            continue
        data[name] = value
    if unknown:
        raise ValidationError(invalid_fields=unknown)

    try:
        return cls.model_validate(data)
    except ModelValidationError as e:
        raise ValidationError(invalid_fields={
            ".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()
        }) from e


class WizardController:
    """
    Owns the wizard's position and everything entered so far.

    The controller is the only writer of WizardState. Forward moves are
    validated, backward moves are always allowed and discard nothing.
    Progress is saved after every committed transition; a failed save is
    logged and retried on the next one without blocking the user.
    """

    def __init__(
        self,
        store: SnapshotStore,
        client: FilingServiceClient | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        default_age: int = 30,
    ):
        """
        Initialize the controller.

        Args:
            store: Where progress is saved and restored from
            client: Filing service client for calculation and generation
            clock: Source of the current time
            default_age: Age sent for calculation when date of birth is unknown
        """
        self._store = store
        self._client = client
        self._clock = clock
        self._default_age = default_age
        self._state = WizardState()
        self._last_saved: datetime | None = None
        self._save_pending = False
        self._in_flight: set[WizardStep] = set()
        self._committed: dict[WizardStep, dict[str, Any]] = {}

    @property
    def state(self) -> WizardState:
        """A copy of the current wizard state."""
        return self._state.model_copy(deep=True)

    @property
    def step(self) -> WizardStep:
        return self._state.step

    @property
    def last_saved(self) -> datetime | None:
        return self._last_saved

    @property
    def save_pending(self) -> bool:
        """Whether the latest state has not reached storage yet."""
        return self._save_pending

    def last_saved_message(self) -> str:
        return describe_last_saved(self._last_saved, self._clock())

    # Persistence

    def _persist(self) -> bool:
        snapshot = PersistedSnapshot(
            profile=self._state.profile,
            composition=self._state.composition,
            current_step=self._state.step,
            saved_at=self._clock(),
        )
        try:
            self._store.save(snapshot)
        except PersistenceError as e:
            logger.warning(f"Could not save progress, will retry on the next step: {e}")
            self._save_pending = True
            return False
        self._save_pending = False
        self._last_saved = snapshot.saved_at
        return True

    def save(self) -> bool:
        """Explicitly save progress. Returns False if storage is unavailable."""
        return self._persist()

    def has_saved_data(self) -> bool:
        """Whether there is saved progress to offer for restoring."""
        try:
            return self._store.has_saved_data()
        except PersistenceError as e:
            logger.warning(f"Could not check for saved progress: {e}")
            return False

    def restore(self) -> bool:
        """
        Restore saved progress.

        Calculation results are never saved, so a snapshot taken on the
        results or generation step resumes at tax data entry.

        Returns:
            True if a snapshot was applied
        """
        try:
            snapshot = self._store.load()
        except PersistenceError as e:
            logger.warning(f"Could not load saved progress: {e}")
            return False
        if snapshot is None:
            return False

        step = min(snapshot.current_step, WizardStep.TAX_DATA_INPUT)
        self._state = WizardState(
            step=step,
            profile=snapshot.profile,
            composition=snapshot.composition,
        )
        self._last_saved = snapshot.saved_at
        self._committed.clear()
        logger.info(f"Restored saved progress at {step.title}")
        return True

    def start_over(self) -> None:
        """Discard saved and in-memory progress and begin a new filing."""
        try:
            self._store.clear()
        except PersistenceError as e:
            logger.warning(f"Could not clear saved progress: {e}")
        self._state = WizardState()
        self._last_saved = None
        self._save_pending = False
        self._committed.clear()
        logger.info("Started a new filing")

    # Transitions

    def _begin(self, step: WizardStep) -> None:
        if step in self._in_flight:
            raise RequestInFlightError(f"A request for {step.title} is already in progress")
        self._in_flight.add(step)

    def _require_step(self, step: WizardStep) -> None:
        if self._state.step != step:
            raise TransitionError(
                f"{step.title} is not the current step ({self._state.step.title})"
            )

    def _require_client(self) -> FilingServiceClient:
        if self._client is None:
            raise ServiceError("No filing service is configured.")
        return self._client

    def _validated_profile(self, payload: dict[str, Any]) -> TaxpayerProfile:
        profile = _merge_into(self._state.profile, payload)
        missing = profile.missing_required_fields()
        invalid = profile.malformed_fields()
        if missing or invalid:
            raise ValidationError(missing_fields=missing, invalid_fields=invalid)
        return profile

    def _validated_composition(self, payload: dict[str, Any]) -> IncomeComposition:
        composition = _merge_into(self._state.composition, payload)
        missing = [
            name for name in REQUIRED_TAX_DATA_FIELDS
            if not getattr(composition, name).strip()
        ]
        if missing:
            raise ValidationError(missing_fields=missing)
        return composition

    def _step_updates(self, step: WizardStep, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate a step's payload and return the state updates it commits."""
        if step == WizardStep.PERSONAL_DETAILS:
            profile = self._validated_profile(payload)
            updates: dict[str, Any] = {"profile": profile}
            if profile != self._state.profile:
                updates["generation"] = None
            return updates

        if step == WizardStep.TAX_DATA_INPUT:
            composition = self._validated_composition(payload)
            if composition != self._state.composition or self._state.calculation is None:
                raise ValidationError(
                    "Calculate tax for the current income details before continuing",
                    missing_fields=["calculation"],
                )
            return {}

        if step == WizardStep.TAX_RESULTS:
            if self._state.calculation is None:
                raise ValidationError(
                    "No tax calculation is available", missing_fields=["calculation"]
                )
            return {}

        raise TransitionError(f"{step.title} is the final step")

    def advance(self, from_step: WizardStep | int, payload: Any = None) -> WizardState:
        """
        Commit a step's payload and move to the next step.

        Replaying the payload of the step just committed is a no-op, so a
        retry cannot duplicate anything.

        Args:
            from_step: The step the payload belongs to
            payload: Field values for the step, by name or wire alias

        Returns:
            The new wizard state

        Raises:
            ValidationError: Required fields missing or malformed; nothing changes
            TransitionError: from_step is not the current step
            RequestInFlightError: A service request for the step is pending
        """
        from_step = WizardStep(from_step)
        payload = _as_payload(payload)

        if from_step in self._in_flight:
            raise RequestInFlightError(f"A request for {from_step.title} is already in progress")

        if from_step != self._state.step:
            if from_step < self._state.step and self._committed.get(from_step) == payload:
                logger.debug(f"Ignoring repeated advance from {from_step.title}")
                if self._save_pending:
                    self._persist()
                return self.state
            raise TransitionError(
                f"Cannot advance from {from_step.title} while at {self._state.step.title}"
            )

        updates = self._step_updates(from_step, payload)
        self._state = self._state.model_copy(
            update={**updates, "step": WizardStep(from_step + 1)}
        )
        self._committed[from_step] = payload
        self._persist()
        logger.info(f"Advanced from {from_step.title} to {self._state.step.title}")
        return self.state

    def retreat(self, to_step: WizardStep | int) -> WizardState:
        """Go back to an earlier step. No validation; nothing is discarded."""
        to_step = WizardStep(to_step)
        if to_step >= self._state.step:
            raise TransitionError(
                f"Cannot go back to {to_step.title} from {self._state.step.title}"
            )
        self._state = self._state.model_copy(update={"step": to_step})
        self._persist()
        logger.info(f"Went back to {to_step.title}")
        return self.state

    # Imports

    def receive_import(self, summary: Any) -> WizardState:
        """
        Merge figures from an imported summary into the filing.

        Name and PAN are filled in only where the profile still holds a
        blank or placeholder value. Figures that change the composition
        drop any calculation and generation, and a wizard already past tax
        data entry goes back to it.
        """
        if not isinstance(summary, ImportedIncomeSummary):
            try:
                summary = ImportedIncomeSummary.model_validate(_as_payload(summary))
            except ModelValidationError as e:
                raise ValidationError(invalid_fields={
                    ".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()
                }) from e

        current = self._state.composition
        merged = merge_income(current, summary, merged_on=self._clock().date())
        composition = entered_income(merged, current.has_business_income)
        areas = import_sourced_areas(summary)

        updates: dict[str, Any] = {
            "composition": composition,
            "import_sourced_areas": self._state.import_sourced_areas | areas,
        }
        if composition != current:
            updates.update(_STALE_RESULTS)
            if self._state.step > WizardStep.TAX_DATA_INPUT:
                updates["step"] = WizardStep.TAX_DATA_INPUT

        profile = self._state.profile
        provided = summary.provided_identity()
        identity = {}
        if provided.get("employee_name") and profile.is_default_value("employee_name"):
            identity["employee_name"] = provided["employee_name"].strip()
        if provided.get("pan") and profile.is_default_value("pan"):
            identity["pan"] = provided["pan"].strip().upper()
        if identity:
            updates["profile"] = profile.model_copy(update=identity)

        self._state = self._state.model_copy(update=updates)
        self._persist()
        logger.info(
            f"Imported summary merged; areas: {', '.join(sorted(a.value for a in areas)) or 'none'}"
        )
        return self.state

    # Service calls

    def _taxpayer_age(self, composition: IncomeComposition) -> int:
        on = _financial_year_end(composition.financial_year) or self._clock().date()
        age = self._state.profile.age_on(on)
        return age if age is not None and age > 0 else self._default_age

    async def request_calculation(self, payload: Any = None) -> TaxCalculationResult:
        """
        Calculate tax for the tax data step and move on to the results.

        Args:
            payload: Tax data field values laid over the current composition

        Returns:
            The calculation result

        Raises:
            ValidationError: Tax data incomplete or malformed
            ServiceError: The calculation service failed; the step does not change
            RequestInFlightError: A calculation is already pending
        """
        step = WizardStep.TAX_DATA_INPUT
        self._require_step(step)
        self._begin(step)
        try:
            payload = _as_payload(payload)
            composition = self._validated_composition(payload)
            client = self._require_client()
            before = self._state
            result = await client.calculate(
                composition, self._taxpayer_age(composition), composition.financial_year
            )
        finally:
            self._in_flight.discard(step)

        if self._state is not before:
            logger.info("Discarding a calculation that finished after the filing changed")
            return result

        updates: dict[str, Any] = {"calculation": result, "step": WizardStep.TAX_RESULTS}
        if composition != self._state.composition:
            updates.update({"composition": composition, "service_recommendation": None, "generation": None})
        self._state = self._state.model_copy(update=updates)
        self._committed[step] = payload
        self._persist()
        logger.info("Tax calculated; moved to Tax Results")
        return result

    def merged_composition(self) -> IncomeComposition:
        """The stored composition with business flag and derived line items rebuilt."""
        return merge_income(self._state.composition, merged_on=self._clock().date())

    def recommendation(self) -> RecommendationResult:
        """Local form recommendation for the current composition."""
        merged = self.merged_composition()
        return recommend(merged, self._total_income(merged))

    def _total_income(self, composition: IncomeComposition) -> float:
        if self._state.calculation is not None:
            return self._state.calculation.total_income
        return composition.total_income()

    async def request_recommendation_and_generation(
        self, preferred_form_type: str | None = None
    ) -> GenerationResult:
        """
        Ask the service for its recommendation, then generate the return.

        The business-income flag and derived business line items are always
        re-derived from the current composition first, so a stale flag can
        never reach the service.

        Raises:
            GenerationRejectedError: The service rejected the return; its
                validation errors are attached unchanged
            ServiceError: The service failed or could not be reached
        """
        step = WizardStep.ITR_GENERATION
        self._require_step(step)
        self._begin(step)
        try:
            client = self._require_client()
            before = self._state
            merged = self.merged_composition()
            total_income = self._total_income(merged)
            local = recommend(merged, total_income)
            logger.debug(f"Local recommendation: {local.category.value}")

            service_recommendation = await client.recommend(RecommendationRequest(
                income_composition=merged,
                has_house_property=has_house_property(merged),
                has_capital_gains=has_capital_gains(merged),
                has_business_income=merged.has_business_income,
                has_foreign_income=has_foreign_income(merged),
                has_foreign_assets=has_foreign_assets(merged),
                is_huf=merged.is_huf,
                total_income=total_income,
            ))
            if service_recommendation.recommended_type != local.category.value:
                logger.info(
                    f"Service recommends {service_recommendation.recommended_type}, "
                    f"local rules give {local.category.value}"
                )
            generation = await client.generate(GenerationRequest(
                income_composition=merged,
                taxpayer_profile=before.profile,
                preferred_form_type=preferred_form_type,
            ))
        finally:
            self._in_flight.discard(step)

        if self._state is not before:
            logger.info("Discarding a generation that finished after the filing changed")
            return generation

        self._state = self._state.model_copy(update={
            "service_recommendation": service_recommendation,
            "generation": generation if generation.is_success else None,
        })
        self._persist()

        if not generation.is_success:
            logger.warning(f"Generation rejected with {len(generation.validation_errors)} errors")
            raise GenerationRejectedError(generation.validation_errors, generation.warnings)
        logger.info(f"Generated {generation.recommended_type or 'return'}")
        return generation

    async def download(self, fmt: DownloadFormat | str) -> DownloadPayload:
        """Download the generated return as XML or JSON."""
        fmt = DownloadFormat(fmt)
        self._require_step(WizardStep.ITR_GENERATION)
        generation = self._state.generation
        if generation is None or not generation.is_success:
            raise TransitionError("Generate the return before downloading it")

        self._begin(WizardStep.ITR_GENERATION)
        try:
            client = self._require_client()
            return await client.download(
                GenerationRequest(
                    income_composition=self.merged_composition(),
                    taxpayer_profile=self._state.profile,
                    preferred_form_type=generation.recommended_type or None,
                ),
                fmt,
                generated_name=generation.file_name,
            )
        finally:
            self._in_flight.discard(WizardStep.ITR_GENERATION)
