"""Tests for the wizard controller."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from itr_wizard.errors import (
    GenerationRejectedError,
    RequestInFlightError,
    ServiceError,
    TransitionError,
    ValidationError,
)
from itr_wizard.models.filing import (
    DownloadFormat,
    DownloadPayload,
    FormCategory,
    GenerationResult,
    ServiceRecommendation,
    TaxCalculationResult,
)
from itr_wizard.models.income import IncomeArea
from itr_wizard.models.wizard import WizardStep
from itr_wizard.service.client import FilingServiceClient
from itr_wizard.storage.snapshot_store import InMemorySnapshotStore
from itr_wizard.wizard import WizardController


class FakeClock:
    """Controllable stand-in for datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def tick(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 7, 10, 10, 0))


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def calculation(calculation_response):
    return TaxCalculationResult.from_response(calculation_response, 805000, 730000)


@pytest.fixture
def client(calculation):
    """A filing service client whose calls succeed."""
    mock = MagicMock(spec=FilingServiceClient)
    mock.calculate = AsyncMock(return_value=calculation)
    mock.recommend = AsyncMock(return_value=ServiceRecommendation(
        recommended_type="ITR3",
        reason="Business income present",
        can_use_simplest=False,
        can_use_intermediate=False,
    ))
    mock.generate = AsyncMock(return_value=GenerationResult(
        is_success=True,
        recommended_type="ITR3",
        form_xml="<ITR3/>",
        file_name="ITR3_ABCDE1234F.xml",
    ))
    mock.download = AsyncMock(return_value=DownloadPayload(
        content=b"<ITR3/>", file_name="ITR3_ABCDE1234F.xml", media_type="application/xml"
    ))
    return mock


@pytest.fixture
def controller(store, client, clock):
    return WizardController(store, client, clock=clock)


@pytest.fixture
def at_tax_data(controller, personal_details):
    controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
    return controller


@pytest_asyncio.fixture
async def at_generation(at_tax_data, tax_data):
    await at_tax_data.request_calculation(tax_data)
    at_tax_data.advance(WizardStep.TAX_RESULTS)
    return at_tax_data


class TestAdvance:
    """Tests for forward and backward navigation."""

    def test_starts_at_personal_details(self, controller):
        """A new wizard starts at Personal Details."""
        assert controller.step == WizardStep.PERSONAL_DETAILS
        assert controller.state.calculation is None

    def test_personal_details_advance(self, controller, personal_details):
        """Valid personal details move to Tax Data."""
        state = controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert state.step == WizardStep.TAX_DATA_INPUT
        assert state.profile.employee_name == "Asha Verma"
        assert state.profile.pan == "ABCDE1234F"

    def test_missing_gender_and_marital_status(self, controller, personal_details):
        """Missing fields are reported and nothing is committed."""
        del personal_details["gender"]
        del personal_details["marital_status"]
        with pytest.raises(ValidationError) as exc_info:
            controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert set(exc_info.value.missing_fields) == {"gender", "marital_status"}
        assert controller.step == WizardStep.PERSONAL_DETAILS
        assert controller.state.profile.employee_name == ""

    def test_zero_gender_is_present(self, controller, personal_details):
        """Gender code zero is a valid choice."""
        personal_details["gender"] = 0
        controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert controller.step == WizardStep.TAX_DATA_INPUT

    def test_malformed_fields(self, controller, personal_details):
        """Malformed values are reported by field."""
        personal_details["pan"] = "12345"
        personal_details["mobile_number"] = "98765"
        with pytest.raises(ValidationError) as exc_info:
            controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert set(exc_info.value.invalid_fields) == {"pan", "mobile_number"}

    def test_unknown_field(self, controller, personal_details):
        """Unknown payload keys are rejected."""
        personal_details["nickname"] = "Ash"
        with pytest.raises(ValidationError) as exc_info:
            controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert exc_info.value.invalid_fields == {"nickname": "unknown field"}

    def test_wire_names_accepted(self, controller, personal_details):
        """Payloads may use wire names."""
        payload = dict(personal_details)
        payload["employeeName"] = payload.pop("employee_name")
        payload["bankIFSCCode"] = "HDFC0001234"
        state = controller.advance(WizardStep.PERSONAL_DETAILS, payload)
        assert state.profile.employee_name == "Asha Verma"
        assert state.profile.bank_ifsc_code == "HDFC0001234"

    def test_wrong_step(self, controller):
        """Advancing from a step other than the current one fails."""
        with pytest.raises(TransitionError):
            controller.advance(WizardStep.TAX_RESULTS)

    def test_tax_data_needs_calculation(self, at_tax_data, tax_data):
        """Tax Data cannot advance without a calculation."""
        with pytest.raises(ValidationError) as exc_info:
            at_tax_data.advance(WizardStep.TAX_DATA_INPUT, tax_data)
        assert "calculation" in exc_info.value.missing_fields
        assert at_tax_data.step == WizardStep.TAX_DATA_INPUT

    def test_replayed_advance_is_noop(self, at_tax_data, personal_details):
        """Replaying the last payload changes nothing."""
        before = at_tax_data.state
        after = at_tax_data.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert after == before

    def test_different_payload_for_past_step(self, at_tax_data, personal_details):
        """A new payload for a past step is refused."""
        personal_details["father_name"] = "Someone Else"
        with pytest.raises(TransitionError):
            at_tax_data.advance(WizardStep.PERSONAL_DETAILS, personal_details)

    @pytest.mark.asyncio
    async def test_final_step_cannot_advance(self, at_generation):
        """ITR Generation is the last step."""
        with pytest.raises(TransitionError):
            at_generation.advance(WizardStep.ITR_GENERATION)

    @pytest.mark.asyncio
    async def test_retreat_keeps_everything(self, at_generation):
        """Going back keeps entered data and results."""
        state = at_generation.retreat(WizardStep.PERSONAL_DETAILS)
        assert state.step == WizardStep.PERSONAL_DETAILS
        assert state.profile.employee_name == "Asha Verma"
        assert state.composition.salary_section17 == 780000
        assert state.calculation is not None

    def test_retreat_must_go_back(self, at_tax_data):
        """Retreat targets must be earlier steps."""
        with pytest.raises(TransitionError):
            at_tax_data.retreat(WizardStep.TAX_DATA_INPUT)
        with pytest.raises(TransitionError):
            at_tax_data.retreat(WizardStep.TAX_RESULTS)

    def test_state_is_a_copy(self, at_tax_data):
        """Mutating the returned state does not affect the wizard."""
        at_tax_data.state.profile.employee_name = "Changed"
        assert at_tax_data.state.profile.employee_name == "Asha Verma"


class TestCalculation:
    """Tests for request_calculation()."""

    @pytest.mark.asyncio
    async def test_success_moves_to_results(self, at_tax_data, tax_data, client, calculation):
        """A calculation moves the wizard to Tax Results."""
        result = await at_tax_data.request_calculation(tax_data)
        assert result == calculation
        state = at_tax_data.state
        assert state.step == WizardStep.TAX_RESULTS
        assert state.calculation == calculation
        assert state.composition.salary_section17 == 780000

    @pytest.mark.asyncio
    async def test_age_from_date_of_birth(self, at_tax_data, tax_data, client):
        """Age is taken at the end of the financial year."""
        await at_tax_data.request_calculation(tax_data)
        composition, age, financial_year = client.calculate.await_args.args
        assert age == 35
        assert financial_year == "2024-25"
        assert composition.taxable_income() == 730000

    @pytest.mark.asyncio
    async def test_default_age_without_date_of_birth(self, store, client, clock, personal_details, tax_data):
        """The default age is used without a date of birth."""
        controller = WizardController(store, client, clock=clock, default_age=42)
        personal_details["date_of_birth"] = ""
        controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        await controller.request_calculation(tax_data)
        assert client.calculate.await_args.args[1] == 42

    @pytest.mark.asyncio
    async def test_missing_financial_year(self, at_tax_data, tax_data, client):
        """A blank financial year is rejected before calling the service."""
        tax_data["financial_year"] = " "
        with pytest.raises(ValidationError) as exc_info:
            await at_tax_data.request_calculation(tax_data)
        assert exc_info.value.missing_fields == ["financial_year"]
        client.calculate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_failure_changes_nothing(self, at_tax_data, tax_data, client):
        """A failed calculation leaves the state untouched."""
        client.calculate.side_effect = ServiceError("The filing service did not respond in time.")
        before = at_tax_data.state
        with pytest.raises(ServiceError):
            await at_tax_data.request_calculation(tax_data)
        assert at_tax_data.state == before
        assert at_tax_data.step == WizardStep.TAX_DATA_INPUT

    @pytest.mark.asyncio
    async def test_wrong_step(self, controller, tax_data):
        """Calculation is only allowed at Tax Data."""
        with pytest.raises(TransitionError):
            await controller.request_calculation(tax_data)

    @pytest.mark.asyncio
    async def test_second_request_while_pending(self, at_tax_data, tax_data, client, calculation):
        """A pending calculation blocks a second request."""
        gate = asyncio.Event()

        async def slow_calculate(*args, **kwargs):
            await gate.wait()
            return calculation

        client.calculate.side_effect = slow_calculate
        task = asyncio.create_task(at_tax_data.request_calculation(tax_data))
        await asyncio.sleep(0)

        with pytest.raises(RequestInFlightError):
            await at_tax_data.request_calculation(tax_data)
        with pytest.raises(RequestInFlightError):
            at_tax_data.advance(WizardStep.TAX_DATA_INPUT, tax_data)

        gate.set()
        await task
        assert at_tax_data.step == WizardStep.TAX_RESULTS
        assert client.calculate.await_count == 1

    @pytest.mark.asyncio
    async def test_late_result_discarded(self, at_tax_data, tax_data, client, calculation):
        """A result arriving after a retreat is dropped."""
        gate = asyncio.Event()

        async def slow_calculate(*args, **kwargs):
            await gate.wait()
            return calculation

        client.calculate.side_effect = slow_calculate
        task = asyncio.create_task(at_tax_data.request_calculation(tax_data))
        await asyncio.sleep(0)

        at_tax_data.retreat(WizardStep.PERSONAL_DETAILS)
        gate.set()
        await task

        state = at_tax_data.state
        assert state.step == WizardStep.PERSONAL_DETAILS
        assert state.calculation is None
        assert state.composition.salary_section17 == 0

    @pytest.mark.asyncio
    async def test_advance_after_going_back(self, at_tax_data, tax_data):
        """Unchanged figures can advance on the existing calculation."""
        await at_tax_data.request_calculation(tax_data)
        at_tax_data.retreat(WizardStep.TAX_DATA_INPUT)
        state = at_tax_data.advance(WizardStep.TAX_DATA_INPUT, tax_data)
        assert state.step == WizardStep.TAX_RESULTS

    @pytest.mark.asyncio
    async def test_changed_income_needs_recalculation(self, at_tax_data, tax_data):
        """Changed figures need a new calculation."""
        await at_tax_data.request_calculation(tax_data)
        at_tax_data.retreat(WizardStep.TAX_DATA_INPUT)
        tax_data["dividend_income"] = 1000
        with pytest.raises(ValidationError):
            at_tax_data.advance(WizardStep.TAX_DATA_INPUT, tax_data)

    @pytest.mark.asyncio
    async def test_repeated_calculation_request_is_noop(self, at_tax_data, tax_data, client):
        """Replaying Tax Data does not call the service again."""
        await at_tax_data.request_calculation(tax_data)
        at_tax_data.advance(WizardStep.TAX_DATA_INPUT, tax_data)
        assert at_tax_data.step == WizardStep.TAX_RESULTS
        assert client.calculate.await_count == 1

    def test_local_recommendation(self, at_tax_data):
        """Test the local recommendation before any business income."""
        assert at_tax_data.recommendation().category == FormCategory.ITR1


class TestGeneration:
    """Tests for request_recommendation_and_generation() and download()."""

    @pytest.mark.asyncio
    async def test_success(self, at_generation, client):
        """Test a successful recommendation and generation."""
        result = await at_generation.request_recommendation_and_generation()
        assert result.is_success
        state = at_generation.state
        assert state.generation == result
        assert state.service_recommendation.recommended_type == "ITR3"
        assert state.step == WizardStep.ITR_GENERATION

    @pytest.mark.asyncio
    async def test_business_flag_rederived(self, at_generation, client):
        """The service sees the derived business flag and line items."""
        assert not at_generation.state.composition.has_business_income
        await at_generation.request_recommendation_and_generation()

        request = client.recommend.await_args.args[0]
        assert request.has_business_income is True
        assert request.has_capital_gains is True
        assert request.total_income == 805000

        generation_request = client.generate.await_args.args[0]
        items = generation_request.income_composition.business_income_items
        assert [item.income_type for item in items] == ["Intraday Trading"]
        assert generation_request.taxpayer_profile.pan == "ABCDE1234F"
        assert not at_generation.state.composition.has_business_income
        assert at_generation.state.composition.business_income_items == []

    @pytest.mark.asyncio
    async def test_local_recommendation_is_itr3(self, at_generation):
        """Intraday income gives a local ITR-3."""
        result = at_generation.recommendation()
        assert result.category == FormCategory.ITR3
        assert "intraday trading income" in result.reason

    @pytest.mark.asyncio
    async def test_preferred_form_type(self, at_generation, client):
        """The preferred form type is passed to generation."""
        await at_generation.request_recommendation_and_generation("ITR3")
        assert client.generate.await_args.args[0].preferred_form_type == "ITR3"

    @pytest.mark.asyncio
    async def test_rejection(self, at_generation, client):
        """Rejection errors are raised verbatim and nothing is generated."""
        client.generate.return_value = GenerationResult(
            is_success=False,
            validation_errors=["PAN is invalid", "Father's name is required"],
            warnings=["Check bank details"],
        )
        with pytest.raises(GenerationRejectedError) as exc_info:
            await at_generation.request_recommendation_and_generation()
        assert exc_info.value.validation_errors == ["PAN is invalid", "Father's name is required"]
        assert exc_info.value.warnings == ["Check bank details"]

        state = at_generation.state
        assert state.generation is None
        assert state.service_recommendation is not None
        assert state.step == WizardStep.ITR_GENERATION

    @pytest.mark.asyncio
    async def test_service_failure(self, at_generation, client):
        """A failed recommendation stops before generation."""
        client.recommend.side_effect = ServiceError("Could not reach the filing service")
        with pytest.raises(ServiceError):
            await at_generation.request_recommendation_and_generation()
        client.generate.assert_not_awaited()
        assert at_generation.state.generation is None

    @pytest.mark.asyncio
    async def test_wrong_step(self, at_tax_data):
        """Generation is only allowed at ITR Generation."""
        with pytest.raises(TransitionError):
            await at_tax_data.request_recommendation_and_generation()

    @pytest.mark.asyncio
    async def test_no_client(self, store, clock, personal_details):
        """Without a client the service call fails."""
        controller = WizardController(store, clock=clock)
        controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        with pytest.raises(ServiceError):
            await controller.request_calculation({"financial_year": "2024-25", "assessment_year": "2025-26"})

    @pytest.mark.asyncio
    async def test_download(self, at_generation, client):
        """Test downloading the generated return."""
        await at_generation.request_recommendation_and_generation()
        payload = await at_generation.download("xml")
        assert payload.file_name == "ITR3_ABCDE1234F.xml"
        request, fmt = client.download.await_args.args
        assert fmt == DownloadFormat.XML
        assert request.preferred_form_type == "ITR3"
        assert client.download.await_args.kwargs["generated_name"] == "ITR3_ABCDE1234F.xml"

    @pytest.mark.asyncio
    async def test_download_needs_generation(self, at_generation):
        """Download needs a successful generation."""
        with pytest.raises(TransitionError):
            await at_generation.download(DownloadFormat.JSON)

    @pytest.mark.asyncio
    async def test_profile_change_drops_generation(self, at_generation, personal_details):
        """Changing personal details drops the generation."""
        await at_generation.request_recommendation_and_generation()
        at_generation.retreat(WizardStep.PERSONAL_DETAILS)
        personal_details["mobile_number"] = "9000000001"
        state = at_generation.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert state.generation is None
        assert state.calculation is not None


class TestImport:
    """Tests for receive_import()."""

    def test_fills_income_and_identity(self, controller):
        """An import fills income and blank identity fields."""
        state = controller.receive_import({
            "employeeName": "Asha Verma",
            "pan": "abcde1234f",
            "stocksLTCG": 200000,
            "intradayTradingIncome": 5000,
        })
        assert state.composition.stocks_ltcg == 200000
        assert not state.composition.has_business_income
        assert controller.merged_composition().has_business_income
        assert state.profile.employee_name == "Asha Verma"
        assert state.profile.pan == "ABCDE1234F"
        assert state.import_sourced_areas == {IncomeArea.CAPITAL_GAINS, IncomeArea.BUSINESS_INCOME}

    def test_entered_identity_not_overwritten(self, at_tax_data):
        """Entered name and PAN are kept."""
        state = at_tax_data.receive_import({"employeeName": "A. Verma", "pan": "ZZZZZ9999Z"})
        assert state.profile.employee_name == "Asha Verma"
        assert state.profile.pan == "ABCDE1234F"

    @pytest.mark.asyncio
    async def test_import_invalidates_calculation(self, at_tax_data, tax_data):
        """Changed figures drop the calculation and return to Tax Data."""
        await at_tax_data.request_calculation(tax_data)
        state = at_tax_data.receive_import({"usStocksLTCG": 40000})
        assert state.calculation is None
        assert state.step == WizardStep.TAX_DATA_INPUT
        assert state.composition.has_foreign_assets

    @pytest.mark.asyncio
    async def test_unchanged_import_keeps_calculation(self, at_tax_data, tax_data):
        """An import that changes nothing keeps the calculation and step."""
        tax_data["intraday_trading_income"] = 0
        tax_data["has_capital_gains"] = True
        await at_tax_data.request_calculation(tax_data)
        state = at_tax_data.receive_import({"salarySection17": 780000})
        assert state.calculation is not None
        assert state.step == WizardStep.TAX_RESULTS

    @pytest.mark.asyncio
    async def test_corrected_import_figure_clears_business(self, at_tax_data, tax_data):
        """Zeroing an imported business figure no longer forces ITR-3."""
        at_tax_data.receive_import({"intradayTradingIncome": 5000})
        assert at_tax_data.recommendation().category == FormCategory.ITR3

        await at_tax_data.request_calculation({**tax_data, "intraday_trading_income": 0})
        state = at_tax_data.state
        assert not state.composition.has_business_income
        assert state.composition.business_income_items == []
        result = at_tax_data.recommendation()
        assert result.category == FormCategory.ITR2
        assert "declared business income" not in result.reason

    @pytest.mark.asyncio
    async def test_declared_business_survives_import(self, at_tax_data, tax_data):
        """A declared business flag is kept across imports."""
        await at_tax_data.request_calculation(
            {**tax_data, "intraday_trading_income": 0, "has_business_income": True}
        )
        state = at_tax_data.receive_import({"salarySection17": 800000})
        assert state.composition.has_business_income
        assert at_tax_data.recommendation().category == FormCategory.ITR3

    def test_invalid_import(self, controller):
        """An invalid import changes nothing."""
        with pytest.raises(ValidationError):
            controller.receive_import({"stocksLTCG": -5})
        assert controller.state.composition.stocks_ltcg == 0

    def test_import_is_saved(self, controller, store):
        """Imports are persisted."""
        controller.receive_import({"intradayTradingIncome": 5000})
        assert store.load().composition.intraday_trading_income == 5000


class TestPersistence:
    """Tests for saving, restoring and starting over."""

    def test_every_transition_saves(self, at_tax_data, store, clock):
        """Each transition writes a snapshot."""
        snapshot = store.load()
        assert snapshot.current_step == WizardStep.TAX_DATA_INPUT
        assert snapshot.profile.employee_name == "Asha Verma"
        assert snapshot.saved_at == clock.now

    def test_last_saved_message(self, at_tax_data, clock):
        """Test the last saved message."""
        assert at_tax_data.last_saved_message() == "Saved just now"
        clock.tick(minutes=5)
        assert at_tax_data.last_saved_message() == "Saved 5 minutes ago"

    def test_failed_save_does_not_block(self, controller, store, personal_details):
        """A failed save does not stop navigation."""
        store.fail_writes = True
        state = controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert state.step == WizardStep.TAX_DATA_INPUT
        assert controller.save_pending
        assert controller.last_saved is None

    def test_failed_save_retried(self, controller, store, personal_details):
        """A pending save is retried on the next transition."""
        store.fail_writes = True
        controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        store.fail_writes = False
        controller.advance(WizardStep.PERSONAL_DETAILS, personal_details)
        assert not controller.save_pending
        assert store.load().current_step == WizardStep.TAX_DATA_INPUT

    def test_restore(self, at_tax_data, store, client, clock):
        """Test restoring saved progress."""
        fresh = WizardController(store, client, clock=clock)
        assert fresh.has_saved_data()
        assert fresh.restore()
        assert fresh.step == WizardStep.TAX_DATA_INPUT
        assert fresh.state.profile == at_tax_data.state.profile
        assert fresh.last_saved == clock.now

    @pytest.mark.asyncio
    async def test_restore_resumes_at_tax_data(self, at_generation, store, client, clock):
        """Progress saved past Tax Data resumes there."""
        fresh = WizardController(store, client, clock=clock)
        assert fresh.restore()
        assert fresh.step == WizardStep.TAX_DATA_INPUT
        assert fresh.state.calculation is None
        assert fresh.state.composition.salary_section17 == 780000

    def test_restore_nothing_saved(self, controller):
        """Restore with nothing saved returns False."""
        assert not controller.has_saved_data()
        assert not controller.restore()
        assert controller.step == WizardStep.PERSONAL_DETAILS

    def test_restore_discards_other_version(self, at_tax_data, store, client, clock):
        """Data from another schema version is discarded."""
        store.data["itr_wizard.schema_version"] = "99"
        fresh = WizardController(store, client, clock=clock)
        assert not fresh.restore()
        assert store.data == {}
        assert fresh.step == WizardStep.PERSONAL_DETAILS

    def test_start_over(self, at_tax_data, store):
        """Start over clears state and storage."""
        at_tax_data.start_over()
        assert at_tax_data.step == WizardStep.PERSONAL_DETAILS
        assert at_tax_data.state.profile.employee_name == ""
        assert at_tax_data.last_saved is None
        assert not store.has_saved_data()
