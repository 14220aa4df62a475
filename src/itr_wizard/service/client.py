"""Async HTTP client for the tax calculation and ITR generation service."""

import logging
import re
from typing import Any

import httpx
from pydantic import ValidationError as ModelValidationError

from itr_wizard.config import get_config
from itr_wizard.errors import ServiceError
from itr_wizard.models.filing import (
    DownloadFormat,
    DownloadPayload,
    GenerationRequest,
    GenerationResult,
    RecommendationRequest,
    ServiceRecommendation,
    TaxCalculationResult,
)
from itr_wizard.models.income import IncomeComposition

logger = logging.getLogger(__name__)

CALCULATE_PATH = "/api/taxcalculation/calculate"
RECOMMEND_PATH = "/api/itr/recommend"
GENERATE_PATH = "/api/itr/generate"
DOWNLOAD_PATH = "/api/itr/download/{fmt}"

_FILENAME_PATTERN = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


def suggested_file_name(generated_name: str | None, pan: str, fmt: DownloadFormat) -> str:
    """File name for a download, based on the generated name or the PAN."""
    if generated_name:
        stem = generated_name.rsplit(".", 1)[0] if "." in generated_name else generated_name
        return f"{stem}.{fmt.value}"
    return f"ITR_{pan or 'UNKNOWN'}.{fmt.value}"


def _error_message(response: httpx.Response) -> str:
    """Pull the service's own error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or body.get("title")
        if message:
            details = body.get("details")
            if isinstance(details, list) and details:
                message = f"{message}: {'; '.join(str(d) for d in details)}"
            elif isinstance(details, str) and details:
                message = f"{message}: {details}"
            return str(message)

    text = response.text.strip()[:200] or response.reason_phrase
    return f"HTTP {response.status_code}: {text}"


class FilingServiceClient:
    """
    Client for the filing service's calculation, recommendation,
    generation and download endpoints.

    Every failure (timeout, connection problem, non-success status or an
    unreadable body) is raised as ServiceError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls) -> "FilingServiceClient":
        """Build a client from the global configuration."""
        config = get_config()
        return cls(
            base_url=config.service_base_url,
            api_key=config.get_api_key(),
            timeout=config.service_timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key
        return headers

    async def _post(self, path: str, body: dict[str, Any], *, allow_error: bool = False) -> httpx.Response:
        """POST a JSON body, mapping transport problems and error statuses to ServiceError."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=body)
        except httpx.TimeoutException:
            raise ServiceError("The filing service did not respond in time. Please try again.")
        except httpx.RequestError as e:
            raise ServiceError(f"Could not reach the filing service: {e}")

        logger.debug(f"POST {path} -> {response.status_code}")
        if response.is_error and not allow_error:
            raise ServiceError(_error_message(response), status_code=response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise ServiceError(
                "The filing service returned an unreadable response.",
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise ServiceError(
                "The filing service returned an unexpected response.",
                status_code=response.status_code,
            )
        return data

    async def calculate(
        self, composition: IncomeComposition, age: int, financial_year: str | None = None
    ) -> TaxCalculationResult:
        """
        Compute tax liability and refund for a composition.

        Args:
            composition: Income composition to calculate tax for
            age: Taxpayer age at the end of the financial year
            financial_year: Overrides the composition's financial year

        Returns:
            TaxCalculationResult with liability, refund and slab breakdown
        """
        total_income = composition.total_income()
        taxable_income = composition.taxable_income()
        response = await self._post(CALCULATE_PATH, {
            "taxableIncome": taxable_income,
            "financialYear": financial_year or composition.financial_year,
            "age": age,
            "tdsDeducted": composition.total_tax_deducted,
        })
        data = self._json(response)
        try:
            return TaxCalculationResult.from_response(data, total_income, taxable_income)
        except (ModelValidationError, AttributeError, TypeError) as e:
            raise ServiceError(f"Unexpected calculation response: {e}")

    async def recommend(self, request: RecommendationRequest) -> ServiceRecommendation:
        """Ask the service which ITR form applies."""
        response = await self._post(
            RECOMMEND_PATH, request.model_dump(mode="json", by_alias=True)
        )
        try:
            return ServiceRecommendation.model_validate(self._json(response))
        except ModelValidationError as e:
            raise ServiceError(f"Unexpected recommendation response: {e}")

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate the return.

        A rejected generation is returned with ``is_success`` False rather
        than raised; the service reports it either as a 200 or a 400 whose
        body still carries the generation result.
        """
        response = await self._post(
            GENERATE_PATH,
            request.model_dump(mode="json", by_alias=True, exclude_none=True),
            allow_error=True,
        )
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            if not (response.status_code == 400 and isinstance(body, dict) and "isSuccess" in body):
                raise ServiceError(_error_message(response), status_code=response.status_code)
        try:
            return GenerationResult.model_validate(self._json(response))
        except ModelValidationError as e:
            raise ServiceError(f"Unexpected generation response: {e}")

    async def download(
        self,
        request: GenerationRequest,
        fmt: DownloadFormat,
        generated_name: str | None = None,
    ) -> DownloadPayload:
        """Download the generated return as XML or JSON."""
        response = await self._post(
            DOWNLOAD_PATH.format(fmt=fmt.value),
            request.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        match = _FILENAME_PATTERN.search(response.headers.get("content-disposition", ""))
        file_name = match.group(1) if match else suggested_file_name(
            generated_name, request.taxpayer_profile.pan, fmt
        )
        media_type = response.headers.get("content-type", fmt.media_type).split(";")[0]
        return DownloadPayload(content=response.content, file_name=file_name, media_type=media_type)
