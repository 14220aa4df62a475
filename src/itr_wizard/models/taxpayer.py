"""Taxpayer profile models."""

import re
from datetime import date
from enum import IntEnum

from pydantic import Field

from itr_wizard.models.income import WireModel


class Gender(IntEnum):
    """Gender codes understood by the filing service."""

    MALE = 0
    FEMALE = 1
    OTHER = 2


class MaritalStatus(IntEnum):
    """Marital status codes understood by the filing service."""

    SINGLE = 0
    MARRIED = 1
    DIVORCED = 2
    WIDOWED = 3


PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MOBILE_PATTERN = re.compile(r"^[6-9][0-9]{9}$")

REQUIRED_PERSONAL_FIELDS = (
    "employee_name",
    "pan",
    "email_address",
    "mobile_number",
    "father_name",
    "gender",
    "marital_status",
)


class TaxpayerProfile(WireModel):
    """Identity, contact and refund bank details for the taxpayer."""

    employee_name: str = Field(default="", description="Name as on PAN")
    pan: str = Field(default="", description="Permanent Account Number")
    date_of_birth: str = Field(default="", description="Date of birth (YYYY-MM-DD)")
    father_name: str = Field(default="")
    gender: Gender | None = Field(default=None)
    marital_status: MaritalStatus | None = Field(default=None)

    # Address
    address: str = Field(default="")
    city: str = Field(default="")
    state: str = Field(default="")
    pincode: str = Field(default="")

    # Contact
    email_address: str = Field(default="")
    mobile_number: str = Field(default="")
    aadhaar_number: str = Field(default="")

    # Refund bank account
    bank_account_number: str = Field(default="")
    bank_ifsc_code: str = Field(default="", alias="bankIFSCCode")
    bank_name: str = Field(default="")

    def missing_required_fields(self) -> list[str]:
        """Required fields that are absent or blank.

        Zero-valued enums such as ``Gender.MALE`` count as present.
        """
        missing = []
        for name in REQUIRED_PERSONAL_FIELDS:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    def malformed_fields(self) -> dict[str, str]:
        """Present fields whose format is wrong."""
        problems = {}
        if self.pan and not PAN_PATTERN.match(self.pan.strip().upper()):
            problems["pan"] = "PAN must look like ABCDE1234F"
        if self.email_address and not EMAIL_PATTERN.match(self.email_address.strip()):
            problems["email_address"] = "not a valid email address"
        if self.mobile_number and not MOBILE_PATTERN.match(self.mobile_number.strip()):
            problems["mobile_number"] = "mobile number must be 10 digits"
        if self.date_of_birth and self.birth_date() is None:
            problems["date_of_birth"] = "date of birth must be YYYY-MM-DD"
        return problems

    def birth_date(self) -> date | None:
        """Parsed date of birth, or None when blank or malformed."""
        try:
            return date.fromisoformat(self.date_of_birth)
        except ValueError:
            return None

    def age_on(self, on: date) -> int | None:
        """Age in completed years on the given date."""
        born = self.birth_date()
        if born is None:
            return None
        return on.year - born.year - ((on.month, on.day) < (born.month, born.day))

    def is_default_value(self, field_name: str) -> bool:
        """Whether a field still holds its blank or sample placeholder value."""
        value = getattr(self, field_name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return True
        return value == getattr(DEFAULT_PROFILE, field_name)


# Sample placeholder values shown when a new filing starts.
DEFAULT_PROFILE = TaxpayerProfile(
    employee_name="",
    pan="",
    date_of_birth="1990-01-15",
    father_name="Sample Father Name",
    address="Flat 4B, Mock Residency, Sector 99, Test Nagar",
    city="Samplepur",
    state="Testland",
    pincode="999999",
    email_address="sample.user@example.test",
    mobile_number="9123456789",
    aadhaar_number="999988887777",
    bank_account_number="0000111122223333",
    bank_ifsc_code="TEST0001234",
    bank_name="Test Bank Ltd",
)


def new_profile() -> TaxpayerProfile:
    """Return a fresh copy of the placeholder profile."""
    return DEFAULT_PROFILE.model_copy(deep=True)
