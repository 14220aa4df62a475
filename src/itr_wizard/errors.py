"""Error types raised by the filing wizard core."""


class WizardError(Exception):
    """Base class for all wizard errors."""


class ValidationError(WizardError):
    """Raised when a step payload is missing or has malformed required fields."""

    def __init__(
        self,
        message: str | None = None,
        missing_fields: list[str] | None = None,
        invalid_fields: dict[str, str] | None = None,
    ):
        self.missing_fields = list(missing_fields or [])
        self.invalid_fields = dict(invalid_fields or {})
        if message is None:
            parts = []
            if self.missing_fields:
                parts.append("Missing required fields: " + ", ".join(self.missing_fields))
            for name, problem in self.invalid_fields.items():
                parts.append(f"{name}: {problem}")
            message = "; ".join(parts) or "Validation failed"
        super().__init__(message)


class TransitionError(ValidationError):
    """Raised when a step transition is not legal from the current position."""


class RequestInFlightError(WizardError):
    """Raised when a service request is already pending for the same step."""


class PersistenceError(WizardError):
    """Raised when local storage cannot be read or written."""


class SchemaMismatchError(PersistenceError):
    """Raised when saved progress was written by an incompatible schema version."""

    def __init__(self, found: object, expected: int, detail: str | None = None):
        self.found = found
        self.expected = expected
        message = f"Saved data schema version {found!r} does not match {expected}"
        if detail:
            message = f"Saved data for schema version {found!r} is unreadable: {detail}"
        super().__init__(message)


class ServiceError(WizardError):
    """Raised when the calculation/generation service fails or is unreachable."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class GenerationRejectedError(ServiceError):
    """Raised when the service reports that the return could not be generated."""

    def __init__(self, validation_errors: list[str], warnings: list[str] | None = None):
        self.validation_errors = list(validation_errors)
        self.warnings = list(warnings or [])
        detail = "; ".join(self.validation_errors) or "no details provided"
        super().__init__(f"ITR generation failed: {detail}")
