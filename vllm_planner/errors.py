"""Shared exception types for the planner."""


class ValidationError(ValueError):
    """Raised when an externally supplied value is malformed or out of range.

    Carries the offending *field* name and *value* so the caller can correct
    the input without inspecting internals.
    """

    def __init__(self, message: str, field: str | None = None, value: object = None) -> None:
        self.reason = message
        self.field = field
        self.value = value
        if field is not None:
            message = f"{field}: {message} (got {value!r})"
        super().__init__(message)


class UnsupportedFormatError(ValidationError):
    """Raised when a quantization or precision name is not in the catalog."""

    def __init__(self, name: object, valid_names: list[str], field: str = "quantization") -> None:
        self.name = name
        self.valid_names = list(valid_names)
        super().__init__(
            f"unsupported format, expected one of: {', '.join(self.valid_names)}",
            field=field,
            value=name,
        )


class InsufficientMemoryError(Exception):
    """Raised when the required memory does not fit into the available memory.

    Fatal for the current request: the caller must shrink the model or add
    VRAM, retrying with the same input cannot succeed.
    """

    def __init__(self, required_gb: float, available_gb: float, details: str = "") -> None:
        self.required_gb = required_gb
        self.available_gb = available_gb
        self.details = details
        message = (
            f"Insufficient GPU memory: required {required_gb:.3f} GB, "
            f"available {available_gb:.3f} GB"
        )
        if details:
            message = f"{message} ({details})"
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when a derived runtime configuration is internally inconsistent.

    Only strict checks raise this; the emitter itself reports the same
    problems as warnings.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Inconsistent configuration: " + "; ".join(self.problems))
