"""
Extraction error taxonomy.

Strategies raise these internally; the orchestrator converts them into failed
ExtractionResults and only reports NoMatchingStrategy when every strategy
failed.
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for extraction failures."""
    code = "extraction_error"

    def __init__(self, message: str, confidence: float = 0.0):
        super().__init__(message)
        self.message = message
        self.confidence = confidence


class NotABillDocument(ExtractionError):
    """Not enough keyword or stem signal to treat the text as a bill."""
    code = "not_a_bill"


class MissingRequiredField(ExtractionError):
    """A required field (the amount) could not be extracted."""
    code = "missing_required_field"

    def __init__(self, field_name: str, message: Optional[str] = None, confidence: float = 0.0):
        super().__init__(message or f"Could not extract {field_name}", confidence)
        self.field_name = field_name


class UnparsableAmount(ExtractionError):
    """An amount was found but did not parse to a positive number."""
    code = "unparsable_amount"


class UnparsableDate(ExtractionError):
    """A date was found but is not a recognizable date."""
    code = "unparsable_date"


class NoMatchingStrategy(ExtractionError):
    """Every extraction strategy failed."""
    code = "no_matching_strategy"
