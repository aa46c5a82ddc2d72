"""
Formats raw processor output into the provider-agnostic result shape.

Only fields a stage actually produced are set; everything else stays
None ("not attempted"). An empty OCR string is kept: the stage ran and
found no text.
"""

import logging
from typing import Any

from mediaflow.models.schemas import ProcessingResult
from mediaflow.services.processors import ProcessorOutput

logger = logging.getLogger(__name__)

RESULT_FIELDS = frozenset(ProcessingResult.model_fields) - {"plugin_usage"}


def format_result(output: ProcessorOutput) -> ProcessingResult:
    """
    Build a ProcessingResult from processor output.

    Args:
        output: Raw processor output

    Returns:
        Validated ProcessingResult

    Raises:
        pydantic.ValidationError: If a processor produced a malformed value
    """
    fields: dict[str, Any] = {}
    for key, value in output.data.items():
        if key not in RESULT_FIELDS:
            logger.debug(f"Dropping unknown result field: {key}")
            continue
        if value is None:
            continue
        fields[key] = value

    return ProcessingResult(**fields, plugin_usage=dict(output.plugin_usage))


def produced_fields(result: ProcessingResult) -> list[str]:
    """Names of result fields that hold data."""
    return sorted(
        name for name in RESULT_FIELDS if getattr(result, name) is not None
    )
