# =============================================================================
# Report Parsing — Model Text to Report
# =============================================================================
#
# Models wrap JSON in markdown fences, prepend a sentence of chatter, or
# trail an explanation. We strip fences, cut from the first "{" to the
# last "}", and validate strictly with pydantic. Anything that still does
# not validate is a SchemaError carrying the raw text for logging.
# =============================================================================

from __future__ import annotations

import logging
import re

from pydantic import ValidationError as PydanticValidationError

from app.models.report import Report
from app.services.errors import SchemaError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json_object(text: str) -> str:
    cleaned = _FENCE.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise SchemaError("No JSON object found in model output", raw_text=text)
    return cleaned[start:end + 1]


def parse_report(text: str) -> Report:
    """
    Parse model output into a Report.

    Raises:
        SchemaError: The text holds no JSON object or it fails validation.
    """
    payload = extract_json_object(text)
    try:
        return Report.model_validate_json(payload)
    except PydanticValidationError as exc:
        logger.warning(
            "Model output failed report validation (%d errors)", exc.error_count()
        )
        raise SchemaError(
            f"Report validation failed: {exc.error_count()} errors", raw_text=text
        ) from exc
