from __future__ import annotations

from typing import Any, Dict, List, Optional


class MedScribeError(Exception):
    pass


class GatewayError(MedScribeError):
    """Transport failure, non-success status or empty body from the model service."""


class ResponseParseError(MedScribeError):
    def __init__(self, raw_text: str, reason: str):
        super().__init__(f"Invalid JSON returned: {reason}: {raw_text[:200]}")
        self.raw_text = raw_text
        self.reason = reason


class SchemaViolation(MedScribeError):
    def __init__(self, obj: Any, errors: List[Dict[str, str]], shape: str = ""):
        details = "; ".join(f"{e['field']}: {e['reason']}" for e in errors)
        prefix = f"{shape} " if shape else ""
        super().__init__(f"{prefix}schema validation failed: {details}")
        self.obj = obj
        self.errors = errors
        self.shape = shape

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]


# Human labels used in failure notices
STAGE_LABELS = {
    "Transcribe": "Transcription",
    "MapConditions": "Condition mapping",
    "MapProcedures": "Procedure mapping",
    "AssessSeverity": "Severity assessment",
}


class StageError(MedScribeError):
    def __init__(self, stage: str, stage_input: Dict[str, Any], cause: Optional[BaseException] = None):
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(f"The AI model failed to generate a valid response for {stage}: {reason}")
        self.stage = stage
        self.stage_input = stage_input
        self.cause = cause
        # Set by the pipeline when the failure happens mid-run
        self.partial_result = None

    @property
    def label(self) -> str:
        return STAGE_LABELS.get(self.stage, self.stage)


class EmptyInputError(MedScribeError, ValueError):
    def __init__(self):
        super().__init__("Please enter some medical notes to process.")


class RunCancelledError(MedScribeError):
    def __init__(self, next_stage: str):
        super().__init__(f"Run cancelled before {next_stage}")
        self.next_stage = next_stage
        self.partial_result = None


def describe_failure(exc: BaseException) -> str:
    """Render a failure as the notice shown to the person who submitted the notes."""
    if isinstance(exc, StageError):
        cause = exc.cause if exc.cause is not None else exc
        return f"{exc.label} failed, processing stopped: {cause}"
    if isinstance(exc, EmptyInputError):
        return f"Input required: {exc}"
    if isinstance(exc, RunCancelledError):
        label = STAGE_LABELS.get(exc.next_stage, exc.next_stage)
        return f"Processing cancelled before {label.lower()}."
    return f"Error processing notes: {exc}"
