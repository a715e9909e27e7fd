"""LLM-backed transcription and ICD coding of clinical notes.

Modules:
- schemas: dataclass records and the declared reply shape of each stage
- errors: error taxonomy and user-facing failure notices
- validation: JSON parsing and shape validation of model replies
- prompt_builder: per-stage prompt text and JSON schemas
- llm_client: async OpenAI JSON gateway
- stages: the four single-call stages
- pipeline: run orchestration, cancellation and partial results
- config: dataclass settings, loadable from the environment
- cli: command-line front end
"""

from .errors import (
    MedScribeError,
    GatewayError,
    ResponseParseError,
    SchemaViolation,
    StageError,
    EmptyInputError,
    RunCancelledError,
    describe_failure,
)
from .llm_client import JSONModelGateway, LlmJSONClient
from .pipeline import MedScribePipeline, run_pipeline
from .stages import (
    transcribe_medical_notes,
    map_conditions_to_codes,
    map_procedures_to_codes,
    assess_condition_severity,
)

__all__ = [
    "MedScribeError",
    "GatewayError",
    "ResponseParseError",
    "SchemaViolation",
    "StageError",
    "EmptyInputError",
    "RunCancelledError",
    "describe_failure",
    "JSONModelGateway",
    "LlmJSONClient",
    "MedScribePipeline",
    "run_pipeline",
    "transcribe_medical_notes",
    "map_conditions_to_codes",
    "map_procedures_to_codes",
    "assess_condition_severity",
]
