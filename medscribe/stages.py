"""
The four pipeline stages. Each is one model round trip:
prompt_builder -> gateway -> JSON parse -> shape validation.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Type, TypeVar

from .errors import GatewayError, ResponseParseError, SchemaViolation, StageError
from .llm_client import JSONModelGateway
from .prompt_builder import build_messages
from .schemas import (
    TRANSCRIBE,
    MAP_CONDITIONS,
    MAP_PROCEDURES,
    ASSESS_SEVERITY,
    TranscribeInput,
    MapCodesInput,
    AssessSeverityInput,
    TranscriptionResult,
    ConditionMappingResponse,
    ProcedureMappingResponse,
    SeverityAssessment,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_stage(
    client: JSONModelGateway,
    stage: str,
    payload: Dict[str, Any],
    response_type: Type[T],
) -> T:
    messages, schema = build_messages(stage, payload)
    try:
        resp, _ = await client.create_and_validate(messages, schema, response_type)
    except (GatewayError, ResponseParseError, SchemaViolation) as e:
        logger.error(
            "%s failed. Input: %s. Error: %s",
            stage,
            json.dumps(payload, indent=2),
            e,
        )
        raise StageError(stage, payload, e) from e
    return resp


async def transcribe_medical_notes(client: JSONModelGateway, notes: str) -> TranscriptionResult:
    """Rewrite raw notes into clear prose without acronyms or jargon."""
    payload = TranscribeInput(notes=notes).to_dict()
    return await run_stage(client, TRANSCRIBE, payload, TranscriptionResult)


async def map_conditions_to_codes(client: JSONModelGateway, transcribed_notes: str) -> ConditionMappingResponse:
    """Identify conditions, categorize them and assign ICD codes. An empty list is a valid answer."""
    payload = MapCodesInput(transcribed_notes=transcribed_notes).to_dict()
    return await run_stage(client, MAP_CONDITIONS, payload, ConditionMappingResponse)


async def map_procedures_to_codes(client: JSONModelGateway, transcribed_notes: str) -> ProcedureMappingResponse:
    payload = MapCodesInput(transcribed_notes=transcribed_notes).to_dict()
    return await run_stage(client, MAP_PROCEDURES, payload, ProcedureMappingResponse)


async def assess_condition_severity(client: JSONModelGateway, condition: str, notes: str) -> SeverityAssessment:
    """Rate one condition low/medium/high against the notes it came from."""
    payload = AssessSeverityInput(condition=condition, notes=notes).to_dict()
    return await run_stage(client, ASSESS_SEVERITY, payload, SeverityAssessment)
