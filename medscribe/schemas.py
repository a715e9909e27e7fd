from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Annotated, List, Literal, Optional, Dict, Any

from pydantic import Field

# Stage identities
TRANSCRIBE = "Transcribe"
MAP_CONDITIONS = "MapConditions"
MAP_PROCEDURES = "MapProcedures"
ASSESS_SEVERITY = "AssessSeverity"

StageName = Literal["Transcribe", "MapConditions", "MapProcedures", "AssessSeverity"]

Severity = Literal["low", "medium", "high"]

RunState = Literal[
    "Idle",
    "Transcribing",
    "MappingConditions",
    "MappingProcedures",
    "AssessingSeverity",
    "Done",
    "Failed",
]

# Strict field types: the model must return real strings/numbers, not coercible lookalikes
Text = Annotated[str, Field(strict=True)]
Confidence = Annotated[float, Field(strict=True, ge=0.0, le=1.0)]
IcdCode = Annotated[str, Field(alias="icdCode", strict=True)]
ConditionCategory = Annotated[str, Field(alias="conditionCategory", strict=True)]
SourceText = Annotated[str, Field(alias="sourceText", strict=True)]


# -------------------- Stage inputs --------------------
@dataclass(frozen=True)
class TranscribeInput:
    notes: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MapCodesInput:
    transcribed_notes: str

    def to_dict(self) -> Dict[str, Any]:
        return {"transcribedNotes": self.transcribed_notes}


@dataclass(frozen=True)
class AssessSeverityInput:
    condition: str
    notes: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -------------------- Stage outputs (validated shapes) --------------------
@dataclass
class TranscriptionResult:
    transcription: Text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConditionCodeMapping:
    condition: Text
    icd_code: IcdCode
    condition_category: ConditionCategory
    confidence: Confidence
    # Length caps (100 / 150 chars) are requested in the prompt, not enforced here
    source_text: SourceText
    justification: Text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConditionMappingResponse:
    condition_code_mappings: Annotated[
        List[ConditionCodeMapping], Field(alias="conditionCodeMappings")
    ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcedureCodeMapping:
    procedure: Text
    icd_code: IcdCode
    confidence: Confidence
    source_text: SourceText
    justification: Text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcedureMappingResponse:
    procedure_code_mappings: Annotated[
        List[ProcedureCodeMapping], Field(alias="procedureCodeMappings")
    ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SeverityAssessment:
    severity: Severity
    reason: Text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -------------------- Aggregates --------------------
@dataclass
class SeverityAssessmentResult:
    condition: str
    icd_code: str
    condition_category: str
    confidence: float
    source_text: str
    justification: str
    severity: Severity
    reason: str

    @classmethod
    def join(cls, mapping: ConditionCodeMapping, assessment: SeverityAssessment) -> "SeverityAssessmentResult":
        return cls(**mapping.to_dict(), severity=assessment.severity, reason=assessment.reason)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunMetadata:
    total_processing_ms: Optional[float] = None
    notes_input_length: Optional[int] = None
    transcribed_notes_length: Optional[int] = None
    conditions_count: Optional[int] = None
    procedures_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineResult:
    """Everything one run produced. On a failed run, fields not reached stay None."""
    transcription: Optional[str] = None
    condition_code_mappings: Optional[List[ConditionCodeMapping]] = None
    procedure_code_mappings: Optional[List[ProcedureCodeMapping]] = None
    severity_assessments: Optional[List[SeverityAssessmentResult]] = None
    metadata: RunMetadata = field(default_factory=RunMetadata)
    state: RunState = "Idle"

    @property
    def succeeded(self) -> bool:
        return self.state == "Done"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
