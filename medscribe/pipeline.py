from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from .config import PipelineConfig
from .errors import EmptyInputError, RunCancelledError, StageError
from .llm_client import JSONModelGateway
from .schemas import (
    TRANSCRIBE,
    MAP_CONDITIONS,
    MAP_PROCEDURES,
    ASSESS_SEVERITY,
    ConditionCodeMapping,
    ConditionMappingResponse,
    PipelineResult,
    ProcedureMappingResponse,
    RunState,
    SeverityAssessmentResult,
)
from .stages import (
    assess_condition_severity,
    map_conditions_to_codes,
    map_procedures_to_codes,
    transcribe_medical_notes,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[RunState], None]

_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "Idle": ("Transcribing", "Failed"),
    "Transcribing": ("MappingConditions", "Failed"),
    "MappingConditions": ("MappingProcedures", "Failed"),
    "MappingProcedures": ("AssessingSeverity", "Failed"),
    "AssessingSeverity": ("Done", "Failed"),
    "Done": (),
    "Failed": (),
}


class MedScribePipeline:
    """Runs Transcribe -> MapConditions/MapProcedures -> AssessSeverity for one set of notes.

    The pipeline itself holds no per-run state, so one instance can serve
    concurrent runs.
    """

    def __init__(
        self,
        client: JSONModelGateway,
        config: Optional[PipelineConfig] = None,
        on_state_change: Optional[StateCallback] = None,
    ):
        self.client = client
        self.config = config or PipelineConfig()
        if self.config.severity_concurrency < 1:
            raise ValueError("severity_concurrency must be >= 1")
        self.on_state_change = on_state_change

    def _enter(self, result: PipelineResult, state: RunState) -> None:
        if state not in _TRANSITIONS[result.state]:
            raise RuntimeError(f"Illegal run state transition {result.state} -> {state}")
        logger.info("run state %s -> %s", result.state, state)
        result.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    @staticmethod
    def _check_cancel(cancel_event: Optional[asyncio.Event], next_stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError(next_stage)

    @staticmethod
    def _store_conditions(result: PipelineResult, resp: ConditionMappingResponse) -> None:
        result.condition_code_mappings = resp.condition_code_mappings
        result.metadata.conditions_count = len(resp.condition_code_mappings)

    @staticmethod
    def _store_procedures(result: PipelineResult, resp: ProcedureMappingResponse) -> None:
        result.procedure_code_mappings = resp.procedure_code_mappings
        result.metadata.procedures_count = len(resp.procedure_code_mappings)

    async def _map_sequential(
        self, result: PipelineResult, transcription: str, cancel_event: Optional[asyncio.Event]
    ) -> None:
        self._check_cancel(cancel_event, MAP_CONDITIONS)
        self._enter(result, "MappingConditions")
        self._store_conditions(result, await map_conditions_to_codes(self.client, transcription))

        self._check_cancel(cancel_event, MAP_PROCEDURES)
        self._enter(result, "MappingProcedures")
        self._store_procedures(result, await map_procedures_to_codes(self.client, transcription))

    async def _map_concurrent(
        self, result: PipelineResult, transcription: str, cancel_event: Optional[asyncio.Event]
    ) -> None:
        # Both requests are in flight together, so both mapping states are entered up front
        self._check_cancel(cancel_event, MAP_CONDITIONS)
        self._enter(result, "MappingConditions")
        self._enter(result, "MappingProcedures")
        conditions, procedures = await asyncio.gather(
            map_conditions_to_codes(self.client, transcription),
            map_procedures_to_codes(self.client, transcription),
            return_exceptions=True,
        )
        # Keep whichever side succeeded before reporting a failure
        if isinstance(conditions, ConditionMappingResponse):
            self._store_conditions(result, conditions)
        if isinstance(procedures, ProcedureMappingResponse):
            self._store_procedures(result, procedures)
        for outcome in (conditions, procedures):
            if isinstance(outcome, BaseException):
                raise outcome

    async def _assess_all(
        self,
        result: PipelineResult,
        mappings: List[ConditionCodeMapping],
        transcription: str,
        cancel_event: Optional[asyncio.Event],
    ) -> List[SeverityAssessmentResult]:
        sem = asyncio.Semaphore(self.config.severity_concurrency)
        slots: List[Optional[SeverityAssessmentResult]] = [None] * len(mappings)
        failed = False

        async def worker(i: int, mapping: ConditionCodeMapping):
            nonlocal failed
            async with sem:
                # Set before the semaphore is released, so queued workers never start
                if failed:
                    return
                try:
                    self._check_cancel(cancel_event, ASSESS_SEVERITY)
                    assessment = await assess_condition_severity(self.client, mapping.condition, transcription)
                except BaseException:
                    failed = True
                    raise
                slots[i] = SeverityAssessmentResult.join(mapping, assessment)

        tasks = [asyncio.ensure_future(worker(i, m)) for i, m in enumerate(mappings)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            completed: List[SeverityAssessmentResult] = []
            for slot in slots:
                if slot is None:
                    break
                completed.append(slot)
            result.severity_assessments = completed
            raise
        return [s for s in slots if s is not None]

    async def run(self, notes: str, cancel_event: Optional[asyncio.Event] = None) -> PipelineResult:
        """
        Process one set of notes end to end.

        Raises:
            EmptyInputError: notes are blank; no stage is started.
            StageError: a stage failed; ``partial_result`` holds what finished.
            RunCancelledError: ``cancel_event`` was set; ``partial_result`` holds what finished.
        """
        if not notes or not notes.strip():
            raise EmptyInputError()

        result = PipelineResult()
        result.metadata.notes_input_length = len(notes.strip())
        started = time.perf_counter()
        try:
            self._check_cancel(cancel_event, TRANSCRIBE)
            self._enter(result, "Transcribing")
            transcription = (await transcribe_medical_notes(self.client, notes)).transcription
            result.transcription = transcription
            result.metadata.transcribed_notes_length = len(transcription)

            if self.config.concurrent_mapping:
                await self._map_concurrent(result, transcription, cancel_event)
            else:
                await self._map_sequential(result, transcription, cancel_event)

            mappings = result.condition_code_mappings or []
            self._check_cancel(cancel_event, ASSESS_SEVERITY)
            self._enter(result, "AssessingSeverity")
            result.severity_assessments = await self._assess_all(result, mappings, transcription, cancel_event)
            self._enter(result, "Done")
        except (StageError, RunCancelledError) as e:
            failed_in = result.state
            self._enter(result, "Failed")
            e.partial_result = result
            logger.error("run failed while %s: %s", failed_in, e)
            raise
        except asyncio.CancelledError:
            self._enter(result, "Failed")
            raise
        finally:
            result.metadata.total_processing_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "run done in %.0f ms: %d conditions, %d procedures",
            result.metadata.total_processing_ms,
            result.metadata.conditions_count or 0,
            result.metadata.procedures_count or 0,
        )
        return result


async def run_pipeline(
    notes: str,
    client: JSONModelGateway,
    config: Optional[PipelineConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
    on_state_change: Optional[StateCallback] = None,
) -> PipelineResult:
    pipeline = MedScribePipeline(client, config=config, on_state_change=on_state_change)
    return await pipeline.run(notes, cancel_event=cancel_event)
