from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace
from typing import List, Optional

import pandas as pd
from dotenv import load_dotenv

from .config import MedScribeConfig
from .errors import EmptyInputError, RunCancelledError, StageError, describe_failure
from .llm_client import LlmJSONClient
from .pipeline import MedScribePipeline
from .schemas import PipelineResult

STEP_MESSAGES = {
    "Transcribing": "Transcribing notes...",
    "MappingConditions": "Mapping conditions to ICD codes...",
    "MappingProcedures": "Mapping procedures to ICD codes...",
    "AssessingSeverity": "Assessing condition severity...",
    "Done": "Done.",
    "Failed": "Processing stopped.",
}


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return n


def _read_notes(args: argparse.Namespace) -> str:
    if args.notes is not None:
        return args.notes
    if args.notes_file:
        with open(args.notes_file) as f:
            return f.read()
    return sys.stdin.read()


def _write_result_json(path: str, result: PipelineResult, error: Optional[str]):
    payload = result.to_dict()
    payload["error"] = error
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)


def _write_result_csvs(out_dir: str, result: PipelineResult) -> List[str]:
    os.makedirs(out_dir, exist_ok=True)
    written: List[str] = []
    tables = {
        "conditions.csv": result.condition_code_mappings,
        "procedures.csv": result.procedure_code_mappings,
        "severity.csv": result.severity_assessments,
    }
    for name, rows in tables.items():
        if rows is None:
            continue
        path = os.path.join(out_dir, name)
        pd.DataFrame([r.to_dict() for r in rows]).to_csv(path, index=False)
        written.append(path)
    return written


def _print_summary(result: PipelineResult):
    meta = result.metadata
    print("\nTranscribed notes:\n")
    print(result.transcription or "(none)")
    print(f"\nConditions ({meta.conditions_count or 0}):")
    for s in result.severity_assessments or []:
        print(f"  - {s.condition} [{s.icd_code}] {s.condition_category}, confidence={s.confidence:.2f}, severity={s.severity}")
        print(f"      {s.reason}")
    print(f"\nProcedures ({meta.procedures_count or 0}):")
    for p in result.procedure_code_mappings or []:
        print(f"  - {p.procedure} [{p.icd_code}] confidence={p.confidence:.2f}")
    if meta.total_processing_ms is not None:
        print(
            f"\nProcessed in {meta.total_processing_ms / 1000:.2f}s"
            f" (input {meta.notes_input_length} chars, transcription {meta.transcribed_notes_length} chars)"
        )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Transcribe clinical notes and map them to ICD codes")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--notes", default=None, help="Notes text (otherwise --notes-file or stdin)")
    src.add_argument("--notes-file", default=None, help="Path to a text file with the notes")
    parser.add_argument("--out-json", default=None, help="Write the full result (or partial result on failure) as JSON")
    parser.add_argument("--out-csv-dir", default=None, help="Directory for conditions/procedures/severity CSV tables")
    parser.add_argument("--model", default=None, help="Override MEDSCRIBE_MODEL")
    parser.add_argument("--concurrent-mapping", action="store_true", help="Map conditions and procedures concurrently")
    parser.add_argument("--severity-concurrency", type=_positive_int, default=None, help="Max in-flight severity calls (>= 1)")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging(args.log_level)

    config = MedScribeConfig.from_env()
    if args.model:
        config.gateway.model = args.model
    if args.concurrent_mapping:
        config.pipeline.concurrent_mapping = True
    if args.severity_concurrency is not None:
        config.pipeline = replace(config.pipeline, severity_concurrency=args.severity_concurrency)

    notes = _read_notes(args)
    client = LlmJSONClient.from_config(config.gateway)
    pipeline = MedScribePipeline(
        client,
        config=config.pipeline,
        on_state_change=lambda state: print(STEP_MESSAGES.get(state, state), file=sys.stderr),
    )

    result: Optional[PipelineResult] = None
    error: Optional[str] = None
    try:
        result = asyncio.run(pipeline.run(notes))
    except EmptyInputError as e:
        print(describe_failure(e), file=sys.stderr)
        return 1
    except (StageError, RunCancelledError) as e:
        error = describe_failure(e)
        result = e.partial_result

    if result is not None:
        if args.out_json:
            _write_result_json(args.out_json, result, error)
            print(f"Wrote result to {args.out_json}")
        if args.out_csv_dir:
            paths = _write_result_csvs(args.out_csv_dir, result)
            print(f"Wrote {len(paths)} tables to {args.out_csv_dir}")

    if error is not None:
        print(f"Error processing notes: {error}", file=sys.stderr)
        return 1

    _print_summary(result)
    print("\nProcessing complete: medical notes processed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
