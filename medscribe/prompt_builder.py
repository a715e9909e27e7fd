from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

from .schemas import (
    TRANSCRIBE,
    MAP_CONDITIONS,
    MAP_PROCEDURES,
    ASSESS_SEVERITY,
)

Messages = List[Dict[str, str]]

JSON_ONLY = " Always respond with valid JSON."


def _mapping_item_schema(subject_key: str, with_category: bool) -> Dict:
    properties: Dict[str, Any] = {
        subject_key: {"type": "string"},
        "icdCode": {"type": "string"},
    }
    if with_category:
        properties["conditionCategory"] = {"type": "string"}
    properties.update(
        {
            "confidence": {"type": "number"},
            "sourceText": {"type": "string"},
            "justification": {"type": "string"},
        }
    )
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": properties,
        "required": list(properties),
    }


def build_json_schema(stage: str) -> Dict:
    # JSON schema handed to the model in json_schema mode. Range checks on
    # confidence are left to the validator; strict mode rejects minimum/maximum.
    if stage == TRANSCRIBE:
        name = "transcribe_medical_notes_response"
        properties: Dict[str, Any] = {"transcription": {"type": "string"}}
    elif stage == MAP_CONDITIONS:
        name = "map_conditions_response"
        properties = {
            "conditionCodeMappings": {
                "type": "array",
                "items": _mapping_item_schema("condition", with_category=True),
            }
        }
    elif stage == MAP_PROCEDURES:
        name = "map_procedures_response"
        properties = {
            "procedureCodeMappings": {
                "type": "array",
                "items": _mapping_item_schema("procedure", with_category=False),
            }
        }
    elif stage == ASSESS_SEVERITY:
        name = "assess_severity_response"
        properties = {
            "severity": {"type": "string", "enum": ["low", "medium", "high"]},
            "reason": {"type": "string"},
        }
    else:
        raise ValueError(f"Unknown stage: {stage}")
    return {
        "name": name,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": properties,
            "required": list(properties),
        },
        "strict": True,
    }


def _messages(system: str, user: str) -> Messages:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_transcribe_messages(notes: str) -> Tuple[Messages, Dict]:
    system = "You are a medical scribe who rewrites doctor's notes into plain language." + JSON_ONLY
    user = (
        "You are a medical scribe. Please transcribe the following doctor's notes into a clear, readable format,"
        " removing acronyms and jargon.\n\n"
        f"Notes: {notes}\n\n"
        'Return the result as a JSON object with a single key "transcription".'
    )
    return _messages(system, user), build_json_schema(TRANSCRIBE)


def build_map_conditions_messages(transcribed_notes: str) -> Tuple[Messages, Dict]:
    system = "You are an expert medical coder who maps medical conditions to ICD codes." + JSON_ONLY
    user = (
        "You are an expert medical coder. Given the following transcribed doctor's notes:\n\n"
        f"Transcribed Notes: {transcribed_notes}\n\n"
        "Identify the medical conditions mentioned. For each condition:"
        "\n1. Map it to the most relevant ICD (International Classification of Diseases) code."
        "\n2. Classify the condition (e.g., 'Primary Diagnosis', 'Secondary Diagnosis', 'Comorbidity', 'Symptom')."
        " Use your clinical judgment to determine the most appropriate category based on the notes."
        "\n3. Include a confidence score (0-1) for each mapping."
        "\n4. Provide a 'sourceText' field containing a brief, relevant verbatim snippet from the original notes"
        " that supports the identified condition (max 100 characters)."
        "\n5. Provide a 'justification' field (max 150 characters) explaining why this ICD code was chosen"
        " for the identified condition based on the notes."
        "\n\nPrioritize mentions that are likely to be relevant for billing and clinical documentation."
        "\nWhere possible, prioritize ICD codes relevant to the Singaporean healthcare market if there are regional variations."
        '\n\nFormat your response as a JSON object with a key "conditionCodeMappings" containing an array of objects.'
        " Each object must include 'condition', 'icdCode', 'conditionCategory', 'confidence', 'sourceText', and 'justification'."
        '\nIf no conditions are identified, return an empty array for "conditionCodeMappings".'
    )
    return _messages(system, user), build_json_schema(MAP_CONDITIONS)


def build_map_procedures_messages(transcribed_notes: str) -> Tuple[Messages, Dict]:
    system = "You are an expert medical coder who maps medical procedures to ICD codes." + JSON_ONLY
    user = (
        "You are an expert medical coder specializing in procedures. Given the following transcribed doctor's notes,"
        " identify any medical procedures requested or mentioned and map them to the most relevant ICD"
        " (International Classification of Diseases) codes."
        "\n\nWhere possible, prioritize ICD codes relevant to the Singaporean healthcare market."
        "\n\nPrioritize mentions that are likely to be relevant for billing purposes. Include a confidence score (0-1) for each mapping."
        "\nFor each mapping, also include a 'sourceText' field containing a brief, relevant verbatim snippet from the original notes"
        " that supports the identified procedure (max 100 characters), and a 'justification' field (max 150 characters)"
        " explaining why the specific ICD code was chosen based on the notes."
        f"\n\nTranscribed Notes: {transcribed_notes}"
        '\n\nFormat your response as a JSON object with a key "procedureCodeMappings" containing an array of objects,'
        ' where each object has "procedure", "icdCode", "confidence", "sourceText", and "justification" fields.'
        '\nIf no procedures are identified, return an empty array for "procedureCodeMappings".'
    )
    return _messages(system, user), build_json_schema(MAP_PROCEDURES)


def build_assess_severity_messages(condition: str, notes: str) -> Tuple[Messages, Dict]:
    system = "You are an expert medical professional who assesses the severity of medical conditions." + JSON_ONLY
    user = (
        "You are an expert medical professional tasked with assessing the severity of a medical condition"
        " based on doctor's notes.\n\n"
        f"Condition: {condition}\n"
        f"Notes: {notes}\n\n"
        'Assess the severity of the condition as either "low", "medium", or "high". Provide a brief reason for your assessment.'
        "\nConsider cross-referencing medical databases and using your reasoning ability to identify likely severity levels"
        " based on the provided information."
        '\nReturn the severity and reason in the JSON format with keys "severity" and "reason".'
    )
    return _messages(system, user), build_json_schema(ASSESS_SEVERITY)


def build_messages(stage: str, payload: Mapping[str, str]) -> Tuple[Messages, Dict]:
    """Render the prompt for ``stage`` from its wire-format input payload."""
    if stage == TRANSCRIBE:
        return build_transcribe_messages(payload["notes"])
    if stage == MAP_CONDITIONS:
        return build_map_conditions_messages(payload["transcribedNotes"])
    if stage == MAP_PROCEDURES:
        return build_map_procedures_messages(payload["transcribedNotes"])
    if stage == ASSESS_SEVERITY:
        return build_assess_severity_messages(payload["condition"], payload["notes"])
    raise ValueError(f"Unknown stage: {stage}")
