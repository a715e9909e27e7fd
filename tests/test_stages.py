import unittest

from medscribe.errors import GatewayError, ResponseParseError, SchemaViolation, StageError
from medscribe.schemas import ASSESS_SEVERITY, MAP_CONDITIONS, MAP_PROCEDURES, TRANSCRIBE
from medscribe.stages import (
    assess_condition_severity,
    map_conditions_to_codes,
    map_procedures_to_codes,
    transcribe_medical_notes,
)

from tests.fakes import FakeGateway, default_replies

NOTES = "Pt c/o SOB, Hx HTN."


class StageTests(unittest.IsolatedAsyncioTestCase):
    async def test_transcribe(self) -> None:
        gateway = FakeGateway(default_replies())
        result = await transcribe_medical_notes(gateway, NOTES)
        self.assertIn("shortness of breath", result.transcription)
        self.assertIn("hypertension", result.transcription)
        self.assertIn(f"Notes: {NOTES}", gateway.calls[0]["messages"][1]["content"])

    async def test_map_conditions(self) -> None:
        gateway = FakeGateway(default_replies())
        resp = await map_conditions_to_codes(gateway, "history of hypertension")
        self.assertEqual([m.icd_code for m in resp.condition_code_mappings], ["I10", "R06.02"])
        self.assertEqual(gateway.calls_for(MAP_CONDITIONS)[0]["stage"], MAP_CONDITIONS)

    async def test_map_conditions_empty_is_not_an_error(self) -> None:
        gateway = FakeGateway({MAP_CONDITIONS: {"conditionCodeMappings": []}})
        resp = await map_conditions_to_codes(gateway, "Routine visit, no complaints.")
        self.assertEqual(resp.condition_code_mappings, [])

    async def test_map_procedures(self) -> None:
        gateway = FakeGateway(default_replies())
        resp = await map_procedures_to_codes(gateway, "Order EKG")
        self.assertEqual(resp.procedure_code_mappings[0].procedure, "Electrocardiogram")

    async def test_assess_severity(self) -> None:
        gateway = FakeGateway(default_replies())
        resp = await assess_condition_severity(gateway, "Hypertension", "history of hypertension")
        self.assertEqual(resp.severity, "medium")
        self.assertTrue(resp.reason)

    async def test_gateway_failure_becomes_stage_error(self) -> None:
        gateway = FakeGateway({MAP_PROCEDURES: GatewayError("OpenAI request failed: 503")})
        with self.assertRaises(StageError) as ctx:
            await map_procedures_to_codes(gateway, "Order EKG")
        err = ctx.exception
        self.assertEqual(err.stage, MAP_PROCEDURES)
        self.assertEqual(err.stage_input, {"transcribedNotes": "Order EKG"})
        self.assertIsInstance(err.cause, GatewayError)
        self.assertIs(err.__cause__, err.cause)

    async def test_non_json_becomes_stage_error(self) -> None:
        gateway = FakeGateway({TRANSCRIBE: "I'm sorry, I can't help with that."})
        with self.assertRaises(StageError) as ctx:
            await transcribe_medical_notes(gateway, NOTES)
        self.assertEqual(ctx.exception.stage, TRANSCRIBE)
        self.assertEqual(ctx.exception.stage_input, {"notes": NOTES})
        self.assertIsInstance(ctx.exception.cause, ResponseParseError)

    async def test_schema_violation_becomes_stage_error(self) -> None:
        gateway = FakeGateway({ASSESS_SEVERITY: {"severity": "critical", "reason": "x"}})
        with self.assertRaises(StageError) as ctx:
            await assess_condition_severity(gateway, "Sepsis", "notes")
        self.assertEqual(ctx.exception.stage, ASSESS_SEVERITY)
        self.assertEqual(ctx.exception.stage_input, {"condition": "Sepsis", "notes": "notes"})
        self.assertIsInstance(ctx.exception.cause, SchemaViolation)
        self.assertEqual(ctx.exception.cause.fields, ["severity"])

    async def test_failed_stage_is_not_retried(self) -> None:
        gateway = FakeGateway({MAP_CONDITIONS: "not json"})
        with self.assertRaises(StageError):
            await map_conditions_to_codes(gateway, "notes")
        self.assertEqual(len(gateway.calls), 1)


if __name__ == "__main__":
    unittest.main()
