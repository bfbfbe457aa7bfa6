"""
Analysis prompt construction, response normalization and the OpenAI adapter.
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, AsyncAzureOpenAI, AsyncOpenAI

from rxpipeline.adapters.external.analysis_service_openai import OpenAIAnalysisService
from rxpipeline.application.utils.analysis_prompt import (
    build_analysis_messages,
    build_analysis_prompt,
    normalize_medication,
    parse_analysis_response,
)
from rxpipeline.application.utils.failure_reasons import failure_reason
from rxpipeline.application.utils.prescription_extractor import extract
from rxpipeline.core.ai_client import create_chat_client, resolve_provider
from rxpipeline.core.config import AnalysisSettings, AzureOpenAISettings, OpenAISettings, Settings
from rxpipeline.core.exceptions import (
    AnalysisResponseError,
    AnalysisServiceError,
    ConfigurationError,
    OCRError,
)
from rxpipeline.domain.entities.extraction import ExtractionResult, StructuredExtraction
from rxpipeline.domain.enums.prescription import PipelineStage

from conftest import ANALYSIS_RESPONSE, PRESCRIPTION_TEXT


def extraction(text: str = PRESCRIPTION_TEXT, **kwargs) -> ExtractionResult:
    return ExtractionResult(text=text, confidence=kwargs.pop("confidence", 90.0), structured=extract(text), **kwargs)


class FakeCompletions:
    def __init__(self, content=None, error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=SimpleNamespace(total_tokens=321))


def fake_client(completions: FakeCompletions):
    async def close():
        return None

    return SimpleNamespace(chat=SimpleNamespace(completions=completions), close=close)


def test_prompt_lists_extracted_fields():
    prompt = build_analysis_prompt(extraction())

    assert "Patient: John Smith" in prompt
    assert "Doctor: Marie Curie" in prompt
    assert "1. Amoxicillin 500mg three times a day 7 days" in prompt
    assert "2. Ibuprofen 400 mg every 8 hours" in prompt
    assert "Notes: Take with food" in prompt
    assert "Full prescription text:\n" + PRESCRIPTION_TEXT in prompt
    assert '"potentialInteractions"' in prompt
    assert "low OCR confidence" not in prompt


def test_prompt_uses_unknown_for_missing_fields():
    result = ExtractionResult(text="illegible", confidence=12.0, structured=StructuredExtraction(), low_confidence=True)
    prompt = build_analysis_prompt(result)

    assert "Patient: Unknown" in prompt
    assert "Medications detected" not in prompt
    assert "low OCR confidence (12/100)" in prompt


def test_messages_have_system_and_user_roles():
    messages = build_analysis_messages(extraction())
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "JSON" in messages[0]["content"]


def test_parse_accepts_camel_and_snake_case():
    camel = parse_analysis_response(ANALYSIS_RESPONSE, model="gpt-4o")
    snake = parse_analysis_response(json.dumps({
        "medications": [{"name": "Amoxicillin", "side_effects": ["Nausea"], "potential_interactions": ["Warfarin"]}],
        "recommended_tests": ["Liver function"],
    }))

    assert camel.model == "gpt-4o"
    assert camel.medications[0].potential_interactions == ["Methotrexate"]
    assert camel.medications[0].alternatives == ["Cefalexin"]
    assert snake.medications[0].side_effects == ["Nausea"]
    assert snake.medications[0].potential_interactions == ["Warfarin"]
    assert snake.recommended_tests == ["Liver function"]


def test_parse_strips_code_fence():
    result = parse_analysis_response("```json\n" + ANALYSIS_RESPONSE + "\n```")
    assert result.medications[0].name == "Amoxicillin"


@pytest.mark.parametrize("content", [None, "", "   ", "not json", "[1, 2]", '"just a string"'])
def test_parse_rejects_non_objects(content):
    with pytest.raises(AnalysisResponseError) as exc_info:
        parse_analysis_response(content)
    assert not exc_info.value.permanent


def test_normalize_medication_tolerates_odd_shapes():
    assert normalize_medication("Aspirin").name == "Aspirin"
    assert normalize_medication(42).name == "Unknown"

    medication = normalize_medication({"drug": "Metformin", "sideEffects": "Nausea", "dosage": ["500mg", "1g"]})
    assert medication.name == "Metformin"
    assert medication.side_effects == ["Nausea"]
    assert medication.dosage == "500mg, 1g"
    assert medication.duration == "Not specified"


def test_single_medication_object_is_wrapped():
    result = parse_analysis_response(json.dumps({"medications": {"name": "Aspirin"}}))
    assert [m.name for m in result.medications] == ["Aspirin"]


def test_failure_reasons_hide_raw_errors():
    reason = failure_reason(PipelineStage.EXTRACTION, OCRError("tesseract: /usr/bin/tesseract exited 139"))
    assert "tesseract" not in reason
    assert failure_reason(PipelineStage.ANALYSIS, RuntimeError("boom")) == "Medication analysis failed."
    assert failure_reason(PipelineStage.NOTIFICATION, None) == "Notification delivery failed."


@pytest.mark.asyncio
async def test_complete_requests_json_object():
    completions = FakeCompletions(content=ANALYSIS_RESPONSE)
    settings = Settings(openai=OpenAISettings(temperature=0.1, max_tokens=900))
    service = OpenAIAnalysisService(settings, client=fake_client(completions), model="rx-deployment")

    content = await service.complete(build_analysis_messages(extraction()))

    assert content == ANALYSIS_RESPONSE
    request = completions.requests[0]
    assert request["model"] == "rx-deployment"
    assert request["response_format"] == {"type": "json_object"}
    assert request["temperature"] == 0.1
    assert request["max_tokens"] == 900
    await service.close()


@pytest.mark.asyncio
async def test_complete_wraps_api_errors():
    error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    service = OpenAIAnalysisService(Settings(), client=fake_client(FakeCompletions(error=error)), model="gpt-4o")

    with pytest.raises(AnalysisServiceError) as exc_info:
        await service.complete([{"role": "user", "content": "hi"}])

    assert exc_info.value.error_code == "ANALYSIS_SERVICE_ERROR"
    assert exc_info.value.details["type"] == "APIConnectionError"


@pytest.mark.asyncio
async def test_complete_times_out():
    settings = Settings(analysis=AnalysisSettings(timeout_seconds=0.05))
    service = OpenAIAnalysisService(settings, client=fake_client(FakeCompletions(content="{}", delay=1.0)), model="m")

    with pytest.raises(AnalysisServiceError) as exc_info:
        await service.complete([{"role": "user", "content": "hi"}])
    assert "timed out" in exc_info.value.message


def test_provider_resolution():
    azure = AzureOpenAISettings(endpoint="https://rx.openai.azure.com/", api_key="azure-key", deployment_name="rx-gpt")
    unconfigured = AzureOpenAISettings(endpoint="", api_key="")

    assert resolve_provider(Settings(azure_openai=azure)) == "azure"
    assert resolve_provider(Settings(azure_openai=unconfigured)) == "openai"
    assert resolve_provider(Settings(azure_openai=azure, analysis=AnalysisSettings(provider="openai"))) == "openai"

    client, model = create_chat_client(Settings(azure_openai=azure))
    assert isinstance(client, AsyncAzureOpenAI)
    assert model == "rx-gpt"

    client, model = create_chat_client(
        Settings(azure_openai=unconfigured, openai=OpenAISettings(api_key="sk-test", model="gpt-4o-mini"))
    )
    assert isinstance(client, AsyncOpenAI)
    assert model == "gpt-4o-mini"


def test_missing_credentials_raise_configuration_error():
    unconfigured = AzureOpenAISettings(endpoint="", api_key="")

    with pytest.raises(ConfigurationError):
        create_chat_client(Settings(azure_openai=unconfigured, openai=OpenAISettings(api_key="")))
    with pytest.raises(ConfigurationError):
        create_chat_client(Settings(azure_openai=unconfigured, analysis=AnalysisSettings(provider="azure")))
