"""Tests for the two-stage artifact synthesis."""

import asyncio
import json

import pytest

from fakes import FakeLlm, research, synthesis_json
from prompter.entities import FALLBACK_SOURCE, Citation
from prompter.errors import SynthesisError
from prompter.llm_client import MaxRetryErrorsException
from prompter.prompts import ARTIFACT_RESPONSE_SCHEMA, NO_RESEARCH_TEXT
from prompter.synthesizer import MALFORMED_SYNTHESIS_OUTPUT, ArtifactSynthesizer, extract_sources


def run(synth, query="payment intent"):
    return asyncio.run(synth.synthesize(query))


class TestExtractSources:
    def test_placeholders_are_dropped(self):
        citations = [Citation(uri="#"), Citation(title="Stripe", uri="https://stripe.com/docs"), Citation(uri="")]
        sources = extract_sources(citations)
        assert [s.uri for s in sources] == ["https://stripe.com/docs"]
        assert sources[0].title == "Stripe"

    def test_limit(self):
        citations = [Citation(uri=f"https://example.com/{i}") for i in range(9)]
        assert len(extract_sources(citations, limit=5)) == 5


class TestSynthesize:
    def test_successful_synthesis(self):
        llm = FakeLlm([research(uris=["https://stripe.com/docs/api"]), synthesis_json()])
        artifact = run(ArtifactSynthesizer(llm))

        assert artifact.title == "Payment Intent"
        assert artifact.prompt.startswith("Generate a payment intent")
        assert artifact.example == '{"id": "pi_123", "amount": 2000}'
        assert artifact.schema_text == '{"type": "object", "required": ["id", "amount"]}'
        assert artifact.interface.startswith("interface PaymentIntent")
        assert artifact.variations == ["variation 0", "variation 1", "variation 2"]
        assert [s.uri for s in artifact.sources] == ["https://stripe.com/docs/api"]

    def test_call_shapes(self):
        llm = FakeLlm([research(text="Stripe uses amount in cents."), synthesis_json()])
        run(ArtifactSynthesizer(llm), "stripe payments")

        first, second = llm.calls
        assert first["grounded"] is True
        assert "stripe payments" in first["content"]
        assert second["grounded"] is False
        assert second["response_mime_type"] == "application/json"
        assert second["response_schema"] == ARTIFACT_RESPONSE_SCHEMA
        assert "Stripe uses amount in cents." in second["content"]

    def test_empty_research_uses_placeholder_text(self):
        llm = FakeLlm([research(text=""), synthesis_json()])
        run(ArtifactSynthesizer(llm))
        assert NO_RESEARCH_TEXT in llm.calls[1]["content"]

    def test_fallback_source_when_no_citations(self):
        llm = FakeLlm([research(uris=[]), synthesis_json()])
        artifact = run(ArtifactSynthesizer(llm))
        assert artifact.sources == [FALLBACK_SOURCE]

    def test_fallback_source_when_only_placeholders(self):
        llm = FakeLlm([research(uris=["#", "#"]), synthesis_json()])
        artifact = run(ArtifactSynthesizer(llm))
        assert len(artifact.sources) == 1
        assert artifact.sources[0].title == "General Industry Documentation"

    def test_at_most_five_sources(self):
        uris = [f"https://docs.example.com/{i}" for i in range(8)]
        llm = FakeLlm([research(uris=uris), synthesis_json()])
        artifact = run(ArtifactSynthesizer(llm))
        assert [s.uri for s in artifact.sources] == uris[:5]

    def test_fenced_synthesis_output(self):
        fenced = "Here you go:\n```json\n" + synthesis_json() + "\n```"
        llm = FakeLlm([research(), fenced])
        assert run(ArtifactSynthesizer(llm)).title == "Payment Intent"

    def test_variations_capped_at_three(self):
        llm = FakeLlm([research(), synthesis_json(variations=5)])
        assert len(run(ArtifactSynthesizer(llm)).variations) == 3

    def test_structured_example_is_serialized(self):
        payload = json.loads(synthesis_json())
        payload["exampleJson"] = {"id": "pi_1"}
        llm = FakeLlm([research(), json.dumps(payload)])
        artifact = run(ArtifactSynthesizer(llm))
        assert json.loads(artifact.example) == {"id": "pi_1"}


class TestSynthesizeFailures:
    def test_malformed_output(self):
        llm = FakeLlm([research(), '["just", "a", "list"]'])
        with pytest.raises(SynthesisError) as exc:
            run(ArtifactSynthesizer(llm))
        assert exc.value.message == MALFORMED_SYNTHESIS_OUTPUT

    def test_truncated_output_is_not_repaired(self):
        raw = synthesis_json()
        cut = raw[:raw.index("interface Paym") + len("interface Paym")]
        llm = FakeLlm([research(), cut])
        with pytest.raises(SynthesisError) as exc:
            run(ArtifactSynthesizer(llm))
        assert exc.value.message == MALFORMED_SYNTHESIS_OUTPUT

    def test_missing_schema_key(self):
        payload = json.loads(synthesis_json())
        del payload["jsonSchema"]
        llm = FakeLlm([research(), json.dumps(payload)])
        with pytest.raises(SynthesisError) as exc:
            run(ArtifactSynthesizer(llm))
        assert exc.value.message == MALFORMED_SYNTHESIS_OUTPUT

    def test_missing_prompt(self):
        payload = json.loads(synthesis_json())
        payload["jsonPrompt"] = "   "
        llm = FakeLlm([research(), json.dumps(payload)])
        with pytest.raises(SynthesisError):
            run(ArtifactSynthesizer(llm))

    def test_research_call_failure(self):
        llm = FakeLlm([RuntimeError("API key not valid")])
        with pytest.raises(SynthesisError) as exc:
            run(ArtifactSynthesizer(llm))
        assert exc.value.message == "API key not valid"
        assert len(llm.calls) == 1

    def test_retry_wrapper_is_unwrapped(self):
        try:
            raise MaxRetryErrorsException("All 1 retry attempts failed.") from ValueError("quota exhausted")
        except MaxRetryErrorsException as e:
            wrapped = e
        llm = FakeLlm([research(), wrapped])
        with pytest.raises(SynthesisError) as exc:
            run(ArtifactSynthesizer(llm))
        assert exc.value.message == "quota exhausted"
