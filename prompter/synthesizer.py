# prompter/synthesizer.py

import logging
from typing import Iterable, List

import commentjson

from prompter.base_utils import BaseUtils
from prompter.entities import FALLBACK_SOURCE, PLACEHOLDER_URI, Artifact, Citation, Source
from prompter.errors import SynthesisError
from prompter.llm_client import root_cause
from prompter.prompts import ARTIFACT_RESPONSE_SCHEMA, NO_RESEARCH_TEXT, RESEARCH_PROMPT, SYNTHESIS_PROMPT

logger = logging.getLogger("prompter_backend")

GENERIC_SYNTHESIS_FAILURE = "The synthesis engine encountered a logic fault. Please retry."
MALFORMED_SYNTHESIS_OUTPUT = "malformed synthesis output"
MAX_VARIATIONS = 3


def extract_sources(citations: Iterable[Citation], limit: int = 5) -> List[Source]:
    """Grounding citations -> Sources, placeholder URIs dropped, at most `limit` kept."""
    sources = [
        Source(title=c.title, uri=c.uri)
        for c in citations
        if c.uri and c.uri != PLACEHOLDER_URI
    ]
    return sources[:limit]


class ArtifactSynthesizer(BaseUtils):
    """
    Two sequential remote calls per query:

    1) grounded research call (live search, authoritative sources first)
    2) schema-constrained synthesis call fed with the research text

    The synthesis text is sanitized, parsed and merged with the research
    citations. Any failure surfaces as a single SynthesisError; no partial
    artifact is ever returned. No retries at this layer.
    """

    def __init__(self, llm, *, max_sources: int = 5):
        self.llm = llm
        self.max_sources = max_sources

    async def synthesize(self, query: str) -> Artifact:
        try:
            logger.debug(f"synthesize: research call for query={query!r}")
            research = await self.llm.generate(
                self.unsafe_string_format(RESEARCH_PROMPT, query=query),
                grounded=True,
            )
            sources = extract_sources(research.citations, self.max_sources)
            research_text = research.text or NO_RESEARCH_TEXT
            logger.debug(f"synthesize: {len(research.citations)} citations, {len(sources)} usable sources")

            synthesis = await self.llm.generate(
                self.unsafe_string_format(SYNTHESIS_PROMPT, query=query, research=research_text),
                response_mime_type="application/json",
                response_schema=ARTIFACT_RESPONSE_SCHEMA,
            )
            parsed = self._parse_synthesis(synthesis.text or "{}")
            return self._build_artifact(parsed, sources)

        except SynthesisError as e:
            self.color_print(f"synthesize(): {e.message}", color="red")
            raise
        except Exception as e:
            cause = root_cause(e)
            message = str(cause).strip() or GENERIC_SYNTHESIS_FAILURE
            self.color_print(f"synthesize(): remote failure -> {message}", color="red")
            raise SynthesisError(message) from e

    def _parse_synthesis(self, raw: str) -> dict:
        """
        Strict parse: the reply is a structured-output object, so anything that
        does not load as-is (a truncated stream, prose) is malformed. No repair.
        """
        try:
            parsed = commentjson.loads(self.sanitize_json_response(raw))
        except Exception as e:
            raise SynthesisError(MALFORMED_SYNTHESIS_OUTPUT) from e
        if not isinstance(parsed, dict):
            raise SynthesisError(MALFORMED_SYNTHESIS_OUTPUT)
        missing = [key for key in ARTIFACT_RESPONSE_SCHEMA["required"] if key not in parsed]
        if missing:
            logger.debug(f"synthesis output is missing {missing}")
            raise SynthesisError(MALFORMED_SYNTHESIS_OUTPUT)
        return parsed

    def _build_artifact(self, parsed: dict, sources: List[Source]) -> Artifact:
        prompt = self._coerce_field_to_str(parsed.get("jsonPrompt"))
        example = self._coerce_field_to_str(parsed.get("exampleJson"))
        if not prompt or not example:
            raise SynthesisError("synthesis output is missing the prompt or the example payload")

        variations = parsed.get("promptVariations") or []
        if not isinstance(variations, list):
            variations = [variations]
        variations = [self._coerce_field_to_str(v) for v in variations if v]

        return Artifact(
            title=self._coerce_field_to_str(parsed.get("title")),
            description=self._coerce_field_to_str(parsed.get("description")),
            prompt=prompt,
            example=example,
            schema=self._coerce_field_to_str(parsed.get("jsonSchema")),
            interface=self._coerce_field_to_str(parsed.get("tsInterface")),
            variations=variations[:MAX_VARIATIONS],
            sources=sources or [FALLBACK_SOURCE],
        )
