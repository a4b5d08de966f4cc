# prompter/schema_auditor.py

import logging
from typing import Optional

from prompter.base_utils import BaseUtils
from prompter.entities import Artifact
from prompter.errors import DerivationError
from prompter.llm_client import root_cause
from prompter.prompts import DEPLOYABLE_HARNESS, DERIVATION_PROMPT, PROMPT_TEST_HARNESS, VALIDATION_PROMPT

logger = logging.getLogger("prompter_backend")

AUDIT_FAILED = "Schema audit failed."
AUDIT_COMPLETE = "Validation complete."
AUDIT_NOTHING_TO_CHECK = "Nothing to validate: a schema and an example payload are both required."
PROMPT_TEST_FAILED = "Synthesis failed. Check connection."
PROMPT_TEST_EMPTY = "No data generated."


class SchemaAuditor(BaseUtils):
    """
    One-shot schema checks for the active artifact.

    validate() never raises; derive_schema() raises DerivationError and, on
    success, the derived schema takes precedence over the artifact's own.
    """

    def __init__(self, llm, artifact: Optional[Artifact] = None):
        self.llm = llm
        self.artifact = artifact
        self.derived_schema: Optional[str] = None

    def bind_artifact(self, artifact: Optional[Artifact]) -> None:
        self.artifact = artifact
        self.derived_schema = None

    @property
    def active_schema(self) -> str:
        if self.derived_schema:
            return self.derived_schema
        return self.artifact.schema_text if self.artifact else ""

    def _artifact_example(self) -> str:
        return self.artifact.example if self.artifact else ""

    async def validate(self, schema: Optional[str] = None, example: Optional[str] = None) -> str:
        schema = schema if schema is not None else self.active_schema
        example = example if example is not None else self._artifact_example()
        if not schema or not example:
            return AUDIT_NOTHING_TO_CHECK

        try:
            result = await self.llm.generate(
                self.unsafe_string_format(VALIDATION_PROMPT, schema=schema, example=example)
            )
        except Exception as e:
            logger.warning(f"validate(): audit call failed: {root_cause(e)}")
            return AUDIT_FAILED
        return result.text or AUDIT_COMPLETE

    async def derive_schema(self, example: Optional[str] = None) -> str:
        example = example if example is not None else self._artifact_example()
        if not example:
            raise DerivationError("Architectural Fault: there is no example payload to derive a schema from.")

        try:
            result = await self.llm.generate(
                self.unsafe_string_format(DERIVATION_PROMPT, example=example),
                response_mime_type="application/json",
            )
        except Exception as e:
            cause = root_cause(e)
            self.color_print(f"derive_schema(): {cause}", color="red")
            raise DerivationError(f"Architectural Fault: {cause}") from e

        schema = (result.text or "").strip()
        if not schema:
            raise DerivationError("Architectural Fault: the model returned an empty schema.")
        self.derived_schema = schema
        return schema

    def build_harness(self, artifact: Optional[Artifact] = None) -> str:
        artifact = artifact or self.artifact
        if artifact is None:
            return ""
        return self.unsafe_string_format(DEPLOYABLE_HARNESS, prompt=artifact.prompt)

    async def run_prompt_test(self, artifact: Optional[Artifact] = None) -> str:
        """Runs the artifact's prompt through a data-generator harness. Never raises."""
        artifact = artifact or self.artifact
        if artifact is None:
            return PROMPT_TEST_EMPTY
        try:
            result = await self.llm.generate(
                self.unsafe_string_format(PROMPT_TEST_HARNESS, prompt=artifact.prompt),
                response_mime_type="application/json",
            )
        except Exception as e:
            logger.warning(f"run_prompt_test(): {root_cause(e)}")
            return PROMPT_TEST_FAILED
        return result.text or PROMPT_TEST_EMPTY
