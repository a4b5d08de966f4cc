RESEARCH_PROMPT = """
Act as a Lead Data Architect. Perform a targeted, industry-wide search for the most authoritative JSON data structures, API specifications, and formal schemas for: "{query}".

PRIORITY SOURCES:
1. Official Developer Documentation (e.g., Stripe, Google, AWS, GitHub).
2. OpenAPI (Swagger) or GraphQL specifications.
3. Public Schema Repositories (e.g., Schema.org, industry-standard GitHub repos).
4. Technical RFCs or IETF standards.

INSTRUCTIONS:
- Prioritize official documentation over generic blog posts or community tutorials.
- Identify the canonical "Source of Truth" for this data model.
- Identify core keys, nesting patterns, and standardized naming conventions.
- Distinguish between required and optional fields.
- Reference specific implementations from major tech platforms.
"""

SYNTHESIS_PROMPT = """
As a Senior AI Architect, use this research to engineer a high-fidelity JSON prompt package for: "{query}".

Research Input:
{research}

Return a JSON object with:
1. "title": Descriptive professional title.
2. "description": Deep overview in Markdown.
3. "jsonPrompt": A precise, highly explicit LLM system prompt. This prompt MUST:
   - Define exactly what data to generate.
   - Explicitly list every key name.
   - Specify data types for every field (e.g., "Integer", "Floating point", "ISO-8601 date string", "Boolean").
   - Define array structures and constraints (e.g., "An array of exactly 5 items").
   - Mention mandatory vs. optional fields.
   - Use technical but clear language optimized for LLM accuracy.
4. "exampleJson": A robust, realistic example JSON string.
5. "tsInterface": Production-ready TypeScript interface.
6. "jsonSchema": Comprehensive JSON Schema (Draft 7).
7. "promptVariations": exactly 3 alternative prompt strategies.
"""

NO_RESEARCH_TEXT = "No grounded data available."

# Six typed strings and one string array, all required.
ARTIFACT_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "jsonPrompt": {"type": "string"},
        "exampleJson": {"type": "string"},
        "tsInterface": {"type": "string"},
        "jsonSchema": {"type": "string"},
        "promptVariations": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "description", "jsonPrompt", "exampleJson", "tsInterface", "jsonSchema", "promptVariations"],
    "additionalProperties": False,
}

VALIDATION_PROMPT = "Validate JSON against Schema. Report in Markdown. Schema: {schema} JSON: {example}"

DERIVATION_PROMPT = "Architect: Reverse engineer a JSON Schema (Draft 7) from this JSON example. Return only the schema as JSON: {example}"

PROMPT_TEST_HARNESS = """Act as a professional data generator.
Generate a single JSON object based on the following explicit structural instructions:

--- INSTRUCTIONS START ---
{prompt}
--- INSTRUCTIONS END ---

REQUIREMENTS:
1. Use correct data types. Populated with realistic entries.
2. Return ONLY the raw JSON string. No preamble."""

DEPLOYABLE_HARNESS = """Act as a high-precision data synthesis node. Generate a JSON object strictly following these instructions:

{prompt}

OUTPUT CONSTRAINTS:
- Return ONLY valid JSON.
- No markdown formatting.
- Ensure 100% adherence to specified keys, data types, and nesting logic."""

CHAT_SYSTEM_PROMPT = "You are the JSON Prompter Assistant. Expert in data schemas and prompt engineering. Focus on structural integrity. Page context: {context}"

NO_CONTEXT_MARKER = "No active context."

MARKET_FETCH_PROMPT = """Fetch the current stock price and the last {points} days of daily closing prices for the symbol "{symbol}".
Format the output strictly as a JSON object with keys:
"currentPrice" (number), "changePercent" (number), and "history" (array of {points} objects with "date" (string) and "price" (number)).
Keep dates very short, like 'Mon', 'Tue', etc."""
