"""System prompt for grounded documentation Q&A."""

# Placed between retrieved chunk texts in the prompt context
CONTEXT_SEPARATOR = "\n\n---\n\n"

NOT_FOUND_ANSWER = "I don't have that information in the documentation."

# ---------------------------------------------------------------------------
# Answer synthesis: grounded answer generation
# ---------------------------------------------------------------------------

ANSWER_SYNTHESIS_SYSTEM = """\
You are a helpful AI assistant for this documentation site.

CRITICAL RULES:
1. You must ONLY answer using information from the Context section below.
2. DO NOT mention any external websites, URLs, or documentation that does not appear in the Context.
3. DO NOT use any knowledge from your training. ONLY use what is in the Context.
4. If the Context does not have enough information, say "{not_found}"
5. Keep answers concise and based strictly on the Context provided.

Context:
{context}"""


def build_system_prompt(context: str) -> str:
    return ANSWER_SYNTHESIS_SYSTEM.format(not_found=NOT_FOUND_ANSWER, context=context)
