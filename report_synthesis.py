import logging
from typing import List

import httpx
from google.genai import errors as genai_errors
from google.genai import types

from api_client_manager import get_next_api_client
from errors import ErrorKind, WorkflowError
from models import DocumentCandidate

SYNTHESIS_MODEL = "gemini-3-pro-preview"
THINKING_BUDGET = 2000


def build_synthesis_context(documents: List[DocumentCandidate]) -> str:
    return "\n\n---\n\n".join(
        f"Title: {d.title}\nAnalysis: {d.relevance_analysis or ''}" for d in documents
    )


def build_synthesis_prompt(documents: List[DocumentCandidate], topic: str) -> str:
    return f"""You are a world-class medical researcher.
Synthesize a final report based on the following analyzed papers and their relevance to the target topic: "{topic}".
The report should be in professional Japanese, structured with an Introduction, Key Findings from the selected evidence, Clinical Implications, and a Conclusion.

Articles Data:
{build_synthesis_context(documents)}
"""


def synthesize_final_report(documents: List[DocumentCandidate], topic: str) -> str:
    """Write the narrative evidence report for the selected papers."""
    active_client = get_next_api_client()
    try:
        response = active_client.models.generate_content(
            model=SYNTHESIS_MODEL,
            contents=build_synthesis_prompt(documents, topic),
            config=types.GenerateContentConfig(
                thinking_config=types.ThinkingConfig(thinking_budget=THINKING_BUDGET),
            ),
        )
    except genai_errors.APIError as e:
        raise WorkflowError(ErrorKind.SYNTHESIS, f"Gemini API error: {e}") from e
    except httpx.TransportError as e:
        raise WorkflowError(ErrorKind.TRANSPORT, f"Gemini unreachable: {e}") from e

    report = (response.text or "").strip()
    if not report:
        raise WorkflowError(ErrorKind.SYNTHESIS, "Gemini returned an empty report")
    logging.info(f"Synthesized report from {len(documents)} papers ({len(report)} chars)")
    return report
