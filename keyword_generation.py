import logging
from typing import List

import httpx
from google.genai import errors as genai_errors
from google.genai import types

from api_client_manager import get_next_api_client
from errors import ErrorKind, WorkflowError
from response_parser import DecodeResult, decode_json

EXTRACTION_MODEL = "gemini-3-flash-preview"

MESH_TERMS_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(type=types.Type.STRING),
)


def build_extraction_prompt(topic: str) -> str:
    return f"""You are an expert medical librarian.
Extract the most relevant Medical Subject Headings (MeSH terms) from the following medical text/keywords.

IMPORTANT RULES:
Use official MeSH descriptor names in English, even when the text is written in another language.
Do not include any explanation, preamble, or commentary.
Return ONLY a JSON array of strings.

Text: "{topic}"
"""


def decode_mesh_terms(raw: str) -> DecodeResult:
    """Validate Gemini's reply as a non-empty list of terms, dropping blanks and repeats."""
    result = decode_json(raw, List[str])
    if not result.ok:
        return result

    # Deduplicate while preserving order
    seen = set()
    cleaned = []
    for term in result.value:
        t = term.strip()
        if t and t.lower() not in seen:
            seen.add(t.lower())
            cleaned.append(t)
    if not cleaned:
        return DecodeResult.failure("no usable MeSH terms in reply")
    return DecodeResult.success(cleaned)


def extract_mesh_terms(topic: str) -> List[str]:
    """
    Ask Gemini for the MeSH terms of a free-text clinical question.
    Malformed output fails closed to an empty list; API errors raise.
    """
    active_client = get_next_api_client()
    try:
        response = active_client.models.generate_content(
            model=EXTRACTION_MODEL,
            contents=build_extraction_prompt(topic),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=MESH_TERMS_SCHEMA,
            ),
        )
    except genai_errors.APIError as e:
        raise WorkflowError(ErrorKind.EXTRACTION, f"Gemini API error: {e}") from e
    except httpx.TransportError as e:
        raise WorkflowError(ErrorKind.TRANSPORT, f"Gemini unreachable: {e}") from e

    raw = response.text or ""
    logging.debug(f"Gemini raw MeSH reply: {raw}")

    result = decode_mesh_terms(raw)
    if not result.ok:
        logging.error(f"Failed to parse MeSH terms: {result.error}")
        return []
    logging.info(f"Extracted {len(result.value)} MeSH terms")
    return result.value
