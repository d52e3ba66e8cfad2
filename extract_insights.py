import logging

import httpx
from google.genai import errors as genai_errors
from google.genai import types

from api_client_manager import get_next_api_client
from errors import ErrorKind, WorkflowError
from models import DocumentAnalysis, DocumentCandidate
from response_parser import DecodeResult, decode_json

ANALYSIS_MODEL = "gemini-3-flash-preview"
TARGET_LANGUAGE = "professional medical Japanese"

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "translatedTitle": types.Schema(type=types.Type.STRING),
        "translatedAbstract": types.Schema(type=types.Type.STRING),
        "relevanceAnalysis": types.Schema(type=types.Type.STRING),
    },
    required=["translatedTitle", "translatedAbstract", "relevanceAnalysis"],
)


def build_analysis_prompt(document: DocumentCandidate, topic: str) -> str:
    return f"""Topic of Interest: {topic}

Analyze the following PubMed article:
Title: {document.title}
Abstract: {document.abstract}

Tasks:
1. Translate the Title and Abstract into {TARGET_LANGUAGE}.
2. Analyze its relevance to the "Topic of Interest" (Target).

Return as JSON with keys: translatedTitle, translatedAbstract, relevanceAnalysis.
"""


def translate_and_analyze(document: DocumentCandidate, topic: str) -> DecodeResult:
    """
    Translate one paper and judge its relevance to the topic.

    Returns a DecodeResult wrapping a DocumentAnalysis; a malformed or empty
    reply is a failed result. Gemini API errors raise WorkflowError(ANALYSIS).
    """
    active_client = get_next_api_client()
    try:
        response = active_client.models.generate_content(
            model=ANALYSIS_MODEL,
            contents=build_analysis_prompt(document, topic),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=ANALYSIS_SCHEMA,
            ),
        )
    except genai_errors.APIError as e:
        raise WorkflowError(ErrorKind.ANALYSIS, f"Gemini API error for PMID {document.id}: {e}") from e
    except httpx.TransportError as e:
        raise WorkflowError(ErrorKind.TRANSPORT, f"Gemini unreachable: {e}") from e

    result = decode_json(response.text, DocumentAnalysis)
    if not result.ok:
        logging.warning(f"Analysis failed for PMID {document.id}: {result.error}")
    return result
