"""Data model shared by the PubMed client, the Gemini helpers and the workflow.

Field names sent to the browser and requested from Gemini are camelCase
aliases; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    INPUT = "input"
    KEYWORD_SELECTION = "keyword_selection"
    DOCUMENT_REVIEW = "document_review"
    REPORT = "report"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class KeywordCandidate(_Record):
    """One extracted MeSH term the researcher can switch on or off."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    term: str
    selected: bool = True


class DocumentCandidate(_Record):
    """A PubMed paper, optionally enriched with translation and relevance analysis."""
    id: str
    title: str
    abstract: str
    translated_title: Optional[str] = Field(default=None, alias="translatedTitle")
    translated_abstract: Optional[str] = Field(default=None, alias="translatedAbstract")
    relevance_analysis: Optional[str] = Field(default=None, alias="relevanceAnalysis")
    selected: bool = False
    publication_date: Optional[str] = Field(default=None, alias="publicationDate")

    @property
    def display_title(self) -> str:
        return self.translated_title or self.title

    @property
    def display_abstract(self) -> str:
        return self.translated_abstract or self.abstract


class SearchResult(_Record):
    count: int = Field(default=0, ge=0)
    ids: List[str] = Field(default_factory=list)


class DocumentAnalysis(_Record):
    """Gemini's translation + relevance verdict for one paper. All fields required."""
    translated_title: str = Field(alias="translatedTitle", min_length=1)
    translated_abstract: str = Field(alias="translatedAbstract", min_length=1)
    relevance_analysis: str = Field(alias="relevanceAnalysis", min_length=1)


class WorkflowState(_Record):
    stage: Stage = Stage.INPUT
    topic: str = ""
    keywords: List[KeywordCandidate] = Field(default_factory=list)
    hit_count: int = Field(default=0, ge=0, alias="hitCount")
    documents: List[DocumentCandidate] = Field(default_factory=list)
    is_busy: bool = Field(default=False, alias="isBusy")
    busy_message: str = Field(default="", alias="busyMessage")
    busy_progress: int = Field(default=0, ge=0, le=100, alias="busyProgress")
    report: str = ""

    @property
    def selected_terms(self) -> List[str]:
        return [k.term for k in self.keywords if k.selected]

    @property
    def selected_documents(self) -> List[DocumentCandidate]:
        return [d for d in self.documents if d.selected]

    @property
    def all_documents_selected(self) -> bool:
        # vacuously true for an empty set
        return all(d.selected for d in self.documents)

    def to_client(self) -> dict:
        """Serialize for the browser (camelCase keys plus display helpers)."""
        payload = self.model_dump(mode="json", by_alias=True)
        for doc, raw in zip(self.documents, payload["documents"]):
            raw["displayTitle"] = doc.display_title
            raw["displayAbstract"] = doc.display_abstract
        payload["selectedCount"] = len(self.selected_documents)
        payload["allSelected"] = bool(self.documents) and self.all_documents_selected
        return payload
