from types import SimpleNamespace

import pytest

from models import DocumentAnalysis, DocumentCandidate, SearchResult
from response_parser import DecodeResult
from workflow import WorkflowServices


class FakeBackend:
    """In-memory stand-in for Gemini and PubMed, recording every call."""

    def __init__(self):
        self.terms = ["Metformin", "Diabetes Mellitus, Type 2", "Liver Diseases"]
        self.documents = [
            DocumentCandidate(id="101", title="A", abstract="Abstract A", publication_date="2024 Jan"),
            DocumentCandidate(id="102", title="B", abstract="Abstract B"),
            DocumentCandidate(id="103", title="C", abstract="Abstract C"),
        ]
        self.counts = {}
        self.default_count = 42
        self.report = "R"
        self.failing = set()
        self.topics = []
        self.queries = []
        self.fetched = []
        self.analyzed = []
        self.synthesized = []
        self.on_search = None

    def _maybe_fail(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} exploded")

    def extract_keywords(self, topic):
        self.topics.append(topic)
        self._maybe_fail("extract_keywords")
        return list(self.terms)

    def search(self, query):
        self.queries.append(query)
        self._maybe_fail("search")
        if self.on_search is not None:
            self.on_search(query)
        return SearchResult(
            count=self.counts.get(query, self.default_count),
            ids=[d.id for d in self.documents],
        )

    def fetch_details(self, ids):
        self.fetched.append(list(ids))
        self._maybe_fail("fetch_details")
        return [d for d in self.documents if d.id in ids]

    def analyze_document(self, document, topic):
        self.analyzed.append(document.id)
        self._maybe_fail("analyze_document")
        return DecodeResult.success(
            DocumentAnalysis(
                translated_title=f"訳 {document.title}",
                translated_abstract=f"訳 {document.abstract}",
                relevance_analysis=f"{document.title} is relevant to {topic}",
            )
        )

    def synthesize(self, documents, topic):
        self.synthesized.append(([d.id for d in documents], topic))
        self._maybe_fail("synthesize")
        return self.report

    def services(self):
        return WorkflowServices(
            extract_keywords=self.extract_keywords,
            search=self.search,
            fetch_details=self.fetch_details,
            analyze_document=self.analyze_document,
            synthesize=self.synthesize,
        )


@pytest.fixture
def backend():
    return FakeBackend()


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeGeminiClient:
    def __init__(self, text=None, error=None):
        self.models = FakeModels(text=text, error=error)


@pytest.fixture
def fake_gemini():
    return FakeGeminiClient
