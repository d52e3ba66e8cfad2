"""
Evidence workflow: the four-step wizard behind the web app.

    INPUT -> KEYWORD_SELECTION -> DOCUMENT_REVIEW -> REPORT

The module has two layers:

* Reducers: pure functions ``(state, ...) -> state`` for every transition.
  A reducer whose guard does not hold returns the state it was given, so
  callers can detect a no-op with ``is``.
* ResearchWorkflow: owns the current WorkflowState of one browser session,
  sequences the external calls (Gemini, PubMed) for each transition, gates
  transitions on the busy flag, reports progress and keeps the live PubMed hit
  count in step with the keyword toggles.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from errors import ErrorKind, WorkflowError
from extract_insights import translate_and_analyze
from keyword_generation import extract_mesh_terms
from models import (
    DocumentAnalysis,
    DocumentCandidate,
    KeywordCandidate,
    SearchResult,
    Stage,
    WorkflowState,
)
from paper_collector import build_mesh_query, fetch_pubmed_details, search_pubmed
from report_export import build_export_text, export_filename
from report_synthesis import synthesize_final_report
from response_parser import DecodeResult

ProgressCallback = Callable[[int, str], None]


# ===== REDUCERS =====


def busy_started(state: WorkflowState, message: str, progress: int = 0) -> WorkflowState:
    return state.model_copy(
        update={"is_busy": True, "busy_message": message, "busy_progress": progress}
    )


def progress_reported(state: WorkflowState, progress: int, message: str) -> WorkflowState:
    return state.model_copy(update={"busy_progress": progress, "busy_message": message})


def busy_cleared(state: WorkflowState) -> WorkflowState:
    return state.model_copy(update={"is_busy": False, "busy_message": "", "busy_progress": 0})


def keywords_extracted(state: WorkflowState, topic: str, terms: List[str]) -> WorkflowState:
    """Replace the keyword set (everything selected) and move to keyword selection."""
    return state.model_copy(
        update={
            "stage": Stage.KEYWORD_SELECTION,
            "topic": topic,
            "keywords": [KeywordCandidate(term=t) for t in terms],
            "hit_count": 0,
        }
    )


def keyword_toggled(state: WorkflowState, keyword_id: str) -> WorkflowState:
    """Flip one keyword. The hit count drops to 0 until the new selection is recounted."""
    if state.stage != Stage.KEYWORD_SELECTION:
        return state
    if not any(k.id == keyword_id for k in state.keywords):
        return state
    keywords = [
        k.model_copy(update={"selected": not k.selected}) if k.id == keyword_id else k
        for k in state.keywords
    ]
    return state.model_copy(update={"keywords": keywords, "hit_count": 0})


def hit_count_resolved(state: WorkflowState, count: int) -> WorkflowState:
    return state.model_copy(update={"hit_count": max(0, int(count))})


def documents_fetched(state: WorkflowState, documents: List[DocumentCandidate]) -> WorkflowState:
    unselected = [d.model_copy(update={"selected": False}) for d in documents]
    return state.model_copy(update={"documents": unselected})


def merge_analysis(
    document: DocumentCandidate, analysis: Optional[DocumentAnalysis]
) -> DocumentCandidate:
    """Overlay the analysis fields, force selected=False, keep everything else."""
    update = {"selected": False}
    if analysis is not None:
        update.update(
            translated_title=analysis.translated_title,
            translated_abstract=analysis.translated_abstract,
            relevance_analysis=analysis.relevance_analysis,
        )
    return document.model_copy(update=update)


def document_analyzed(
    state: WorkflowState, index: int, analysis: Optional[DocumentAnalysis]
) -> WorkflowState:
    documents = list(state.documents)
    documents[index] = merge_analysis(documents[index], analysis)
    return state.model_copy(update={"documents": documents})


def review_ready(state: WorkflowState) -> WorkflowState:
    return state.model_copy(update={"stage": Stage.DOCUMENT_REVIEW})


def document_toggled(state: WorkflowState, document_id: str) -> WorkflowState:
    if state.stage != Stage.DOCUMENT_REVIEW:
        return state
    if not any(d.id == document_id for d in state.documents):
        return state
    documents = [
        d.model_copy(update={"selected": not d.selected}) if d.id == document_id else d
        for d in state.documents
    ]
    return state.model_copy(update={"documents": documents})


def all_documents_toggled(state: WorkflowState) -> WorkflowState:
    """Select-all / deselect-all flip: everything becomes ``not all_documents_selected``."""
    if state.stage != Stage.DOCUMENT_REVIEW:
        return state
    target = not state.all_documents_selected
    documents = [d.model_copy(update={"selected": target}) for d in state.documents]
    return state.model_copy(update={"documents": documents})


def report_synthesized(state: WorkflowState, report: str) -> WorkflowState:
    return state.model_copy(update={"stage": Stage.REPORT, "report": report})


def returned_to_input(state: WorkflowState) -> WorkflowState:
    if state.stage != Stage.KEYWORD_SELECTION or state.is_busy:
        return state
    return state.model_copy(update={"stage": Stage.INPUT})


def restarted(state: WorkflowState) -> WorkflowState:
    if state.stage != Stage.REPORT or state.is_busy:
        return state
    return WorkflowState()


# ===== SESSION CONTROLLER =====


def _ignore_progress(progress: int, message: str) -> None:
    pass


@dataclass
class WorkflowServices:
    """The external calls the workflow sequences. Swapped for fakes in tests."""

    extract_keywords: Callable[[str], List[str]] = extract_mesh_terms
    search: Callable[[str], SearchResult] = search_pubmed
    fetch_details: Callable[[List[str]], List[DocumentCandidate]] = fetch_pubmed_details
    analyze_document: Callable[[DocumentCandidate, str], DecodeResult] = translate_and_analyze
    synthesize: Callable[[List[DocumentCandidate], str], str] = synthesize_final_report


class ProgressTracker:
    """Clamps progress to [0, 100] and never lets it go backwards within one transition."""

    def __init__(self, sink: ProgressCallback, start: int = 0):
        self._sink = sink
        self.value = start

    def report(self, progress: int, message: str) -> int:
        self.value = min(100, max(self.value, int(progress)))
        self._sink(self.value, message)
        return self.value


class ResearchWorkflow:
    """
    Drives one researcher's session through the wizard.

    Transitions that call external services (submit_topic, proceed, synthesize)
    run only when their guard holds and no other transition is in flight; the
    check-and-set of the busy flag happens under a lock because the web app
    runs transitions on Socket.IO background tasks. On failure they clear the
    busy flag, leave the stage where it was and raise WorkflowError.
    """

    def __init__(
        self,
        services: Optional[WorkflowServices] = None,
        progress: Optional[ProgressCallback] = None,
        analysis_workers: int = 1,
    ):
        self.services = services or WorkflowServices()
        self._progress = progress or _ignore_progress
        self._analysis_workers = max(1, analysis_workers)
        self._state = WorkflowState()
        self._lock = threading.Lock()
        # bumped on every keyword-set change; stale hit counts are dropped
        self._hit_generation = 0

    @property
    def state(self) -> WorkflowState:
        return self._state

    # --- plumbing ---

    def _apply(self, reducer: Callable[..., WorkflowState], *args) -> WorkflowState:
        with self._lock:
            self._state = reducer(self._state, *args)
            return self._state

    def _begin(self, guard: Callable[[WorkflowState], bool], message: str, progress: int) -> bool:
        with self._lock:
            if self._state.is_busy or not guard(self._state):
                return False
            self._state = busy_started(self._state, message, progress)
        self._progress(progress, message)
        return True

    def _publish_progress(self, progress: int, message: str) -> None:
        self._apply(progress_reported, progress, message)
        self._progress(progress, message)

    def _finish(self, reducer: Callable[..., WorkflowState], *args) -> WorkflowState:
        with self._lock:
            self._state = busy_cleared(reducer(self._state, *args))
            return self._state

    @contextmanager
    def _abort_on_failure(self, kind: ErrorKind):
        try:
            yield
        except WorkflowError as e:
            logging.error(f"Workflow transition failed ({e.kind.value}): {e.detail}")
            self._apply(busy_cleared)
            raise
        except Exception as e:
            logging.error(f"Workflow transition failed ({kind.value}): {e}")
            self._apply(busy_cleared)
            raise WorkflowError(kind, str(e)) from e

    # --- INPUT ---

    def submit_topic(self, topic: str) -> WorkflowState:
        """Extract MeSH terms for *topic* and move to keyword selection."""
        topic = (topic or "").strip()
        message = "Extracting MeSH terms from the topic with Gemini..."
        if not self._begin(lambda s: s.stage == Stage.INPUT and bool(topic), message, 20):
            return self.state

        tracker = ProgressTracker(self._publish_progress, start=20)
        with self._abort_on_failure(ErrorKind.EXTRACTION):
            terms = self.services.extract_keywords(topic)
            if not terms:
                raise WorkflowError(ErrorKind.EXTRACTION, "no MeSH terms could be extracted")
            tracker.report(100, f"Extracted {len(terms)} MeSH terms")
            with self._lock:
                self._state = busy_cleared(keywords_extracted(self._state, topic, terms))
                self._hit_generation += 1

        try:
            self.refresh_hit_count()
        except WorkflowError as e:
            logging.warning(f"Initial hit count unavailable: {e}")
        return self.state

    # --- KEYWORD_SELECTION ---

    def toggle_keyword(self, keyword_id: str, refresh: bool = True) -> WorkflowState:
        """
        Flip one keyword. With ``refresh=False`` the caller is expected to run
        refresh_hit_count() itself (the web app does so on a background task).
        """
        with self._lock:
            new_state = keyword_toggled(self._state, keyword_id)
            if new_state is self._state:
                return new_state
            self._state = new_state
            self._hit_generation += 1
        if refresh:
            return self.refresh_hit_count()
        return self.state

    def refresh_hit_count(self) -> WorkflowState:
        """
        Recount PubMed hits for the selected terms. Only the newest request's
        count is applied; a count that arrives after a later toggle is discarded.
        """
        with self._lock:
            if self._state.stage != Stage.KEYWORD_SELECTION:
                return self._state
            generation = self._hit_generation
            terms = self._state.selected_terms

        count = 0
        if terms:
            try:
                count = self.services.search(build_mesh_query(terms)).count
            except Exception as e:
                self._resolve_hit_count(generation, 0)
                if isinstance(e, WorkflowError):
                    raise
                raise WorkflowError(ErrorKind.RETRIEVAL, f"hit count search failed: {e}") from e

        return self._resolve_hit_count(generation, count)

    def _resolve_hit_count(self, generation: int, count: int) -> WorkflowState:
        with self._lock:
            if generation != self._hit_generation:
                logging.debug(f"Discarding stale hit count {count} (generation {generation})")
                return self._state
            self._state = hit_count_resolved(self._state, count)
            return self._state

    def back(self) -> WorkflowState:
        return self._apply(returned_to_input)

    def proceed(self) -> WorkflowState:
        """Search, fetch details and analyze every paper, then move to document review."""
        message = "Fetching the paper list from PubMed..."
        guard = lambda s: (
            s.stage == Stage.KEYWORD_SELECTION and s.hit_count > 0 and bool(s.selected_terms)
        )
        if not self._begin(guard, message, 5):
            return self.state

        tracker = ProgressTracker(self._publish_progress, start=5)
        with self._abort_on_failure(ErrorKind.RETRIEVAL):
            topic = self.state.topic
            result = self.services.search(build_mesh_query(self.state.selected_terms))
            documents = self.services.fetch_details(result.ids)
            tracker.report(20, f"Fetched {len(documents)} abstracts")
            self._apply(documents_fetched, documents)

            self._analyze_documents(documents, topic, tracker)

            tracker.report(100, "Ready")
            self._finish(review_ready)
        return self.state

    def _analyze_one(self, document: DocumentCandidate, topic: str) -> Optional[DocumentAnalysis]:
        # analysis failures degrade to the untranslated paper, never abort the batch
        try:
            result = self.services.analyze_document(document, topic)
        except Exception as e:
            logging.warning(f"Analysis failed for PMID {document.id}: {e}")
            return None
        return result.value if result.ok else None

    def _analyze_documents(
        self, documents: List[DocumentCandidate], topic: str, tracker: ProgressTracker
    ) -> None:
        total = len(documents)

        def step_done(i: int, analysis: Optional[DocumentAnalysis]) -> None:
            self._apply(document_analyzed, i, analysis)
            tracker.report(
                20 + round((i + 1) / total * 75),
                f"Analyzing and translating papers ({i + 1} / {total})...",
            )

        if self._analysis_workers == 1 or total <= 1:
            for i, document in enumerate(documents):
                step_done(i, self._analyze_one(document, topic))
            return

        with ThreadPoolExecutor(max_workers=self._analysis_workers) as pool:
            futures = [pool.submit(self._analyze_one, d, topic) for d in documents]
            # collected in submission order so merges and progress stay ordered
            for i, future in enumerate(futures):
                step_done(i, future.result())

    # --- DOCUMENT_REVIEW ---

    def toggle_document(self, document_id: str) -> WorkflowState:
        return self._apply(document_toggled, document_id)

    def toggle_all(self) -> WorkflowState:
        return self._apply(all_documents_toggled)

    def synthesize(self) -> WorkflowState:
        """Write the final report from the selected papers. No-op with nothing selected."""
        message = "Synthesizing the evidence report from the selected papers..."
        guard = lambda s: s.stage == Stage.DOCUMENT_REVIEW and bool(s.selected_documents)
        if not self._begin(guard, message, 30):
            return self.state

        tracker = ProgressTracker(self._publish_progress, start=30)
        with self._abort_on_failure(ErrorKind.SYNTHESIS):
            state = self.state
            report = self.services.synthesize(state.selected_documents, state.topic)
            if not report or not report.strip():
                raise WorkflowError(ErrorKind.SYNTHESIS, "empty report")
            tracker.report(100, "Report ready")
            self._finish(report_synthesized, report)
        return self.state

    # --- REPORT ---

    def restart(self) -> WorkflowState:
        with self._lock:
            new_state = restarted(self._state)
            if new_state is not self._state:
                self._hit_generation += 1
            self._state = new_state
            return new_state

    def export(self) -> Optional[Tuple[str, str]]:
        """(filename, text) of the plain-text report, or None outside the report stage."""
        state = self.state
        if state.stage != Stage.REPORT:
            return None
        return export_filename(), build_export_text(
            state.topic, state.report, state.selected_documents
        )
