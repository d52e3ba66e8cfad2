from enum import Enum


class ErrorKind(str, Enum):
    EXTRACTION = "extraction"  # keyword extraction call failed
    RETRIEVAL = "retrieval"  # PubMed search / detail fetch failed
    ANALYSIS = "analysis"  # per-paper translation + relevance call failed
    SYNTHESIS = "synthesis"  # final report call failed
    TRANSPORT = "transport"  # network never reached the service


# Notices shown to the researcher, one per aborted transition
USER_MESSAGES = {
    ErrorKind.EXTRACTION: "MeSH term extraction failed. Please try again.",
    ErrorKind.RETRIEVAL: "Fetching papers from PubMed failed. Please try again.",
    ErrorKind.ANALYSIS: "Paper analysis failed.",
    ErrorKind.SYNTHESIS: "Report synthesis failed. Please try again.",
    ErrorKind.TRANSPORT: "Network error while contacting an external service.",
}


class WorkflowError(RuntimeError):
    """A failure that aborts one workflow transition."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]
