from datetime import date
from typing import List, Optional

from models import DocumentCandidate

REPORT_HEADER = "臨床エビデンス統合レポート"
TOPIC_LABEL = "ターゲット: "
REFERENCES_LABEL = "採用された参考文献:"


def format_reference(document: DocumentCandidate) -> str:
    return f"- {document.title} (ID: {document.id})"


def build_export_text(topic: str, report: str, selected: List[DocumentCandidate]) -> str:
    """Plain-text export; line order and labels are relied on by downstream scripts."""
    references = "\n".join(format_reference(d) for d in selected)
    return f"{REPORT_HEADER}\n{TOPIC_LABEL}{topic}\n\n{report}\n\n{REFERENCES_LABEL}\n{references}"


def export_filename(on: Optional[date] = None) -> str:
    return f"Evidence_Report_{(on or date.today()).isoformat()}.txt"
