# Libraries and Packages
import logging
from typing import Dict, Iterable, List, Optional
from xml.etree import ElementTree as ET

import requests

from errors import ErrorKind, WorkflowError
from models import DocumentCandidate, SearchResult

# Constant Variables
PUBMED_BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
MAX_RESULTS = 20  # ids returned per search
NO_ABSTRACT = "No abstract available."


### QUERY CONSTRUCTION ###

def build_mesh_query(terms: Iterable[str]) -> str:
    """AND-join the terms, each wrapped as a MeSH field search, in the given order."""
    return " AND ".join(f'"{term}"[MeSH Terms]' for term in terms)


### E-UTILITIES ###

def _get(endpoint: str, params: Dict[str, str]) -> requests.Response:
    url = f"{PUBMED_BASE_URL}/{endpoint}"
    try:
        resp = requests.get(url, params=params)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise WorkflowError(ErrorKind.TRANSPORT, f"PubMed {endpoint} unreachable: {e}") from e
    except requests.RequestException as e:
        raise WorkflowError(ErrorKind.RETRIEVAL, f"PubMed {endpoint} request failed: {e}") from e
    if resp.status_code != 200:
        raise WorkflowError(
            ErrorKind.RETRIEVAL, f"PubMed {endpoint} error: Status code {resp.status_code}"
        )
    return resp


def search_pubmed(query: str) -> SearchResult:
    """ESearch: total hit count plus the first MAX_RESULTS PMIDs for a boolean query."""
    if not query:
        return SearchResult(count=0, ids=[])

    params = {
        "db": "pubmed",
        "term": query,
        "retmode": "json",
        "retmax": str(MAX_RESULTS),
    }
    resp = _get("esearch.fcgi", params)
    try:
        result = resp.json()["esearchresult"]
        count = int(result.get("count") or "0")
        ids = [str(pmid) for pmid in result.get("idlist", [])]
    except (ValueError, KeyError, TypeError) as e:
        raise WorkflowError(ErrorKind.RETRIEVAL, f"Unexpected ESearch payload: {e}") from e

    logging.info(f"PubMed search '{query}': {count} hits, {len(ids)} ids")
    return SearchResult(count=count, ids=ids)


def fetch_summaries(ids: List[str]) -> Dict[str, DocumentCandidate]:
    """ESummary: fast title + publication date records keyed by PMID."""
    params = {"db": "pubmed", "id": ",".join(ids), "retmode": "json"}
    resp = _get("esummary.fcgi", params)
    try:
        block = resp.json().get("result", {})
    except ValueError as e:
        raise WorkflowError(ErrorKind.RETRIEVAL, f"Unexpected ESummary payload: {e}") from e

    summaries: Dict[str, DocumentCandidate] = {}
    for pmid in ids:
        summary = block.get(pmid)
        if not summary:
            continue
        summaries[pmid] = DocumentCandidate(
            id=pmid,
            title=(summary.get("title") or "").strip(),
            abstract=NO_ABSTRACT,
            publication_date=summary.get("pubdate") or None,
        )
    return summaries


def _text(element: Optional[ET.Element]) -> str:
    # itertext keeps inline markup such as <i> or <sup> inside titles
    return "".join(element.itertext()).strip() if element is not None else ""


def _format_pub_date(pub_date: Optional[ET.Element]) -> str:
    if pub_date is None:
        return ""
    medline_date = pub_date.findtext("MedlineDate")
    if medline_date:
        return medline_date.strip()
    parts = [pub_date.findtext(tag) for tag in ("Year", "Month", "Day")]
    return " ".join(p.strip() for p in parts if p)


def parse_efetch_xml(xml_text: str) -> List[DocumentCandidate]:
    """Turn an EFetch PubmedArticleSet into records carrying the real abstracts."""
    root = ET.fromstring(xml_text)
    records = []
    for article in root.iter("PubmedArticle"):
        pmid = _text(article.find(".//MedlineCitation/PMID")) or _text(article.find(".//PMID"))
        if not pmid:
            continue
        abstract = " ".join(
            t for t in (_text(node) for node in article.findall(".//Abstract/AbstractText")) if t
        )
        records.append(
            DocumentCandidate(
                id=pmid,
                title=_text(article.find(".//ArticleTitle")),
                abstract=abstract or NO_ABSTRACT,
                publication_date=_format_pub_date(
                    article.find(".//Article/Journal/JournalIssue/PubDate")
                ) or None,
            )
        )
    return records


def fetch_full_records(ids: List[str]) -> List[DocumentCandidate]:
    params = {"db": "pubmed", "id": ",".join(ids), "retmode": "xml"}
    resp = _get("efetch.fcgi", params)
    try:
        return parse_efetch_xml(resp.text)
    except ET.ParseError as e:
        raise WorkflowError(ErrorKind.RETRIEVAL, f"Unexpected EFetch payload: {e}") from e


def merge_records(
    ids: List[str],
    summaries: Dict[str, DocumentCandidate],
    full_records: List[DocumentCandidate],
) -> List[DocumentCandidate]:
    """
    Reconcile both sources by PMID, in search order.

    The EFetch record wins; the summary fills in a missing title or publication
    date, and stands in on its own for ids EFetch did not return. Ids only
    EFetch knows about are appended at the end.
    """
    full_by_id = {r.id: r for r in full_records}
    merged: List[DocumentCandidate] = []
    seen = set()

    for pmid in ids:
        summary = summaries.get(pmid)
        full = full_by_id.get(pmid)
        if full is not None:
            update = {}
            if summary is not None:
                if not full.title:
                    update["title"] = summary.title
                if not full.publication_date:
                    update["publication_date"] = summary.publication_date
            merged.append(full.model_copy(update=update) if update else full)
        elif summary is not None:
            logging.warning(f"EFetch returned no record for PMID {pmid}; using summary")
            merged.append(summary)
        else:
            continue
        seen.add(pmid)

    for record in full_records:
        if record.id not in seen:
            merged.append(record)
            seen.add(record.id)
    return merged


def fetch_pubmed_details(ids: List[str]) -> List[DocumentCandidate]:
    """
    Fetch title, abstract and publication date for each PMID.

    ESummary is required; if the richer EFetch call fails the summary records
    are returned on their own (with a placeholder abstract) and a warning is
    logged.
    """
    if not ids:
        return []

    summaries = fetch_summaries(ids)
    try:
        full_records = fetch_full_records(ids)
    except WorkflowError as e:
        logging.warning(f"EFetch failed, falling back to ESummary records: {e}")
        full_records = []

    documents = merge_records(ids, summaries, full_records)
    logging.info(f"Fetched details for {len(documents)} of {len(ids)} papers")
    return documents
