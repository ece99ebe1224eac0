"""Turn retrieved matches into a deduplicated "References" block.

  content/docs/Deploying.mdx      -> [Deploying](/docs/Deploying)
  content\\docs\\guides\\index.md -> [guides](/docs/guides)
"""

import re
from dataclasses import dataclass
from urllib.parse import quote

from errors import DataError
from schemas.chunk import Match

DEFAULT_SOURCE_PREFIX = "content/"
DEFAULT_TITLE = "Documentation"
INDEX_MARKER = "index"
_DOC_EXTENSION = re.compile(r"\.mdx?$", re.IGNORECASE)
_LINK_TEXT_SPECIALS = re.compile(r"[\\\[\]]")


@dataclass
class Citation:
    """A display reference to one source document."""
    source_path: str  # normalized, '/'-separated
    url: str
    title: str


def normalize_source(source: str) -> str:
    return source.replace("\\", "/")


def citation_for_source(source: str, source_prefix: str = DEFAULT_SOURCE_PREFIX) -> Citation:
    normalized = normalize_source(source)
    public = normalized[len(source_prefix):] if source_prefix and normalized.startswith(source_prefix) else normalized
    public = _DOC_EXTENSION.sub("", public)

    segments = [s for s in public.split("/") if s]
    if segments and segments[-1] == INDEX_MARKER:
        segments.pop()

    return Citation(
        source_path=normalized,
        url="/" + "/".join(quote(s) for s in segments),
        title=segments[-1] if segments else DEFAULT_TITLE,
    )


def build_citations(matches: list[Match], source_prefix: str = DEFAULT_SOURCE_PREFIX) -> list[Citation]:
    """One citation per distinct source, in match (similarity) order.

    Raises:
        DataError: If a match carries no usable ``source`` metadata.
    """
    citations: list[Citation] = []
    seen: set[str] = set()
    for match in matches:
        source = match.metadata.get("source")
        if not isinstance(source, str) or not source.strip():
            raise DataError(f"Index entry '{match.id}' has no source metadata")
        citation = citation_for_source(source, source_prefix)
        if citation.source_path in seen:
            continue
        seen.add(citation.source_path)
        citations.append(citation)
    return citations


def _escape_link_text(text: str) -> str:
    return _LINK_TEXT_SPECIALS.sub(r"\\\g<0>", text)


def format_references(citations: list[Citation]) -> str:
    """Markdown reference block appended after the answer; empty if no citations."""
    if not citations:
        return ""
    lines = [f"- [{_escape_link_text(c.title)}]({c.url})" for c in citations]
    return "\n\n---\n**References:**\n" + "\n".join(lines)
