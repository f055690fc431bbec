"""Turn search results into spoken answers."""
import re
from typing import List, Optional

from supportline.services.backends.base import SearchResponse, SearchResult
from supportline.services.context.models import FocusEntity

PHONE_PATTERN = re.compile(r"\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})")
TITLE_SUFFIX = re.compile(r"\s*(?:[-|:]\s*.*)$")

MAX_SPOKEN_RESULTS = 3


def extract_phone(content: str) -> Optional[str]:
    """Return the first phone number in the text, formatted 555-555-5555."""
    if not content:
        return None
    match = PHONE_PATTERN.search(content)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)}-{match.group(3)}"


def clean_title(title: str) -> str:
    """Strip site-name suffixes and punctuation from a result title."""
    if not title:
        return ""
    cleaned = TITLE_SUFFIX.sub("", title).strip()
    cleaned = re.sub(r"[^\w\s'&-]", "", cleaned).strip()
    return cleaned or title.strip()


def to_focus_entity(result: SearchResult) -> FocusEntity:
    return FocusEntity(
        name=clean_title(result.title),
        url=result.url,
        content=result.content,
        phone=extract_phone(result.content),
    )


def format_search_answer(response: SearchResponse, location: Optional[str] = None) -> str:
    """Build a short spoken answer from search results."""
    place = location or "your area"
    results = response.results[:MAX_SPOKEN_RESULTS]
    if not results:
        return (response.answer or "").strip()

    plural = "s" if len(results) > 1 else ""
    parts: List[str] = [f"I found {len(results)} resource{plural} in {place}."]
    for index, result in enumerate(results, start=1):
        entry = f"{index}. {clean_title(result.title)}"
        phone = extract_phone(result.content)
        if phone:
            entry += f", phone {phone}"
        parts.append(entry + ".")
    parts.append("Would you like more details about any of these?")
    return " ".join(parts)


def format_snippets(response: Optional[SearchResponse], limit: int = 3) -> str:
    """Render search results as prompt context for the language model."""
    if response is None:
        return ""
    lines = []
    if response.answer:
        lines.append(f"Summary: {response.answer.strip()}")
    for result in response.results[:limit]:
        snippet = result.content.strip().replace("\n", " ")[:400]
        lines.append(f"- {clean_title(result.title)}: {snippet}")
    return "\n".join(lines)
