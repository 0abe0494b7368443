"""Search phrase generation from a topic.

The returned order is the priority order in which the pipeline searches.
"""

from __future__ import annotations

# ``{topic}`` is substituted verbatim; order matters.
STANDARD_TEMPLATES: tuple[str, ...] = (
    # Core marketing
    "{topic} marketing strategies",
    "{topic} paid advertising",
    "{topic} email marketing",
    "{topic} customer acquisition",
    "{topic} sales funnel",
    "{topic} conversion optimization",
    "{topic} lead generation",
    "{topic} digital marketing",
    "{topic} growth hacking",
    "{topic} marketing automation",
    # Psychology
    "sales psychology {topic}",
    "persuasion techniques {topic}",
    "consumer behavior {topic}",
    "buying psychology {topic}",
    # Case studies
    "{topic} marketing case study",
    "{topic} success story marketing",
    "{topic} marketing results",
    "{topic} ROI marketing",
)

OPTIMIZED_TEMPLATES: tuple[str, ...] = (
    "{topic} marketing strategy {year}",
    "{topic} digital marketing case study",
    "{topic} advertising best practices",
    "{topic} customer acquisition strategy",
    "{topic} marketing funnel optimization",
    "{topic} email marketing campaigns",
    "{topic} social media strategy",
    "{topic} content marketing tips",
    "{topic} paid advertising ROI",
    "{topic} conversion optimization",
    "{topic} marketing expert interview",
    "{topic} business growth strategy",
    "{topic} sales psychology",
    "{topic} customer retention strategies",
    "{topic} marketing automation tools",
)


def _normalize(topic: str) -> str:
    normalized = " ".join(topic.split())
    if not normalized:
        raise ValueError("topic must be a non-empty string")
    return normalized


def generate_search_terms(topic: str) -> list[str]:
    """Return the standard search phrases for ``topic`` in priority order.

    Args:
        topic: Industry or topic, e.g. ``"fitness"``.

    Returns:
        Eighteen phrases: ten marketing, four psychology, four case-study.

    Raises:
        ValueError: If ``topic`` is blank.
    """
    topic = _normalize(topic)
    return [template.format(topic=topic) for template in STANDARD_TEMPLATES]


def generate_optimized_search_terms(topic: str, year: int) -> list[str]:
    """Return the fifteen high-yield phrases, most specific first.

    Args:
        topic: Industry or topic.
        year: Year stamped into the leading "strategy" phrase.

    Raises:
        ValueError: If ``topic`` is blank.
    """
    topic = _normalize(topic)
    return [
        template.format(topic=topic, year=year) for template in OPTIMIZED_TEMPLATES
    ]


def simplify_term(term: str) -> str | None:
    """Return the first whitespace-delimited token, or None if nothing to simplify."""
    parts = term.split()
    if len(parts) < 2:
        return None
    return parts[0]
