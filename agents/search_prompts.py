"""
Centralized prompts used by the company search agent.
"""

from __future__ import annotations

from typing import Sequence


COMPANY_SEARCH_SYSTEM_PROMPT: str = (
    "You are a meticulous market researcher who compiles lists of real companies. "
    "Only return companies that exist and match the user's query. Verify that website and LinkedIn URLs "
    "are correct; when a detail is unknown, use the exact string \"N/A\" instead of guessing. "
    "Respond ONLY with a JSON object containing a \"companies\" array."
)


def company_search_prompt(
    *,
    query: str,
    exclude_names: Sequence[str],
    web_context: str = "",
) -> str:
    """Return the user prompt for a single batch of company results."""

    avoidance = ""
    if exclude_names:
        avoidance = (
            f"IMPORTANT: I have already found the following companies: {', '.join(exclude_names)}. "
            "Please find DIFFERENT and NEW companies related to the query. Do not repeat these."
        )

    sections = [
        "Perform an exhaustive search for companies.",
        f'Search query: "{query}".',
        "Task: Find a high-quality list of companies matching this query.",
    ]
    if avoidance:
        sections.append(avoidance)
    if web_context:
        sections.append(f"Reference notes from a recent web search:\n{web_context}")
    sections.append(
        "Focus on finding accurate information. Aim for 15-20 new results if they exist.\n\n"
        "For each company, provide:\n"
        "- name: Company Name\n"
        "- website: Website URL (must be valid)\n"
        "- linkedin: LinkedIn URL (must be valid)\n"
        "- country: Country\n"
        "- state: State (if available, else N/A)\n"
        "- industry: Industry\n\n"
        'If details are missing, use "N/A".\n'
        'Return a JSON object with a "companies" array.'
    )
    return "\n\n".join(sections)
