"""Structured, reusable prompt templates for LLM interactions.

Every LLM call renders one of these templates, so prompt wording is kept
apart from service logic and can be versioned and audited on its own.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PromptTemplate:
    """A reusable prompt template with named placeholders.

    Usage::

        tpl = PromptTemplate(
            name="book_recommendations",
            system="You are a book recommendation expert.",
            user="Favorite genres: {favorite_genres}",
        )
        system, user = tpl.render_pair(favorite_genres="Fantasy")
    """

    name: str
    system: str
    user: str
    description: str = ""
    version: str = "1.0"
    tags: list[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    def render(self, **kwargs: Any) -> list[dict[str, str]]:
        """Return an OpenAI-style messages list with placeholders filled."""
        system, user = self.render_pair(**kwargs)
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def render_pair(self, **kwargs: Any) -> tuple[str, str]:
        """Return ``(system_prompt, user_prompt)`` with placeholders filled."""
        return self.system.format(**kwargs), self.user.format(**kwargs)


# =========================================================================
# Pre-defined prompts
# =========================================================================

BOOK_RECOMMENDATION_PROMPT = PromptTemplate(
    name="book_recommendations",
    description="Recommend exactly three books from a reader's preference profile.",
    version="1.1",
    tags=["recommendation", "personalization"],
    system=(
        "You are a knowledgeable book recommendation expert. "
        "Provide personalized book recommendations based on user preferences "
        "in valid JSON format."
    ),
    user=(
        "Based on the following user reading preferences, recommend exactly 3 books "
        "that would be perfect for this reader:\n\n"
        "**User Profile:**\n"
        "- Favorite Genres: {favorite_genres}\n"
        "- Recent Genre Interests: {recent_genres}\n"
        "- Highly Rated Books: {high_rated_books}\n"
        "- Average Rating Given: {average_rating}/5.0\n"
        "- Total Reviews Written: {total_reviews}\n\n"
        "**Requirements:**\n"
        "1. Recommend 3 diverse books that match the user's preferences\n"
        "2. Avoid recommending books the user has already rated\n"
        "3. Consider both favorite genres and recent reading patterns\n"
        "4. Provide meaningful reasons for each recommendation\n"
        "5. Include confidence scores based on how well each book matches user preferences\n\n"
        "**Response Format (JSON):**\n"
        '{{\n  "recommendations": [\n    {{\n'
        '      "title": "Book Title",\n'
        '      "author": "Author Name",\n'
        '      "genre": "Primary Genre",\n'
        '      "reason": "Why this book matches the user\'s preferences (2-3 sentences)",\n'
        '      "confidence": 0.85\n'
        "    }}\n  ]\n}}\n\n"
        "**Guidelines:**\n"
        "- Confidence scores must be between 0.0 and 1.0\n"
        "- Reasons should be specific and reference the user's preferences\n"
        "- Include a mix of popular and lesser-known quality books\n"
        "- Ensure genre diversity unless the user has very specific preferences\n"
        "- Consider the user's rating pattern (a high average means a discerning reader)"
    ),
)

CONNECTION_TEST_PROMPT = PromptTemplate(
    name="connection_test",
    description="Minimal round-trip used by the health check.",
    version="1.0",
    tags=["health"],
    system="Reply with the single word OK.",
    user="Test connection",
)

# Registry for programmatic access
PROMPT_REGISTRY: dict[str, PromptTemplate] = {
    tpl.name: tpl
    for tpl in [
        BOOK_RECOMMENDATION_PROMPT,
        CONNECTION_TEST_PROMPT,
    ]
}
