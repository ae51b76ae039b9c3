"""Exception hierarchy for ReviewShelf.

Primary-generator errors all derive from :class:`RecommendationGenerationError`
so the orchestrator can recover from any of them with a single ``except``.
"""


class ReviewShelfError(Exception):
    """Base class for every application error."""


class DataAccessError(ReviewShelfError):
    """A user-activity, catalog or user lookup failed."""


class RecommendationError(ReviewShelfError):
    """No recommendation could be produced at all.

    Raised only when the fallback generator returns nothing, which its
    contract forbids; there is no further fallback.
    """


class RecommendationGenerationError(ReviewShelfError):
    """The primary (AI-backed) generator could not produce recommendations."""


class ServiceUnavailableError(RecommendationGenerationError):
    """The text-generation backend is not configured."""


class UpstreamError(RecommendationGenerationError):
    """The text-generation call failed or timed out."""


class MalformedResponseError(RecommendationGenerationError):
    """The backend replied, but the payload held no valid recommendations."""
