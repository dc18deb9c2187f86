"""Match records: validation and ingestion."""

from fgpredict.matches.ingest import ingest_matches
from fgpredict.matches.queries import list_competitions
from fgpredict.matches.validation import (
    MatchValidationError,
    validate_candidate_match,
    validate_settled_match,
)

__all__ = [
    "ingest_matches",
    "list_competitions",
    "MatchValidationError",
    "validate_candidate_match",
    "validate_settled_match",
]
