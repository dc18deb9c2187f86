"""Row-level validation for match records."""

from typing import Optional

from fgpredict.models import FINISHED_STATUSES, SCOPE_ALL, MatchRecord

FIRST_GOAL_VALUES = ("home", "away", "none")


class MatchValidationError(ValueError):
    """A single malformed match row. The row is skipped, the batch continues."""

    def __init__(self, match_ref: Optional[int], problems: list[str]):
        self.match_ref = match_ref
        self.problems = problems
        super().__init__(f"match {match_ref}: {'; '.join(problems)}")

    def as_dict(self) -> dict:
        return {"match": self.match_ref, "errors": self.problems}


def identity_problems(match: MatchRecord) -> list[str]:
    problems = []
    if match.home_team_id is None:
        problems.append("missing home_team_id")
    if match.away_team_id is None:
        problems.append("missing away_team_id")
    if (
        match.home_team_id is not None
        and match.home_team_id == match.away_team_id
    ):
        problems.append("home_team_id equals away_team_id")
    if not match.competition:
        problems.append("missing competition")
    elif match.competition == SCOPE_ALL:
        # Reserved for the all-competitions pattern and accuracy scope
        problems.append(f"competition '{SCOPE_ALL}' is reserved")
    return problems


def result_problems(match: MatchRecord) -> list[str]:
    problems = []
    if match.home_goals is None or match.away_goals is None:
        problems.append("missing final score")
    elif match.home_goals < 0 or match.away_goals < 0:
        problems.append("negative score")
    if match.first_goal is not None and match.first_goal not in FIRST_GOAL_VALUES:
        problems.append(f"invalid first_goal '{match.first_goal}'")
    if match.first_goal == "none" and (match.home_goals or match.away_goals):
        problems.append("first_goal 'none' with goals scored")
    if match.first_goal == "home" and match.home_goals == 0:
        problems.append("first_goal 'home' but home scored 0")
    if match.first_goal == "away" and match.away_goals == 0:
        problems.append("first_goal 'away' but away scored 0")
    return problems


def validate_settled_match(match: MatchRecord) -> None:
    """
    Raise MatchValidationError if a settled row cannot feed aggregation.

    Raises:
        MatchValidationError: missing identifiers or inconsistent result
    """
    problems = identity_problems(match)
    if match.status not in FINISHED_STATUSES:
        problems.append(f"status '{match.status}' is not finished")
    problems.extend(result_problems(match))
    if problems:
        raise MatchValidationError(match.id or match.external_id, problems)


def validate_candidate_match(match: MatchRecord) -> None:
    """Raise MatchValidationError if an upcoming match cannot be predicted."""
    problems = identity_problems(match)
    if problems:
        raise MatchValidationError(match.id or match.external_id, problems)
