"""
Match history aggregator.

Turns settled match rows into per-team rolling statistics: trailing-window
W/D/L and goals, home/away splits, scored-first / conceded-first splits and a
recency-weighted form index.

Form index decay is exponential: the match played `age` games ago (age 0 is
the most recent) gets weight `decay ** age`. The index is the weighted mean of
result points (W=3, D=1, L=0) divided by 3, so it always lies in [0, 1].
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.config import PipelineConfig
from fgpredict.db_utils import bulk_upsert
from fgpredict.matches.validation import MatchValidationError, validate_settled_match
from fgpredict.models import (
    FINISHED_STATUSES,
    OUTCOME_DRAW,
    OUTCOME_HOME,
    MatchRecord,
    TeamStat,
    outcome_from_score,
    utcnow,
)

logger = logging.getLogger(__name__)

POINTS = {"W": 3, "D": 1, "L": 0}


@dataclass
class TeamMatch:
    """One match seen from one team's side."""

    match: MatchRecord
    is_home: bool
    goals_for: int
    goals_against: int
    result: str  # W / D / L
    scored_first: Optional[bool]  # None for goalless or unknown first scorer


@dataclass
class AggregationResult:
    stats: dict[tuple[int, str], TeamStat] = field(default_factory=dict)
    skipped: list[dict] = field(default_factory=list)
    matches_used: int = 0


def form_index(results: Sequence[str], decay: float) -> Optional[float]:
    """
    Decay-weighted points per game, normalized to [0, 1].

    Args:
        results: "W"/"D"/"L" ordered oldest to newest
        decay: per-match weight multiplier going back in time

    Returns:
        Form index, or None when there are no results (never a neutral 0.5)
    """
    if not results:
        return None
    weighted = 0.0
    total_weight = 0.0
    for age, result in enumerate(reversed(results)):
        weight = decay ** age
        weighted += weight * POINTS[result]
        total_weight += weight
    return round(weighted / total_weight / 3, 4)


def _team_view(match: MatchRecord, is_home: bool) -> TeamMatch:
    goals_for = match.home_goals if is_home else match.away_goals
    goals_against = match.away_goals if is_home else match.home_goals
    outcome = outcome_from_score(match.home_goals, match.away_goals)
    if outcome == OUTCOME_DRAW:
        result = "D"
    elif (outcome == OUTCOME_HOME) == is_home:
        result = "W"
    else:
        result = "L"

    side = "home" if is_home else "away"
    if match.first_goal in ("home", "away"):
        scored_first = match.first_goal == side
    else:
        scored_first = None

    return TeamMatch(
        match=match,
        is_home=is_home,
        goals_for=goals_for,
        goals_against=goals_against,
        result=result,
        scored_first=scored_first,
    )


def insufficient_team_stat(team_id: int, competition: str, team_name: Optional[str] = None) -> TeamStat:
    """TeamStat for a team with no usable history."""
    return TeamStat(
        team_id=team_id,
        competition=competition,
        team_name=team_name,
        sample_size=0,
        insufficient_data=True,
        form_index=None,
    )


def build_team_stat(
    team_id: int,
    competition: str,
    history: Sequence[TeamMatch],
    config: PipelineConfig,
) -> TeamStat:
    """
    Compute one team's TeamStat from its full ordered history.

    Args:
        history: the team's settled matches ordered oldest to newest
    """
    if not history:
        return insufficient_team_stat(team_id, competition)

    trailing = list(history)[-config.window_size:]
    home_trailing = [tm for tm in history if tm.is_home][-config.window_size:]
    away_trailing = [tm for tm in history if not tm.is_home][-config.window_size:]

    last = trailing[-1]
    team_name = last.match.home_team_name if last.is_home else last.match.away_team_name
    stat = TeamStat(
        team_id=team_id,
        competition=competition,
        team_name=team_name,
        sample_size=len(trailing),
        insufficient_data=len(trailing) < config.min_team_matches,
        last_match_at=last.match.kickoff_at,
        computed_at=utcnow(),
    )

    for tm in trailing:
        venue = "home" if tm.is_home else "away"
        outcome_key = {"W": "wins", "D": "draws", "L": "losses"}[tm.result]

        setattr(stat, outcome_key, getattr(stat, outcome_key) + 1)
        stat.goals_for += tm.goals_for
        stat.goals_against += tm.goals_against

        setattr(stat, f"{venue}_played", getattr(stat, f"{venue}_played") + 1)
        setattr(stat, f"{venue}_{outcome_key}", getattr(stat, f"{venue}_{outcome_key}") + 1)
        setattr(stat, f"{venue}_goals_for", getattr(stat, f"{venue}_goals_for") + tm.goals_for)
        setattr(stat, f"{venue}_goals_against", getattr(stat, f"{venue}_goals_against") + tm.goals_against)

        if tm.scored_first is True:
            stat.scored_first_games += 1
            setattr(stat, f"scored_first_{outcome_key}", getattr(stat, f"scored_first_{outcome_key}") + 1)
            setattr(stat, f"{venue}_scored_first_games", getattr(stat, f"{venue}_scored_first_games") + 1)
            if tm.result == "W":
                setattr(stat, f"{venue}_scored_first_wins", getattr(stat, f"{venue}_scored_first_wins") + 1)
        elif tm.scored_first is False:
            stat.conceded_first_games += 1
            setattr(stat, f"conceded_first_{outcome_key}", getattr(stat, f"conceded_first_{outcome_key}") + 1)
        elif tm.match.first_goal == "none":
            stat.scoreless_games += 1

    results = [tm.result for tm in trailing]
    stat.form_string = "".join(results)
    stat.form_index = form_index(results, config.form_decay)
    stat.form_home_index = form_index([tm.result for tm in home_trailing], config.form_decay)
    stat.form_away_index = form_index([tm.result for tm in away_trailing], config.form_decay)
    return stat


def compute_team_stats(
    matches: Iterable[MatchRecord],
    config: PipelineConfig,
    extra_teams: Iterable[tuple[int, str]] = (),
) -> AggregationResult:
    """
    Compute TeamStats for every team/competition seen in `matches`.

    Malformed rows are skipped and reported in `skipped`. Teams listed in
    `extra_teams` as (team_id, competition) with no usable match get an
    insufficient-data TeamStat.
    """
    result = AggregationResult()
    histories: dict[tuple[int, str], list[TeamMatch]] = defaultdict(list)

    ordered = sorted(matches, key=lambda m: (m.kickoff_at, m.id or 0))
    for match in ordered:
        try:
            validate_settled_match(match)
        except MatchValidationError as e:
            result.skipped.append(e.as_dict())
            continue
        histories[(match.home_team_id, match.competition)].append(_team_view(match, True))
        histories[(match.away_team_id, match.competition)].append(_team_view(match, False))
        result.matches_used += 1

    for (team_id, competition), history in histories.items():
        result.stats[(team_id, competition)] = build_team_stat(team_id, competition, history, config)

    for team_id, competition in extra_teams:
        if (team_id, competition) not in result.stats:
            result.stats[(team_id, competition)] = insufficient_team_stat(team_id, competition)

    return result


class AggregatesService:
    """Loads settled history and persists TeamStats."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_settled_matches(self, competition: str) -> list[MatchRecord]:
        result = await self.session.execute(
            select(MatchRecord)
            .where(
                and_(
                    MatchRecord.competition == competition,
                    MatchRecord.status.in_(FINISHED_STATUSES),
                    MatchRecord.settled_at.isnot(None),
                )
            )
            .order_by(MatchRecord.kickoff_at, MatchRecord.id)
        )
        return list(result.scalars().all())

    async def load_upcoming_teams(self, competition: str) -> set[tuple[int, str]]:
        """Teams with unplayed fixtures, so newcomers get an explicit insufficient row."""
        result = await self.session.execute(
            select(MatchRecord.home_team_id, MatchRecord.away_team_id)
            .where(
                and_(
                    MatchRecord.competition == competition,
                    MatchRecord.settled_at.is_(None),
                )
            )
        )
        teams = set()
        for home_id, away_id in result.all():
            if home_id is not None:
                teams.add((home_id, competition))
            if away_id is not None:
                teams.add((away_id, competition))
        return teams

    async def refresh_competition(self, competition: str, config: PipelineConfig) -> AggregationResult:
        """
        Recompute every TeamStat of one competition (wholesale replace).

        Last write wins: the rows are a pure function of the settled history,
        so overlapping runs converge on the same content.
        """
        matches = await self.load_settled_matches(competition)
        upcoming = await self.load_upcoming_teams(competition)
        aggregation = compute_team_stats(matches, config, extra_teams=upcoming)

        await bulk_upsert(
            self.session,
            TeamStat,
            [stat.model_dump(exclude={"id"}) for stat in aggregation.stats.values()],
            conflict_columns=["team_id", "competition"],
        )

        # Teams that dropped out of the competition entirely
        await self.session.execute(
            delete(TeamStat).where(
                and_(
                    TeamStat.competition == competition,
                    TeamStat.team_id.notin_([team_id for team_id, _ in aggregation.stats]),
                )
            )
        )
        await self.session.flush()

        insufficient = sum(1 for s in aggregation.stats.values() if s.insufficient_data)
        logger.info(
            f"[AGGREGATES] {competition}: matches={aggregation.matches_used}, "
            f"teams={len(aggregation.stats)}, insufficient={insufficient}, "
            f"skipped={len(aggregation.skipped)}"
        )
        return aggregation

    async def get_team_stat(self, team_id: int, competition: str) -> TeamStat:
        """
        Stored TeamStat, or an unsaved insufficient-data TeamStat if none exists.
        """
        result = await self.session.execute(
            select(TeamStat).where(
                and_(TeamStat.team_id == team_id, TeamStat.competition == competition)
            )
            .execution_options(populate_existing=True)
        )
        stat = result.scalar_one_or_none()
        if stat is None:
            return insufficient_team_stat(team_id, competition)
        return stat
