"""Database models using SQLModel."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

FINISHED_STATUSES = ("FT", "AET", "PEN")

OUTCOME_HOME = "HOME"
OUTCOME_DRAW = "DRAW"
OUTCOME_AWAY = "AWAY"
PICK_SKIP = "SKIP"

RESULT_CORRECT = "CORRECT"
RESULT_INCORRECT = "INCORRECT"
RESULT_VOID = "VOID"

SCOPE_ALL = "ALL"


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so everything is stored naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def outcome_from_score(home_goals: int, away_goals: int) -> str:
    if home_goals > away_goals:
        return OUTCOME_HOME
    if home_goals < away_goals:
        return OUTCOME_AWAY
    return OUTCOME_DRAW


class MatchRecord(SQLModel, table=True):
    """Historical or upcoming match. Immutable once settled."""

    __tablename__ = "match_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(unique=True, index=True, description="Provider fixture ID")
    competition: str = Field(max_length=20, index=True, description="Competition code, e.g. 'PL'")
    season: Optional[str] = Field(default=None, max_length=10)
    kickoff_at: datetime = Field(index=True, description="Kickoff (naive UTC)")

    # Nullable so malformed provider rows can be stored and reported, not dropped
    home_team_id: Optional[int] = Field(default=None, index=True)
    away_team_id: Optional[int] = Field(default=None, index=True)
    home_team_name: Optional[str] = Field(default=None, max_length=255)
    away_team_name: Optional[str] = Field(default=None, max_length=255)

    status: str = Field(max_length=20, default="NS", description="NS, FT, AET, PEN, PST, ...")
    home_goals: Optional[int] = Field(default=None, description="NULL if not played")
    away_goals: Optional[int] = Field(default=None, description="NULL if not played")
    first_goal: Optional[str] = Field(
        default=None, max_length=10, description="'home', 'away' or 'none'"
    )

    odds_home: Optional[float] = Field(default=None, description="Decimal odds, home win")
    odds_draw: Optional[float] = Field(default=None, description="Decimal odds, draw")
    odds_away: Optional[float] = Field(default=None, description="Decimal odds, away win")

    settled_at: Optional[datetime] = Field(
        default=None, index=True, description="When the final score was recorded"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_settled(self) -> bool:
        return (
            self.settled_at is not None
            and self.status in FINISHED_STATUSES
            and self.home_goals is not None
            and self.away_goals is not None
        )

    @property
    def outcome(self) -> Optional[str]:
        if self.home_goals is None or self.away_goals is None:
            return None
        return outcome_from_score(self.home_goals, self.away_goals)

    @property
    def has_odds(self) -> bool:
        return None not in (self.odds_home, self.odds_draw, self.odds_away)


class TeamStat(SQLModel, table=True):
    """
    Per-team rolling statistics over the trailing window.

    Owned by the aggregator (recomputed wholesale each run), read-only
    everywhere else. Rates are derived from counts.
    """

    __tablename__ = "team_stats"
    __table_args__ = (
        UniqueConstraint("team_id", "competition", name="uq_team_stats_team_competition"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(index=True)
    competition: str = Field(max_length=20, index=True)
    team_name: Optional[str] = Field(default=None, max_length=255)

    sample_size: int = Field(default=0, description="Matches in the trailing window")
    insufficient_data: bool = Field(default=True)

    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0

    home_played: int = 0
    home_wins: int = 0
    home_draws: int = 0
    home_losses: int = 0
    home_goals_for: int = 0
    home_goals_against: int = 0

    away_played: int = 0
    away_wins: int = 0
    away_draws: int = 0
    away_losses: int = 0
    away_goals_for: int = 0
    away_goals_against: int = 0

    scored_first_games: int = 0
    scored_first_wins: int = 0
    scored_first_draws: int = 0
    scored_first_losses: int = 0
    home_scored_first_games: int = 0
    home_scored_first_wins: int = 0
    away_scored_first_games: int = 0
    away_scored_first_wins: int = 0

    conceded_first_games: int = 0
    conceded_first_wins: int = 0
    conceded_first_draws: int = 0
    conceded_first_losses: int = 0

    scoreless_games: int = 0

    form_index: Optional[float] = Field(default=None, description="Decay-weighted points / 3, in [0, 1]")
    form_home_index: Optional[float] = None
    form_away_index: Optional[float] = None
    form_string: Optional[str] = Field(default=None, max_length=20, description="Oldest to newest, e.g. 'WDLWW'")

    last_match_at: Optional[datetime] = None
    computed_at: datetime = Field(default_factory=utcnow)

    @property
    def scored_first_win_rate(self) -> Optional[float]:
        if self.scored_first_games == 0:
            return None
        return self.scored_first_wins / self.scored_first_games

    @property
    def home_scored_first_win_rate(self) -> Optional[float]:
        if self.home_scored_first_games == 0:
            return None
        return self.home_scored_first_wins / self.home_scored_first_games

    @property
    def away_scored_first_win_rate(self) -> Optional[float]:
        if self.away_scored_first_games == 0:
            return None
        return self.away_scored_first_wins / self.away_scored_first_games

    @property
    def comeback_rate(self) -> Optional[float]:
        if self.conceded_first_games == 0:
            return None
        return self.conceded_first_wins / self.conceded_first_games


class PatternBucket(SQLModel, table=True):
    """Historical outcome counts for one feature code."""

    __tablename__ = "pattern_buckets"
    __table_args__ = (
        UniqueConstraint("feature", "scope", "code", name="uq_pattern_feature_scope_code"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    feature: str = Field(max_length=30, index=True, description="Feature family, e.g. 'odds_shape'")
    scope: str = Field(max_length=20, default=SCOPE_ALL, description="'ALL' or a competition code")
    code: str = Field(max_length=50)

    total: int = 0
    home_wins: int = 0
    draws: int = 0
    away_wins: int = 0

    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def home_win_rate(self) -> Optional[float]:
        return self.home_wins / self.total if self.total else None

    @property
    def draw_rate(self) -> Optional[float]:
        return self.draws / self.total if self.total else None

    @property
    def away_win_rate(self) -> Optional[float]:
        return self.away_wins / self.total if self.total else None


class PatternWatermark(SQLModel, table=True):
    """Last match folded into a (feature, scope) pattern table."""

    __tablename__ = "pattern_watermarks"
    __table_args__ = (
        UniqueConstraint("feature", "scope", name="uq_pattern_watermark"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    feature: str = Field(max_length=30)
    scope: str = Field(max_length=20, default=SCOPE_ALL)
    last_settled_at: Optional[datetime] = None
    last_match_id: Optional[int] = None
    version: int = Field(default=0, description="Bumped on every advance (compare-and-set)")
    matches_processed: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class Prediction(SQLModel, table=True):
    """Stored prediction, at most one per match."""

    __tablename__ = "predictions"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match_history.id", unique=True, index=True)
    competition: str = Field(max_length=20, index=True)

    home_prob: float
    draw_prob: float
    away_prob: float

    pick: str = Field(max_length=10, description="HOME, DRAW, AWAY or SKIP")
    grade: str = Field(max_length=10, description="HIGH, MEDIUM or LOW")
    feature_code: Optional[str] = Field(default=None, max_length=80)
    estimates: Optional[list] = Field(default=None, sa_column=Column(JSON))
    reasons: Optional[list] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Settlement (written exactly once)
    result: Optional[str] = Field(default=None, max_length=10, index=True)
    actual_outcome: Optional[str] = Field(default=None, max_length=10)
    final_home_goals: Optional[int] = None
    final_away_goals: Optional[int] = None
    settled_at: Optional[datetime] = None


class AccuracyCounter(SQLModel, table=True):
    """Running settlement counters for one (scope, grade) pair."""

    __tablename__ = "accuracy_counters"
    __table_args__ = (
        UniqueConstraint("scope", "grade", name="uq_accuracy_scope_grade"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    scope: str = Field(max_length=20, default=SCOPE_ALL)
    grade: str = Field(max_length=10, default=SCOPE_ALL)

    settled: int = 0
    correct: int = 0
    void: int = 0
    current_streak: int = Field(default=0, description="+n consecutive hits, -n consecutive misses")
    best_streak: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def accuracy(self) -> Optional[float]:
        return self.correct / self.settled if self.settled else None


class JobRun(SQLModel, table=True):
    """Persisted record of one batch job execution."""

    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(max_length=50, index=True)
    status: str = Field(max_length=20, description="ok, partial, conflict, error")
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    error_message: Optional[str] = None
    metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
