"""Read-only match queries shared by the batch jobs."""

from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.models import MatchRecord


async def list_competitions(session: AsyncSession) -> list[str]:
    """Competitions with at least one settled match, sorted."""
    result = await session.execute(
        select(distinct(MatchRecord.competition))
        .where(MatchRecord.settled_at.isnot(None))
        .order_by(MatchRecord.competition)
    )
    return [row[0] for row in result.all()]
