"""
backend/app/services/fixture_selector.py

Purpose:
    Reduce the full fixture snapshot to the ordered, size-bounded manifest
    that is shown to the generative service and later used to back-fill legs.
    Also hosts the MongoDB-backed fixture store.

Dependencies:
    - app.database
    - app.models.fixture
"""

import logging
from datetime import datetime
from typing import Iterable, Protocol

from pydantic import ValidationError

import app.database as _db
from app.config import settings
from app.models.fixture import Fixture, FixtureManifestEntry
from app.models.generation import BetslipGenerationError, GenerationErrorKind
from app.utils import ensure_utc

logger = logging.getLogger("betai.fixture_selector")


class FixtureStore(Protocol):
    async def list_all_fixtures(self) -> list[Fixture]: ...


class MongoFixtureStore:
    """Read-only view over the ``fixtures`` collection."""

    async def list_all_fixtures(self) -> list[Fixture]:
        docs = await _db.db.fixtures.find({}).to_list(length=None)
        fixtures: list[Fixture] = []
        for doc in docs:
            try:
                fixtures.append(Fixture.model_validate(doc))
            except ValidationError:
                logger.warning("Skipping malformed fixture document %s", doc.get("_id"))
        return fixtures


def to_manifest_entry(fixture: Fixture) -> FixtureManifestEntry:
    start = ensure_utc(fixture.starting_at)
    return FixtureManifestEntry(
        match=fixture.match_key,
        home_team=fixture.home_team,
        away_team=fixture.away_team,
        starting_at=start,
        date=fixture.date or start.strftime("%Y-%m-%d"),
        time=fixture.time or start.strftime("%H:%M:%S"),
        league=fixture.league,
    )


def select_fixtures(
    fixtures: Iterable[Fixture],
    now: datetime,
    limit: int | None = None,
) -> list[FixtureManifestEntry]:
    """Return the soonest upcoming fixtures as manifest entries.

    ``now`` is read once by the caller so every fixture is compared
    against the same instant. Raises NoFixturesAvailable for an empty
    snapshot and NoFutureFixtures when nothing starts strictly after now.
    """
    fixtures = list(fixtures)
    if not fixtures:
        raise BetslipGenerationError(GenerationErrorKind.NO_FIXTURES_AVAILABLE)

    now = ensure_utc(now)
    limit = settings.MAX_PROMPT_FIXTURES if limit is None else limit

    upcoming = []
    for fixture in fixtures:
        if fixture.starting_at is None:
            logger.debug("Skipping fixture without starting_at: %s", fixture.id)
            continue
        if ensure_utc(fixture.starting_at) > now:
            upcoming.append(fixture)

    if not upcoming:
        raise BetslipGenerationError(
            GenerationErrorKind.NO_FUTURE_FIXTURES,
            detail=f"0 of {len(fixtures)} fixtures start after {now.isoformat()}",
        )

    upcoming.sort(key=lambda f: ensure_utc(f.starting_at))
    selected = upcoming[:max(0, limit)]
    logger.info(
        "Fixture manifest: %d selected (%d upcoming, %d total)",
        len(selected), len(upcoming), len(fixtures),
    )
    return [to_manifest_entry(f) for f in selected]
