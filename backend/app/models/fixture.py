"""Fixture models: stored matches and the reduced manifest shown to the generator."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Fixture(BaseModel):
    """A scheduled match as supplied by the fixture store.

    Documents are written by the ingest job in camelCase; both spellings
    are accepted.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field("", alias="_id")
    home_team: str = Field(alias="homeTeam")
    away_team: str = Field(alias="awayTeam")
    starting_at: Optional[datetime] = None
    date: Optional[str] = None
    time: Optional[str] = None
    league: Optional[str] = None
    venue: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("starting_at", mode="before")
    @classmethod
    def _lenient_start(cls, v: Any) -> Any:
        # Unusable kickoff values become None and are filtered out later.
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.strip().replace("Z", "+00:00"))
            except ValueError:
                return None
        return None

    @property
    def match_key(self) -> str:
        return f"{self.home_team} vs {self.away_team}"


class FixtureManifestEntry(BaseModel):
    """One line of the match manifest sent to the generative service."""
    match: str
    home_team: str
    away_team: str
    starting_at: datetime
    date: str
    time: str
    league: Optional[str] = None

    def prompt_view(self) -> dict[str, Any]:
        """Compact dict used inside the prompt."""
        view = {
            "match": self.match,
            "homeTeam": self.home_team,
            "awayTeam": self.away_team,
            "date": self.date,
            "time": self.time,
        }
        if self.league:
            view["league"] = self.league
        return view
