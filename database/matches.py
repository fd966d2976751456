"""
Arena Match Storage

Persists one MatchRecord per (player, upstream match id) and serves the
reporting reads behind the match history, metadata and champion statistics
endpoints.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

import sqlalchemy as sa

from .connection import DatabaseManager, retry_on_database_error
from .schema import arena_matches, players, dialect_insert

logger = logging.getLogger(__name__)

MAX_FILTERED_MATCHES = 500
DEFAULT_FILTERED_MATCHES = 50
RECENT_MATCHES_PER_CHAMPION = 5


def patch_from_version(game_version: str) -> str:
    """Major.minor truncation of a game version, e.g. "14.19.586.4490" -> "14.19"."""
    return ".".join((game_version or "").split(".")[:2])


def season_from_timestamp(game_creation_ms: int) -> int:
    """Calendar year (UTC) of a game creation timestamp in milliseconds."""
    return datetime.fromtimestamp(game_creation_ms / 1000, tz=timezone.utc).year


def _patch_sort_key(patch: str):
    parts = []
    for part in patch.split("."):
        parts.append(int(part) if part.isdigit() else -1)
    return parts


@dataclass
class MatchRecord:
    """One Arena game as seen by one player."""
    match_id: str
    champion_name: str
    placement: int
    win: bool
    game_creation_timestamp: int  # ms
    game_end_timestamp: int  # ms
    game_version: str = ""

    @property
    def patch_version(self) -> str:
        return patch_from_version(self.game_version)

    @property
    def season_year(self) -> int:
        return season_from_timestamp(self.game_creation_timestamp)

    @property
    def creation_seconds(self) -> int:
        return self.game_creation_timestamp // 1000

    @classmethod
    def from_row(cls, row) -> "MatchRecord":
        return cls(
            match_id=row.match_id,
            champion_name=row.champion_name,
            placement=row.placement,
            win=bool(row.win),
            game_creation_timestamp=row.game_creation_timestamp,
            game_end_timestamp=row.game_end_timestamp,
            game_version=row.game_version or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["patch_version"] = self.patch_version
        data["season_year"] = self.season_year
        return data

    def to_api_dict(self) -> Dict[str, Any]:
        """Shape consumed by the match history UI."""
        return {
            "metadata": {"matchId": self.match_id},
            "info": {
                "gameCreation": self.game_creation_timestamp,
                "gameEndTimestamp": self.game_end_timestamp,
                "championName": self.champion_name,
                "placement": self.placement,
                "win": self.win,
                "patchVersion": self.patch_version,
                "seasonYear": self.season_year,
            },
        }


@dataclass
class MatchFilters:
    """Filters for stored match reads. Dates are epoch seconds."""
    start_date: Optional[int] = None
    end_date: Optional[int] = None
    patch: Optional[str] = None
    season: Optional[int] = None
    limit: Optional[int] = DEFAULT_FILTERED_MATCHES

    @property
    def effective_limit(self) -> Optional[int]:
        if self.limit is None:
            return None
        return min(max(int(self.limit), 1), MAX_FILTERED_MATCHES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date,
            "endDate": self.end_date,
            "patch": self.patch,
            "season": self.season,
            "limit": self.effective_limit,
        }


class MatchStore:
    """Handles Arena match rows in the relational store."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    @retry_on_database_error()
    def insert_match(self, player_id: int, record: MatchRecord) -> bool:
        """
        Insert a match for a player, ignoring duplicates.

        Args:
            player_id: players.id of the owner
            record: Match to persist

        Returns:
            True if a row was written, False if (player, match id) already existed
        """
        stmt = (
            dialect_insert(self.db.dialect_name, arena_matches)
            .values(
                player_id=player_id,
                match_id=record.match_id,
                champion_name=record.champion_name,
                placement=record.placement,
                win=record.win,
                game_creation_timestamp=record.game_creation_timestamp,
                game_end_timestamp=record.game_end_timestamp,
                game_version=record.game_version,
                patch_version=record.patch_version,
                season_year=record.season_year,
            )
            .on_conflict_do_nothing(index_elements=["player_id", "match_id"])
        )

        with self.db.get_session() as session:
            inserted = session.execute(stmt).rowcount == 1

        if inserted:
            logger.debug(
                f"Saved arena match {record.match_id}: {record.champion_name} "
                f"(placement {record.placement}, {'win' if record.win else 'loss'})"
            )
        else:
            logger.debug(f"Match {record.match_id} already stored for player {player_id}")
        return inserted

    @retry_on_database_error()
    def recent_match_ids(self, player_id: int, limit: Optional[int] = None) -> List[str]:
        """Stored match ids for a player, newest first."""
        query = (
            sa.select(arena_matches.c.match_id)
            .where(arena_matches.c.player_id == player_id)
            .order_by(arena_matches.c.game_creation_timestamp.desc())
        )
        if limit:
            query = query.limit(limit)
        with self.db.get_session() as session:
            return [row[0] for row in session.execute(query)]

    def find_matches(self, player_id: int, limit: Optional[int] = None) -> List[MatchRecord]:
        """All stored matches for a player (or the newest `limit`), newest first."""
        return self.find_matches_filtered(player_id, MatchFilters(limit=limit))

    @retry_on_database_error()
    def find_matches_filtered(self, player_id: int, filters: MatchFilters) -> List[MatchRecord]:
        """
        Stored matches for a player matching date range, patch and season filters.

        Args:
            player_id: players.id
            filters: MatchFilters (dates in epoch seconds)

        Returns:
            List of MatchRecord, newest first
        """
        query = sa.select(arena_matches).where(arena_matches.c.player_id == player_id)

        if filters.start_date:
            query = query.where(arena_matches.c.game_creation_timestamp >= int(filters.start_date) * 1000)
        if filters.end_date:
            query = query.where(arena_matches.c.game_creation_timestamp <= int(filters.end_date) * 1000)
        if filters.patch:
            query = query.where(arena_matches.c.patch_version == filters.patch)
        if filters.season:
            query = query.where(arena_matches.c.season_year == int(filters.season))

        query = query.order_by(arena_matches.c.game_creation_timestamp.desc())
        if filters.effective_limit is not None:
            query = query.limit(filters.effective_limit)

        with self.db.get_session() as session:
            rows = session.execute(query).fetchall()

        return [MatchRecord.from_row(row) for row in rows]

    @retry_on_database_error()
    def get_match_metadata(self, player_id: int) -> Dict[str, Any]:
        """Counts, available patches/seasons and date range of a player's matches."""
        where = arena_matches.c.player_id == player_id

        with self.db.get_session() as session:
            totals = session.execute(
                sa.select(
                    sa.func.count(),
                    sa.func.sum(sa.case((arena_matches.c.placement == 1, 1), else_=0)),
                    sa.func.sum(sa.case((arena_matches.c.placement <= 4, 1), else_=0)),
                    sa.func.min(arena_matches.c.game_creation_timestamp),
                    sa.func.max(arena_matches.c.game_creation_timestamp),
                ).where(where)
            ).one()
            patches = [row[0] for row in session.execute(
                sa.select(arena_matches.c.patch_version).where(where).distinct()
            ) if row[0]]
            seasons = [row[0] for row in session.execute(
                sa.select(arena_matches.c.season_year).where(where).distinct()
            ) if row[0]]

        total, wins, top4s, earliest, latest = totals
        return {
            "totalMatches": total or 0,
            "wins": int(wins or 0),
            "top4s": int(top4s or 0),
            "patches": sorted(patches, key=_patch_sort_key, reverse=True),
            "seasons": sorted(seasons, reverse=True),
            "dateRange": {
                "earliest": earliest,
                "latest": latest,
            },
        }

    def get_champion_stats(self, player_id: int, filters: Optional[MatchFilters] = None) -> Dict[str, Any]:
        """
        Per-champion aggregates over a player's (filtered) matches.

        Returns:
            Dict with a `champions` list (sorted by games played) and a `summary`
        """
        filters = replace(filters or MatchFilters(), limit=None)
        matches = self.find_matches_filtered(player_id, filters)

        per_champion: Dict[str, List[MatchRecord]] = defaultdict(list)
        for match in matches:
            per_champion[match.champion_name].append(match)

        champions = []
        for champion_name, games in per_champion.items():
            placements = [game.placement for game in games]
            champions.append({
                "championName": champion_name,
                "totalMatches": len(games),
                "wins": sum(1 for p in placements if p == 1),
                "top4s": sum(1 for p in placements if p <= 4),
                "bestPlacement": min(placements),
                "averagePlacement": round(sum(placements) / len(placements), 2),
                # `matches` is already newest first
                "recentMatches": [
                    {
                        "gameId": game.match_id,
                        "placement": game.placement,
                        "timestamp": game.game_creation_timestamp,
                        "patchVersion": game.patch_version,
                        "seasonYear": game.season_year,
                    }
                    for game in games[:RECENT_MATCHES_PER_CHAMPION]
                ],
            })

        champions.sort(key=lambda c: (-c["totalMatches"], c["championName"]))

        count = len(champions)
        summary = {
            "totalMatches": len(matches),
            "uniqueChampionsPlayed": count,
            "totalWins": sum(c["wins"] for c in champions),
            "totalTop4s": sum(c["top4s"] for c in champions),
            "averageWinRate": round(sum(c["wins"] / c["totalMatches"] for c in champions) / count, 4) if count else 0,
            "averageTop4Rate": round(sum(c["top4s"] / c["totalMatches"] for c in champions) / count, 4) if count else 0,
        }
        return {"champions": champions, "summary": summary}

    @retry_on_database_error()
    def count_matches(self, player_id: Optional[int] = None) -> int:
        query = sa.select(sa.func.count()).select_from(arena_matches)
        if player_id is not None:
            query = query.where(arena_matches.c.player_id == player_id)
        with self.db.get_session() as session:
            return session.execute(query).scalar() or 0

    @retry_on_database_error()
    def get_database_stats(self) -> Dict[str, Any]:
        """Row counts and overall date range of the tracker tables."""
        with self.db.get_session() as session:
            player_count = session.execute(sa.select(sa.func.count()).select_from(players)).scalar()
            match_count, earliest, latest = session.execute(
                sa.select(
                    sa.func.count(),
                    sa.func.min(arena_matches.c.game_creation_timestamp),
                    sa.func.max(arena_matches.c.game_creation_timestamp),
                )
            ).one()
        return {
            "players": player_count or 0,
            "matches": match_count or 0,
            "date_range": {"earliest": earliest, "latest": latest},
        }
