"""
Player and watermark persistence.

Players are keyed by their stable Riot PUUID. Each player row also carries the
sync watermark: the creation time (epoch seconds) of the newest match already
processed for that player.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

import sqlalchemy as sa

from .connection import DatabaseManager, retry_on_database_error
from .schema import players, dialect_insert

logger = logging.getLogger(__name__)


@dataclass
class PlayerRecord:
    """A stored player identity."""
    id: int
    puuid: str
    game_name: str
    tag_line: str
    region: str
    last_match_timestamp: Optional[int] = None

    @property
    def riot_id(self) -> str:
        return f"{self.game_name}#{self.tag_line}"

    @classmethod
    def from_row(cls, row) -> "PlayerRecord":
        return cls(
            id=row.id,
            puuid=row.puuid,
            game_name=row.game_name,
            tag_line=row.tag_line,
            region=row.region,
            last_match_timestamp=row.last_match_timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_PLAYER_COLUMNS = (
    players.c.id, players.c.puuid, players.c.game_name, players.c.tag_line,
    players.c.region, players.c.last_match_timestamp,
)


class PlayerStore:
    """Reads and writes rows of the players table."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    @retry_on_database_error()
    def find_by_riot_id(self, game_name: str, tag_line: str) -> Optional[PlayerRecord]:
        """Look a player up by Riot ID, ignoring case."""
        query = (
            sa.select(*_PLAYER_COLUMNS)
            .where(sa.func.lower(players.c.game_name) == game_name.strip().lower())
            .where(sa.func.lower(players.c.tag_line) == tag_line.strip().lower())
            .limit(1)
        )
        with self.db.get_session() as session:
            row = session.execute(query).first()
        return PlayerRecord.from_row(row) if row else None

    @retry_on_database_error()
    def find_by_puuid(self, puuid: str) -> Optional[PlayerRecord]:
        query = sa.select(*_PLAYER_COLUMNS).where(players.c.puuid == puuid).limit(1)
        with self.db.get_session() as session:
            row = session.execute(query).first()
        return PlayerRecord.from_row(row) if row else None

    @retry_on_database_error()
    def create_player(self, puuid: str, game_name: str, tag_line: str, region: str,
                      watermark: Optional[int] = None) -> PlayerRecord:
        """
        Insert a player, or return the existing row for the same PUUID.

        A concurrent insert of the same PUUID is not an error: the existing row's
        display fields are refreshed and that row is returned. The watermark of
        an existing row is never touched here.

        Args:
            puuid: Stable Riot identifier
            game_name: Riot ID game name
            tag_line: Riot ID tag line
            region: Routing region used for the account lookup
            watermark: Initial last-processed timestamp (epoch seconds)

        Returns:
            PlayerRecord for the PUUID
        """
        insert_stmt = (
            dialect_insert(self.db.dialect_name, players)
            .values(
                puuid=puuid,
                game_name=game_name,
                tag_line=tag_line,
                region=region,
                last_match_timestamp=watermark,
            )
            .on_conflict_do_nothing(index_elements=["puuid"])
        )

        with self.db.get_session() as session:
            result = session.execute(insert_stmt)
            created = result.rowcount == 1
            if not created:
                session.execute(
                    sa.update(players)
                    .where(players.c.puuid == puuid)
                    .values(game_name=game_name, tag_line=tag_line, updated_at=sa.func.now())
                )
            row = session.execute(
                sa.select(*_PLAYER_COLUMNS).where(players.c.puuid == puuid)
            ).one()

        if created:
            logger.info(f"Created new player: {game_name}#{tag_line} (watermark: {watermark})")
        else:
            logger.info(f"Player {game_name}#{tag_line} already stored, refreshed display fields")
        return PlayerRecord.from_row(row)

    @retry_on_database_error()
    def count_players(self) -> int:
        with self.db.get_session() as session:
            return session.execute(sa.select(sa.func.count()).select_from(players)).scalar() or 0


class WatermarkStore:
    """Per-player last-processed match timestamp. Only ever moves forward."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    @retry_on_database_error()
    def get(self, player_id: int) -> Optional[int]:
        query = sa.select(players.c.last_match_timestamp).where(players.c.id == player_id)
        with self.db.get_session() as session:
            return session.execute(query).scalar()

    @retry_on_database_error()
    def advance(self, player_id: int, timestamp: int) -> bool:
        """
        Move the watermark forward to `timestamp`.

        The comparison happens inside the UPDATE so concurrent syncs for the
        same player can never move it backwards.

        Returns:
            True if the stored watermark changed
        """
        stmt = (
            sa.update(players)
            .where(players.c.id == player_id)
            .where(sa.or_(
                players.c.last_match_timestamp.is_(None),
                players.c.last_match_timestamp < timestamp,
            ))
            .values(last_match_timestamp=timestamp, updated_at=sa.func.now())
        )
        with self.db.get_session() as session:
            advanced = session.execute(stmt).rowcount == 1

        if advanced:
            logger.info(f"Advanced watermark for player {player_id} to {timestamp}")
        else:
            logger.debug(f"Watermark for player {player_id} already at or beyond {timestamp}")
        return advanced
