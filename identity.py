"""
Identity resolution: Riot ID -> stored player.

Local store first; the Riot account API is only called when the Riot ID has
never been seen, and the result is stored for next time.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from database.players import PlayerStore, PlayerRecord
from riot_api import RiotAPIClient
from tracker_config import TrackerConfig
from tracker_errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class PlayerIdentity:
    """A resolved player."""
    player_id: int
    puuid: str
    game_name: str
    tag_line: str
    region: str
    from_cache: bool = False

    @classmethod
    def from_record(cls, record: PlayerRecord, from_cache: bool) -> "PlayerIdentity":
        return cls(
            player_id=record.id,
            puuid=record.puuid,
            game_name=record.game_name,
            tag_line=record.tag_line,
            region=record.region,
            from_cache=from_cache,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "puuid": self.puuid,
            "gameName": self.game_name,
            "tagLine": self.tag_line,
            "region": self.region,
        }


class IdentityResolver:
    """Cache-aside lookup of players by Riot ID."""

    def __init__(self, player_store: PlayerStore, client: RiotAPIClient,
                 config: Optional[TrackerConfig] = None):
        self.players = player_store
        self.client = client
        self.config = config or TrackerConfig()

    def resolve(self, game_name: str, tag_line: str) -> PlayerIdentity:
        """
        Resolve a Riot ID to a player, creating the player on first sight.

        Args:
            game_name: Riot ID game name
            tag_line: Riot ID tag line

        Returns:
            PlayerIdentity

        Raises:
            ValidationError: blank game name or tag line
            NotFound: the Riot ID does not exist upstream
            UpstreamError: any other account API failure
        """
        game_name = (game_name or "").strip()
        tag_line = (tag_line or "").strip()
        if not game_name or not tag_line:
            raise ValidationError("Both gameName and tagLine are required")

        stored = self.players.find_by_riot_id(game_name, tag_line)
        if stored:
            logger.debug(f"Player {stored.riot_id} found in database")
            return PlayerIdentity.from_record(stored, from_cache=True)

        logger.info(f"Player {game_name}#{tag_line} not in database, fetching from Riot API")
        account = self.client.get_account_by_riot_id(game_name, tag_line)

        record = self.players.create_player(
            puuid=account.puuid,
            game_name=account.game_name,
            tag_line=account.tag_line,
            region=self.config.account_region,
            watermark=self.config.season_start_timestamp,
        )
        return PlayerIdentity.from_record(record, from_cache=False)
