"""
Service container.

Builds one instance of every tracker component with shared collaborators:
a single TTLCache, DatabaseManager and rate limiter per process.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from champions import ChampionProgressStore, ChampionService, ReferenceDataClient
from database.config import DatabaseConfig, get_database_config
from database.connection import DatabaseManager
from database.matches import MatchStore
from database.players import PlayerStore, WatermarkStore
from identity import IdentityResolver
from match_sync import MatchSynchronizer
from riot_api import RiotAPIClient
from throttling import RateLimiter, RequestSequencer
from tracker_config import TrackerConfig, get_tracker_config
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass
class TrackerServices:
    config: TrackerConfig
    cache: TTLCache
    db: DatabaseManager
    players: PlayerStore
    watermarks: WatermarkStore
    matches: MatchStore
    client: RiotAPIClient
    resolver: IdentityResolver
    synchronizer: MatchSynchronizer
    champions: ChampionService

    def close(self):
        self.db.close_connections()


def build_services(tracker_config: Optional[TrackerConfig] = None,
                   db_config: Optional[DatabaseConfig] = None,
                   env_file: str = ".env",
                   client: Optional[RiotAPIClient] = None,
                   reference_client: Optional[ReferenceDataClient] = None) -> TrackerServices:
    """
    Wire the tracker components together.

    Args:
        tracker_config: Riot API and sync settings (loaded from env_file if None)
        db_config: Database settings (loaded from env_file if None)
        env_file: Environment file used for whichever config is missing
        client: Pre-built Riot API client, e.g. a fake in tests
        reference_client: Pre-built Data Dragon client

    Returns:
        TrackerServices
    """
    config = tracker_config or get_tracker_config(env_file)
    db = DatabaseManager(db_config or get_database_config(env_file))
    cache = TTLCache(default_ttl=config.reference_cache_ttl)

    if client is None:
        client = RiotAPIClient(
            config.riot_api_key,
            account_region=config.account_region,
            match_region=config.match_region,
            detect_region=config.detect_match_region,
            limiter=RateLimiter(
                max_per_second=config.max_requests_per_second,
                max_per_window=config.max_requests_per_window,
                window_seconds=config.rate_window_seconds,
            ),
            cache=cache,
            timeout=config.request_timeout,
        )
    if reference_client is None:
        reference_client = ReferenceDataClient(
            base_url=config.ddragon_base_url,
            cache=cache,
            timeout=config.request_timeout,
            cache_ttl=config.reference_cache_ttl,
        )

    players = PlayerStore(db)
    watermarks = WatermarkStore(db)
    matches = MatchStore(db)

    services = TrackerServices(
        config=config,
        cache=cache,
        db=db,
        players=players,
        watermarks=watermarks,
        matches=matches,
        client=client,
        resolver=IdentityResolver(players, client, config),
        synchronizer=MatchSynchronizer(
            players, watermarks, matches, client, config,
            sequencer=RequestSequencer(config.detail_request_interval),
        ),
        champions=ChampionService(reference_client, ChampionProgressStore(config.progress_file)),
    )
    logger.info(f"Tracker services ready (account region {config.account_region}, match region {config.match_region})")
    return services
