"""
Tracker configuration.

Riot API credentials, Arena constants and sync tuning, loaded from a .env file
and the process environment the same way as the database settings.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from database.config import load_env_file

logger = logging.getLogger(__name__)

ARENA_QUEUE_ID = 1700
DEFAULT_SEASON_START = "2023-01-01"
RIOT_REGIONS = ("americas", "europe", "asia", "sea")


def parse_season_start(value: Optional[str]) -> Optional[int]:
    """
    Convert a YYYY-MM-DD date to epoch seconds at UTC midnight.

    Empty -> None (no season filter). Invalid -> default season start.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning(f"Invalid date format for ARENA_SEASON_START_DATE: {value!r}. Using default: {DEFAULT_SEASON_START}.")
        day = datetime.strptime(DEFAULT_SEASON_START, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(day.timestamp())


@dataclass
class TrackerConfig:
    """Upstream and sync settings."""

    riot_api_key: str = ""
    account_region: str = "americas"
    match_region: str = "americas"
    # Look up which regional route holds each player's matches; match_region is the fallback
    detect_match_region: bool = True
    arena_queue_id: int = ARENA_QUEUE_ID
    arena_season_start: Optional[str] = DEFAULT_SEASON_START

    # Sync window sizes
    incremental_page_size: int = 10
    full_page_size: int = 30
    max_page_size: int = 100

    # Self-throttling
    detail_request_interval: float = 0.1
    max_requests_per_second: int = 20
    max_requests_per_window: int = 100
    rate_window_seconds: int = 120
    request_timeout: float = 10.0

    # Reference data (Data Dragon)
    ddragon_base_url: str = "https://ddragon.leagueoflegends.com"
    reference_cache_ttl: float = 3600.0
    progress_file: str = "champion_progress.json"

    def __post_init__(self):
        for name in ("account_region", "match_region"):
            region = getattr(self, name)
            if region not in RIOT_REGIONS:
                raise ValueError(f"Invalid {name}: {region}. Must be one of: {', '.join(RIOT_REGIONS)}")
        if self.max_page_size < 1:
            raise ValueError("max_page_size must be at least 1")

    @property
    def season_start_timestamp(self) -> Optional[int]:
        """Arena season start in epoch seconds; the initial watermark for new players."""
        return parse_season_start(self.arena_season_start)

    def to_dict(self) -> Dict[str, Any]:
        key = self.riot_api_key
        return {
            "riot_api_key": ("*" * (len(key) - 4) + key[-4:]) if len(key) > 4 else ("***" if key else None),
            "account_region": self.account_region,
            "match_region": self.match_region,
            "detect_match_region": self.detect_match_region,
            "arena_queue_id": self.arena_queue_id,
            "arena_season_start": self.arena_season_start,
            "incremental_page_size": self.incremental_page_size,
            "full_page_size": self.full_page_size,
            "detail_request_interval": self.detail_request_interval,
        }


def get_tracker_config(env_file: str = ".env") -> TrackerConfig:
    """
    Load tracker configuration from environment variables.

    Environment variables:
        RIOT_API_KEY, RIOT_ACCOUNT_REGION, RIOT_MATCH_REGION,
        RIOT_DETECT_MATCH_REGION, ARENA_SEASON_START_DATE, SYNC_INCREMENTAL_PAGE_SIZE, SYNC_FULL_PAGE_SIZE,
        SYNC_DETAIL_INTERVAL, DDRAGON_BASE_URL, CHAMPION_PROGRESS_FILE
    """
    env_vars = load_env_file(env_file)

    return TrackerConfig(
        riot_api_key=env_vars.get("RIOT_API_KEY", ""),
        account_region=env_vars.get("RIOT_ACCOUNT_REGION", "americas"),
        match_region=env_vars.get("RIOT_MATCH_REGION", "americas"),
        detect_match_region=env_vars.get("RIOT_DETECT_MATCH_REGION", "true").lower() == "true",
        arena_season_start=env_vars.get("ARENA_SEASON_START_DATE", DEFAULT_SEASON_START),
        incremental_page_size=int(env_vars.get("SYNC_INCREMENTAL_PAGE_SIZE", 10)),
        full_page_size=int(env_vars.get("SYNC_FULL_PAGE_SIZE", 30)),
        detail_request_interval=float(env_vars.get("SYNC_DETAIL_INTERVAL", 0.1)),
        request_timeout=float(env_vars.get("RIOT_REQUEST_TIMEOUT", 10)),
        ddragon_base_url=env_vars.get("DDRAGON_BASE_URL", "https://ddragon.leagueoflegends.com"),
        progress_file=env_vars.get("CHAMPION_PROGRESS_FILE", "champion_progress.json"),
    )
