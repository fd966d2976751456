"""
Arena match synchronization.

Pulls a player's match ids from the Riot API, fetches the details of the ones
that may be new, stores the Arena games and moves the player's watermark
forward. Safe to re-run at any point: the (player, match id) uniqueness in the
store absorbs replays, the watermark only saves upstream calls.

Usage:
    python match_sync.py "GameName#TAG" --incremental
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from database.matches import MatchStore, MatchRecord
from database.players import PlayerStore, WatermarkStore
from database.schema import MAX_PLACEMENT
from riot_api import RiotAPIClient, MatchDetail
from throttling import RequestSequencer
from tracker_config import TrackerConfig
from tracker_errors import (
    MalformedMatchData, NotFound, StorageError, UpstreamAuthError, UpstreamError,
    UpstreamRateLimited,
)

logger = logging.getLogger(__name__)

# Per-match outcomes
SAVED = "saved"
DUPLICATE = "duplicate"
SKIPPED_MODE = "skipped_mode"
SKIPPED_PROCESSED = "skipped_processed"
SKIPPED_CACHED = "skipped_cached"
ERROR = "error"


@dataclass
class MatchOutcome:
    match_id: str
    status: str
    timestamp: Optional[int] = None  # seconds
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"matchId": self.match_id, "status": self.status}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class SyncResult:
    """Counts and final watermark of one sync run."""
    puuid: str
    incremental: bool
    previous_watermark: Optional[int] = None
    saved: int = 0
    skipped: int = 0
    errors: int = 0
    processed: int = 0
    latest_timestamp: Optional[int] = None
    watermark_advanced: bool = False
    storage_failed: bool = False
    outcomes: List[MatchOutcome] = field(default_factory=list)
    matches: List[MatchRecord] = field(default_factory=list)

    @property
    def new_matches_count(self) -> int:
        return self.saved

    def record(self, outcome: MatchOutcome):
        self.outcomes.append(outcome)
        if outcome.status == SAVED:
            self.saved += 1
        elif outcome.status == ERROR:
            self.errors += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saved": self.saved,
            "skipped": self.skipped,
            "errors": self.errors,
            "processed": self.processed,
            "newMatchesCount": self.new_matches_count,
            "latestTimestamp": self.latest_timestamp,
            "watermarkAdvanced": self.watermark_advanced,
            "isIncremental": self.incremental,
            "matches": [match.to_api_dict() for match in self.matches],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def _unique(ids: List[str]) -> List[str]:
    seen = set()
    unique_ids = []
    for match_id in ids:
        if match_id not in seen:
            seen.add(match_id)
            unique_ids.append(match_id)
    return unique_ids


class MatchSynchronizer:
    """
    Reconciles a player's upstream match list with the stored matches.

    Detail fetches go through a single RequestSequencer so a batch is
    dispatched one call at a time with a minimum gap between calls.
    """

    def __init__(self, player_store: PlayerStore, watermark_store: WatermarkStore,
                 match_store: MatchStore, client: RiotAPIClient,
                 config: Optional[TrackerConfig] = None,
                 sequencer: Optional[RequestSequencer] = None):
        self.players = player_store
        self.watermarks = watermark_store
        self.matches = match_store
        self.client = client
        self.config = config or TrackerConfig()
        self.sequencer = sequencer or RequestSequencer(self.config.detail_request_interval)

    def _page_size(self, count: Optional[int], incremental: bool) -> int:
        if count is None:
            count = self.config.incremental_page_size if incremental else self.config.full_page_size
        return min(max(int(count), 1), self.config.max_page_size)

    def _list_page(self, puuid: str, offset: int, limit: int) -> List[str]:
        return self.sequencer.run(
            self.client.list_match_ids, puuid,
            offset=offset, limit=limit, queue=self.config.arena_queue_id,
        )

    def _list_full_history(self, puuid: str) -> List[str]:
        """Page through the player's whole Arena history, newest first."""
        page_size = self.config.max_page_size
        match_ids: List[str] = []
        offset = 0
        while True:
            page = self._list_page(puuid, offset, page_size)
            match_ids.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        logger.info(f"Full history for {puuid[:8]}...: {len(match_ids)} match ids")
        return _unique(match_ids)

    def _candidate_ids(self, player_id: int, puuid: str, incremental: bool,
                       count: int, full_history: bool) -> List[str]:
        if full_history:
            return self._list_full_history(puuid)

        fresh = self._list_page(puuid, 0, count)
        if not incremental:
            return _unique(fresh)[:count]

        cached = self.matches.recent_match_ids(player_id, limit=count)
        candidates = _unique(fresh + cached)[:count]
        logger.debug(f"Incremental candidates: {len(fresh)} fresh, {len(cached)} cached, {len(candidates)} after merge")
        return candidates

    def _build_record(self, detail: MatchDetail, puuid: str) -> MatchRecord:
        participant = detail.find_participant(puuid)
        if participant is None:
            raise MalformedMatchData(f"Player not found among participants of {detail.match_id}")
        if not 1 <= participant.placement <= MAX_PLACEMENT:
            raise MalformedMatchData(
                f"Placement {participant.placement} out of range in {detail.match_id}"
            )
        return MatchRecord(
            match_id=detail.match_id,
            champion_name=participant.champion_name,
            placement=participant.placement,
            win=participant.placement == 1,
            game_creation_timestamp=detail.game_creation,
            game_end_timestamp=detail.game_end_timestamp,
            game_version=detail.game_version,
        )

    def fetch_arena_details(self, match_ids: List[str]) -> List[MatchDetail]:
        """
        Fetch details for the given match ids and keep the Arena games.

        Nothing is stored. A match that cannot be fetched or parsed is logged
        and left out; auth and rate-limit failures propagate.
        """
        arena_matches = []
        for match_id in _unique(match_ids):
            try:
                detail = self.sequencer.run(self.client.get_match_detail, match_id)
            except (UpstreamAuthError, UpstreamRateLimited):
                raise
            except (NotFound, UpstreamError, MalformedMatchData) as e:
                logger.warning(f"Could not fetch match {match_id}: {e}")
                continue
            if detail.queue_id == self.config.arena_queue_id:
                arena_matches.append(detail)
        logger.info(f"Found {len(arena_matches)} Arena matches out of {len(match_ids)} checked")
        return arena_matches

    def sync(self, puuid: str, incremental: bool = False, count: Optional[int] = None,
             full_history: bool = False) -> SyncResult:
        """
        Sync a stored player's Arena matches.

        Args:
            puuid: Player's PUUID (the player must already be stored)
            incremental: Only look at a small recent window and skip matches at
                or before the watermark
            count: Number of match ids to examine (clamped to max_page_size)
            full_history: Page through the player's entire match list

        Returns:
            SyncResult

        Raises:
            NotFound: unknown player
            UpstreamAuthError, UpstreamRateLimited: the sync is aborted; matches
                stored before the failure remain, the watermark is not moved
        """
        player = self.players.find_by_puuid(puuid)
        if player is None:
            raise NotFound("Player not found in database. Please search for the player first.")

        watermark = self.watermarks.get(player.id)
        use_watermark = incremental and watermark is not None
        page_size = self._page_size(count, use_watermark)

        result = SyncResult(puuid=puuid, incremental=incremental, previous_watermark=watermark)
        logger.info(
            f"Syncing {player.riot_id}: {'incremental' if use_watermark else 'full'} mode, "
            f"{'full history' if full_history else f'{page_size} ids'}, watermark {watermark}"
        )

        candidates = self._candidate_ids(player.id, puuid, use_watermark, page_size, full_history)
        stored_ids = set(self.matches.recent_match_ids(player.id)) if use_watermark else set()
        new_watermark: Optional[int] = None

        for match_id in candidates:
            result.processed += 1

            if match_id in stored_ids:
                result.record(MatchOutcome(match_id, SKIPPED_CACHED))
                continue

            try:
                detail = self.sequencer.run(self.client.get_match_detail, match_id)
            except (UpstreamAuthError, UpstreamRateLimited):
                logger.error(f"Sync of {player.riot_id} aborted at {match_id}")
                raise
            except (NotFound, UpstreamError, MalformedMatchData) as e:
                logger.warning(f"Could not fetch match {match_id}: {e}")
                result.record(MatchOutcome(match_id, ERROR, reason=str(e)))
                continue

            if detail.queue_id != self.config.arena_queue_id:
                logger.debug(f"Skipping {match_id}: queue {detail.queue_id} is not Arena")
                result.record(MatchOutcome(match_id, SKIPPED_MODE))
                continue

            timestamp = detail.creation_seconds
            if use_watermark and timestamp <= watermark:
                logger.debug(f"Skipping {match_id}: {timestamp} is at or before watermark {watermark}")
                result.record(MatchOutcome(match_id, SKIPPED_PROCESSED, timestamp))
                continue

            try:
                record = self._build_record(detail, puuid)
            except MalformedMatchData as e:
                logger.warning(f"Skipping malformed match {match_id}: {e}")
                result.record(MatchOutcome(match_id, ERROR, timestamp, str(e)))
                continue

            try:
                inserted = self.matches.insert_match(player.id, record)
            except StorageError as e:
                logger.error(f"Failed to store match {match_id}: {e}")
                result.storage_failed = True
                result.record(MatchOutcome(match_id, ERROR, timestamp, "storage error"))
                continue

            if inserted:
                result.matches.append(record)
                result.record(MatchOutcome(match_id, SAVED, timestamp))
            else:
                result.record(MatchOutcome(match_id, DUPLICATE, timestamp))

            if new_watermark is None or timestamp > new_watermark:
                new_watermark = timestamp

        result.latest_timestamp = watermark
        if result.storage_failed:
            logger.warning(f"Storage errors during sync of {player.riot_id}; watermark left at {watermark}")
        elif new_watermark is not None and (watermark is None or new_watermark > watermark):
            try:
                result.watermark_advanced = self.watermarks.advance(player.id, new_watermark)
            except StorageError as e:
                logger.error(f"Failed to advance watermark for {player.riot_id}: {e}")
            if result.watermark_advanced:
                result.latest_timestamp = new_watermark

        logger.info(
            f"Sync of {player.riot_id} complete: {result.saved} saved, {result.skipped} skipped, "
            f"{result.errors} errors (watermark {result.latest_timestamp})"
        )
        return result


def main(argv=None) -> int:
    from riot_api import parse_riot_id
    from services import build_services

    parser = argparse.ArgumentParser(description="Sync a player's Arena matches into the database")
    parser.add_argument("riot_id", help="Riot ID, e.g. 'Name#TAG'")
    parser.add_argument("--incremental", action="store_true", help="Only fetch matches newer than the watermark")
    parser.add_argument("--count", type=int, default=None, help="Number of recent match ids to examine")
    parser.add_argument("--full-history", action="store_true", help="Page through the entire match history")
    parser.add_argument("--env-file", default=".env", help="Environment file to load")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parsed = parse_riot_id(args.riot_id)
    if parsed is None:
        print("Invalid Riot ID format. Expected 'GameName#TagLine'.")
        return 1

    services = build_services(env_file=args.env_file)
    try:
        identity = services.resolver.resolve(*parsed)
        result = services.synchronizer.sync(
            identity.puuid,
            incremental=args.incremental,
            count=args.count,
            full_history=args.full_history,
        )
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        return 1
    finally:
        services.close()

    print(f"Player: {identity.game_name}#{identity.tag_line}")
    print(f"  Saved:   {result.saved}")
    print(f"  Skipped: {result.skipped}")
    print(f"  Errors:  {result.errors}")
    print(f"  Watermark: {result.latest_timestamp}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
