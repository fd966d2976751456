"""Shared pytest fixtures: in-memory store, fake Riot API and wired components."""

import pytest

from database.config import DatabaseConfig
from database.connection import DatabaseManager
from database.matches import MatchStore
from database.migrations import run_migrations
from database.players import PlayerStore, WatermarkStore
from identity import IdentityResolver
from match_sync import MatchSynchronizer
from riot_api import MatchDetail, RiotAccount
from throttling import RequestSequencer
from tracker_config import TrackerConfig
from tracker_errors import NotFound

PUUID = "puuid-arena-player-0001"
OTHER_PUUID = "puuid-someone-else-0002"


def build_match_payload(match_id, creation_seconds, puuid=PUUID, champion="Annie",
                        placement=3, queue_id=1700, game_version="14.19.586.4490",
                        include_player=True):
    """match-v5 style payload with the player and one other participant."""
    participants = [{
        "puuid": OTHER_PUUID,
        "championName": "Garen",
        "placement": 1 if placement != 1 else 2,
        "win": placement != 1,
    }]
    if include_player:
        participants.append({
            "puuid": puuid,
            "championName": champion,
            "placement": placement,
            "win": placement == 1,
            "riotIdGameName": "Tester",
            "riotIdTagline": "EUW",
        })
    creation_ms = creation_seconds * 1000
    return {
        "metadata": {"matchId": match_id, "participants": [p["puuid"] for p in participants]},
        "info": {
            "gameCreation": creation_ms,
            "gameEndTimestamp": creation_ms + 20 * 60 * 1000,
            "gameVersion": game_version,
            "gameMode": "CHERRY" if queue_id == 1700 else "CLASSIC",
            "queueId": queue_id,
            "participants": participants,
        },
    }


class FakeRiotClient:
    """In-memory stand-in for RiotAPIClient with scripted responses."""

    def __init__(self):
        self.accounts = {}
        self.match_ids = {}
        self.details = {}
        self.errors = {}
        self.account_calls = []
        self.list_calls = []
        self.detail_calls = []

    def add_account(self, puuid, game_name, tag_line):
        self.accounts[(game_name.lower(), tag_line.lower())] = RiotAccount(puuid, game_name, tag_line)

    def add_match(self, payload, puuid=PUUID):
        """Register a match as the player's newest."""
        match_id = payload["metadata"]["matchId"]
        self.details[match_id] = payload
        self.match_ids.setdefault(puuid, []).insert(0, match_id)

    def get_account_by_riot_id(self, game_name, tag_line):
        self.account_calls.append((game_name, tag_line))
        if "account" in self.errors:
            raise self.errors["account"]
        account = self.accounts.get((game_name.lower(), tag_line.lower()))
        if account is None:
            raise NotFound("Riot ID not found. Please check your Game Name and Tag Line.")
        return account

    def list_match_ids(self, puuid, offset=0, limit=20, queue=None,
                       start_time=None, end_time=None, region=None):
        self.list_calls.append({"puuid": puuid, "offset": offset, "limit": limit, "queue": queue})
        if "list" in self.errors:
            raise self.errors["list"]
        return list(self.match_ids.get(puuid, []))[offset:offset + limit]

    def get_match_detail(self, match_id, region=None):
        self.detail_calls.append(match_id)
        if match_id in self.errors:
            raise self.errors[match_id]
        if match_id not in self.details:
            raise NotFound(f"Riot API resource not found: {match_id}")
        return MatchDetail.from_json(self.details[match_id])


@pytest.fixture
def match_payload():
    return build_match_payload


@pytest.fixture
def db():
    manager = DatabaseManager(DatabaseConfig(database_url="sqlite://"))
    run_migrations(manager)
    yield manager
    manager.close_connections()


@pytest.fixture
def player_store(db):
    return PlayerStore(db)


@pytest.fixture
def watermark_store(db):
    return WatermarkStore(db)


@pytest.fixture
def match_store(db):
    return MatchStore(db)


@pytest.fixture
def tracker_config(tmp_path):
    return TrackerConfig(
        riot_api_key="RGAPI-test-key-0000",
        detail_request_interval=0,
        progress_file=str(tmp_path / "champion_progress.json"),
    )


@pytest.fixture
def fake_client():
    return FakeRiotClient()


@pytest.fixture
def sequencer():
    return RequestSequencer(min_interval=0)


@pytest.fixture
def synchronizer(player_store, watermark_store, match_store, fake_client, tracker_config, sequencer):
    return MatchSynchronizer(
        player_store, watermark_store, match_store, fake_client, tracker_config, sequencer=sequencer,
    )


@pytest.fixture
def resolver(player_store, fake_client, tracker_config):
    return IdentityResolver(player_store, fake_client, tracker_config)


@pytest.fixture
def make_player(player_store):
    """Create a stored player with the given watermark (epoch seconds or None)."""
    def _make(watermark=None, puuid=PUUID, game_name="Tester", tag_line="EUW"):
        return player_store.create_player(puuid, game_name, tag_line, "europe", watermark=watermark)
    return _make
