"""
Riot Games API Client

Account lookup and League of Legends match-v5 access for the Arena tracker.
Every response is validated into a typed object before it leaves this module;
HTTP failures are classified by status code. No retries happen here: the
caller decides what to do with a rate-limited or failed request.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from throttling import RateLimiter
from tracker_errors import (
    MalformedMatchData, NotFound, UpstreamAuthError, UpstreamRateLimited,
    UpstreamTransientError, ValidationError,
)
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

RIOT_API_REGIONS = {
    "americas": "https://americas.api.riotgames.com",
    "asia": "https://asia.api.riotgames.com",
    "europe": "https://europe.api.riotgames.com",
    "sea": "https://sea.api.riotgames.com",
}
REGION_PRIORITY = ("americas", "europe", "asia", "sea")

# Platform prefix of a match id ("EUW1_6912345678") -> regional routing value
PLATFORM_REGIONS = {
    "NA1": "americas", "BR1": "americas", "LA1": "americas", "LA2": "americas",
    "EUW1": "europe", "EUN1": "europe", "TR1": "europe", "RU": "europe", "ME1": "europe",
    "KR": "asia", "JP1": "asia",
    "OC1": "sea", "PH2": "sea", "SG2": "sea", "TH2": "sea", "TW2": "sea", "VN2": "sea",
}

MAX_MATCH_IDS_PER_REQUEST = 100
REGION_CACHE_TTL = 24 * 60 * 60


def _require(data: Dict[str, Any], key: str, expected: Any, where: str) -> Any:
    value = data.get(key)
    if expected is int and isinstance(value, bool):
        value = None
    if not isinstance(value, expected):
        raise MalformedMatchData(f"{where}: field '{key}' missing or not {getattr(expected, '__name__', expected)}")
    return value


def _mapping(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedMatchData(f"{where}: expected an object")
    return value


@dataclass
class RiotAccount:
    """account-v1 response."""
    puuid: str
    game_name: str
    tag_line: str

    @classmethod
    def from_json(cls, data: Any) -> "RiotAccount":
        data = _mapping(data, "account")
        return cls(
            puuid=_require(data, "puuid", str, "account"),
            game_name=_require(data, "gameName", str, "account"),
            tag_line=_require(data, "tagLine", str, "account"),
        )


@dataclass
class MatchParticipant:
    """The subset of a match-v5 participant the tracker uses."""
    puuid: str
    champion_name: str
    placement: int = 0
    win: bool = False
    riot_id_game_name: str = ""
    riot_id_tagline: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "MatchParticipant":
        data = _mapping(data, "participant")
        placement = data.get("placement", 0)
        if placement is None or isinstance(placement, bool) or not isinstance(placement, int):
            raise MalformedMatchData("participant: field 'placement' is not an integer")
        return cls(
            puuid=_require(data, "puuid", str, "participant"),
            champion_name=_require(data, "championName", str, "participant"),
            placement=placement,
            win=bool(data.get("win", False)),
            riot_id_game_name=data.get("riotIdGameName") or "",
            riot_id_tagline=data.get("riotIdTagline") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "puuid": self.puuid,
            "championName": self.champion_name,
            "placement": self.placement,
            "win": self.win,
            "riotIdGameName": self.riot_id_game_name,
            "riotIdTagline": self.riot_id_tagline,
        }


@dataclass
class MatchDetail:
    """match-v5 match response, validated."""
    match_id: str
    queue_id: int
    game_mode: str
    game_creation: int  # ms
    game_end_timestamp: int  # ms
    game_version: str
    participants: List[MatchParticipant] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "MatchDetail":
        data = _mapping(data, "match")
        metadata = _mapping(data.get("metadata"), "match.metadata")
        info = _mapping(data.get("info"), "match.info")

        match_id = _require(metadata, "matchId", str, "match.metadata")
        game_creation = _require(info, "gameCreation", int, "match.info")
        game_end = info.get("gameEndTimestamp")
        if not isinstance(game_end, int) or isinstance(game_end, bool):
            # Older payloads lack gameEndTimestamp; gameDuration is then in seconds
            duration = info.get("gameDuration")
            if not isinstance(duration, int):
                raise MalformedMatchData(f"match {match_id}: no gameEndTimestamp or gameDuration")
            game_end = game_creation + duration * 1000

        raw_participants = info.get("participants")
        if not isinstance(raw_participants, list):
            raise MalformedMatchData(f"match {match_id}: participants is not a list")

        return cls(
            match_id=match_id,
            queue_id=_require(info, "queueId", int, "match.info"),
            game_mode=info.get("gameMode") or "",
            game_creation=game_creation,
            game_end_timestamp=game_end,
            game_version=info.get("gameVersion") or "",
            participants=[MatchParticipant.from_json(p) for p in raw_participants],
        )

    @property
    def creation_seconds(self) -> int:
        return self.game_creation // 1000

    def find_participant(self, puuid: str) -> Optional[MatchParticipant]:
        for participant in self.participants:
            if participant.puuid == puuid:
                return participant
        return None

    def to_dict(self) -> Dict[str, Any]:
        """match-v5 shaped dict holding only the validated fields."""
        return {
            "metadata": {"matchId": self.match_id},
            "info": {
                "queueId": self.queue_id,
                "gameMode": self.game_mode,
                "gameCreation": self.game_creation,
                "gameEndTimestamp": self.game_end_timestamp,
                "gameVersion": self.game_version,
                "participants": [p.to_dict() for p in self.participants],
            },
        }


def parse_riot_id(riot_id: str) -> Optional[Tuple[str, str]]:
    """
    Split "GameName#TagLine" into its parts.

    :return: (game_name, tag_line) or None when the format is invalid
    """
    if not riot_id or "#" not in riot_id:
        return None
    game_name, _, tag_line = riot_id.strip().rpartition("#")
    game_name, tag_line = game_name.strip(), tag_line.strip()
    if not game_name or not tag_line:
        return None
    return game_name, tag_line


class RiotAPIClient:
    """
    Client for the Riot Games account and match APIs.
    Applies the key's rate-limit budget before each request; does not retry.
    """

    def __init__(self, api_key, account_region="americas", match_region="americas",
                 limiter: Optional[RateLimiter] = None, cache: Optional[TTLCache] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10.0,
                 detect_region: bool = False):
        if not api_key:
            raise ValueError("RIOT_API_KEY is required")
        self.api_key = api_key
        self.account_region = account_region
        self.match_region = match_region
        self.limiter = limiter or RateLimiter()
        self.cache = cache if cache is not None else TTLCache()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.detect_region = detect_region

    def _api_get(self, url, params=None):
        """Make a rate-limited request and classify failures by status code."""
        self.limiter.acquire()
        try:
            resp = self.session.get(
                url,
                params=params,
                headers={"X-Riot-Token": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamTransientError(f"Network error while calling Riot API: {e}") from e

        status = resp.status_code
        if status == 200:
            try:
                return resp.json()
            except ValueError as e:
                raise MalformedMatchData(f"Riot API returned invalid JSON for {url}") from e

        logger.debug(f"Riot API {status} for {url}: {resp.text[:200]}")
        if status in (401, 403):
            raise UpstreamAuthError(f"Riot API rejected the credential ({status})", upstream_status=status)
        if status == 429:
            retry_after = resp.headers.get("Retry-After")
            raise UpstreamRateLimited(
                "Riot API rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status == 404:
            raise NotFound(f"Riot API resource not found: {url}")
        raise UpstreamTransientError(f"Riot API request failed with status {status}", upstream_status=status)

    def _regional_url(self, region: str) -> str:
        try:
            return RIOT_API_REGIONS[region]
        except KeyError:
            raise ValidationError(f"Unknown Riot region: {region}")

    def get_account_by_riot_id(self, game_name: str, tag_line: str) -> RiotAccount:
        """
        Get account information by Riot ID.

        :param game_name: Riot ID game name
        :param tag_line: Riot ID tag line
        :return: RiotAccount with the player's PUUID
        """
        if not (game_name or "").strip() or not (tag_line or "").strip():
            raise ValidationError("Both gameName and tagLine are required")

        url = (
            f"{self._regional_url(self.account_region)}/riot/account/v1/accounts/by-riot-id/"
            f"{quote(game_name.strip(), safe='')}/{quote(tag_line.strip(), safe='')}"
        )
        try:
            account = RiotAccount.from_json(self._api_get(url))
        except NotFound:
            raise NotFound("Riot ID not found. Please check your Game Name and Tag Line.")

        logger.info(f"Account found: {account.game_name}#{account.tag_line}")
        return account

    def detect_match_region(self, puuid: str) -> str:
        """
        Find the regional route holding a player's matches.

        Tries each region in priority order and caches the first one that
        returns any match; falls back to the configured match region.
        """
        cache_key = f"match-region:{puuid}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        region = self.match_region
        for candidate in REGION_PRIORITY:
            try:
                ids = self._api_get(
                    f"{self._regional_url(candidate)}/lol/match/v5/matches/by-puuid/{puuid}/ids",
                    params={"start": 0, "count": 1},
                )
            except (NotFound, UpstreamTransientError, MalformedMatchData):
                continue
            if isinstance(ids, list) and ids:
                region = candidate
                break

        self.cache.set(cache_key, region, ttl=REGION_CACHE_TTL)
        return region

    def _region_for_player(self, puuid: str) -> str:
        return self.detect_match_region(puuid) if self.detect_region else self.match_region

    def _region_for_match(self, match_id: str) -> str:
        platform = match_id.split("_", 1)[0].upper()
        return PLATFORM_REGIONS.get(platform, self.match_region)

    def list_match_ids(self, puuid, offset=0, limit=20, queue=None,
                       start_time=None, end_time=None, region=None) -> List[str]:
        """
        Get a player's match ids, newest first.

        :param puuid: Player's PUUID
        :param offset: Starting index in the player's history
        :param limit: Number of ids, clamped to 1..100
        :param queue: Optional queue id filter (1700 for Arena)
        :param start_time: Optional epoch seconds lower bound
        :param end_time: Optional epoch seconds upper bound
        :param region: Regional route; detected or configured when omitted
        :return: List of match ids
        """
        if not (puuid or "").strip():
            raise ValidationError("PUUID is required")

        params = {
            "start": max(int(offset), 0),
            "count": min(max(int(limit), 1), MAX_MATCH_IDS_PER_REQUEST),
        }
        if queue is not None:
            params["queue"] = int(queue)
        if start_time:
            params["startTime"] = int(start_time)
        if end_time:
            params["endTime"] = int(end_time)

        region = region or self._region_for_player(puuid)
        url = f"{self._regional_url(region)}/lol/match/v5/matches/by-puuid/{puuid}/ids"
        match_ids = self._api_get(url, params=params)

        if not isinstance(match_ids, list) or not all(isinstance(m, str) for m in match_ids):
            raise MalformedMatchData("match id list is not a list of strings")

        logger.debug(f"Found {len(match_ids)} match ids (start={params['start']}, count={params['count']})")
        return match_ids

    def get_match_detail(self, match_id: str, region: Optional[str] = None) -> MatchDetail:
        """
        Get the details of a specific match.

        :param match_id: Match id, e.g. "NA1_5012345678"
        :param region: Regional route; derived from the match id's platform when omitted
        :return: Validated MatchDetail
        """
        if not (match_id or "").strip():
            raise ValidationError("Match ID is required")

        region = region or self._region_for_match(match_id)
        url = f"{self._regional_url(region)}/lol/match/v5/matches/{match_id}"
        return MatchDetail.from_json(self._api_get(url))
