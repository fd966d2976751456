"""
Champion reference data and checklist progress.

The champion list comes from Data Dragon and is refreshed periodically; the
per-champion checklist (played / top 4 / win) belongs to the user and is kept
in a local JSON file. Every refresh of the reference list is merged with the
saved checklist so that new reference data never erases progress.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests

from database.matches import MatchRecord
from tracker_errors import MalformedMatchData, UpstreamTransientError, ValidationError
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_DDRAGON_URL = "https://ddragon.leagueoflegends.com"
FALLBACK_VERSION = "15.15.1"
PROGRESS_MAX_AGE = 24 * 60 * 60


@dataclass
class Checklist:
    played: bool = False
    top4: bool = False
    win: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"played": self.played, "top4": self.top4, "win": self.win}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Checklist":
        if not data:
            return cls()
        return cls(
            played=bool(data.get("played", False)),
            top4=bool(data.get("top4", False)),
            win=bool(data.get("win", False)),
        )


@dataclass
class Champion:
    """A reference entry plus the user's checklist for it."""
    id: int
    name: str
    image_key: str
    checklist: Checklist = field(default_factory=Checklist)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "imageKey": self.image_key,
            "checklist": self.checklist.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Champion":
        name = data.get("name", "")
        return cls(
            id=int(data.get("id") or 0),
            name=name,
            image_key=data.get("imageKey") or name,
            checklist=Checklist.from_dict(data.get("checklist")),
        )


class ReferenceDataClient:
    """Reads versions and the champion list from Data Dragon, cached by URL."""

    def __init__(self, base_url: str = DEFAULT_DDRAGON_URL, cache: Optional[TTLCache] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10.0,
                 cache_ttl: float = 3600.0):
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else TTLCache(default_ttl=cache_ttl)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cache_ttl = cache_ttl

    def _fetch_json(self, url: str) -> Any:
        cache_key = f"ddragon:{url}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise UpstreamTransientError(f"Failed to fetch from Data Dragon: {e}") from e
        except ValueError as e:
            raise MalformedMatchData(f"Data Dragon returned invalid JSON for {url}") from e

        self.cache.set(cache_key, data, ttl=self.cache_ttl)
        return data

    def get_latest_version(self) -> str:
        versions = self._fetch_json(f"{self.base_url}/api/versions.json")
        if not isinstance(versions, list) or not versions:
            raise MalformedMatchData("Data Dragon version list is empty")
        return versions[0]

    def get_champions(self, version: Optional[str] = None) -> Dict[str, Any]:
        version = version or self.get_latest_version()
        data = self._fetch_json(f"{self.base_url}/cdn/{version}/data/en_US/champion.json")
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise MalformedMatchData("Data Dragon champion payload has no 'data' object")
        return data

    @staticmethod
    def to_reference_list(payload: Dict[str, Any]) -> List[Champion]:
        """
        Convert a champion.json payload to Champions sorted by name.

        Numeric ids are assigned 1..n in that order, so they shift whenever a
        champion is added upstream and must not be used to join saved progress.
        """
        entries = list(payload["data"].values())
        for entry in entries:
            if not (isinstance(entry, dict) and isinstance(entry.get("id"), str)
                    and isinstance(entry.get("name"), str)):
                raise MalformedMatchData("Data Dragon champion entry without string 'id' and 'name'")
        entries.sort(key=lambda c: c["name"].lower())
        return [
            Champion(id=index, name=entry["name"], image_key=entry["id"])
            for index, entry in enumerate(entries, start=1)
        ]

    def fetch_reference_list(self, version: Optional[str] = None) -> Tuple[str, List[Champion]]:
        version = version or self.get_latest_version()
        payload = self.get_champions(version)
        champions = self.to_reference_list(payload)
        logger.info(f"Fetched {len(champions)} champions from Data Dragon (version {version})")
        return version, champions

    def champion_image_url(self, image_key: str, version: str = FALLBACK_VERSION) -> str:
        return f"{self.base_url}/cdn/{version}/img/champion/{image_key}.png"


def merge_with_user_progress(fresh: List[Champion], previous: List[Champion]) -> List[Champion]:
    """
    Carry saved checklists onto a freshly fetched reference list.

    Entries are joined by display name. Membership, ids and image keys come
    from `fresh`; only the checklist comes from `previous`. Fresh entries
    without a previous match get an empty checklist, previous entries without
    a fresh match are dropped.

    Args:
        fresh: Newly fetched reference list
        previous: Reference list holding the user's saved checklists

    Returns:
        New list in the order of `fresh`
    """
    previous_by_name: Dict[str, Champion] = {}
    for champion in previous:
        if champion.name in previous_by_name:
            logger.warning(f"Duplicate champion name in saved progress: {champion.name!r}, keeping the first")
            continue
        previous_by_name[champion.name] = champion

    merged = []
    for champion in fresh:
        existing = previous_by_name.get(champion.name)
        checklist = replace(existing.checklist) if existing else Checklist()
        merged.append(replace(champion, checklist=checklist))
    return merged


@dataclass
class StoredChampionData:
    champions: List[Champion]
    version: str
    last_update: float  # epoch seconds


class ChampionProgressStore:
    """JSON file holding the champion list with the user's checklists."""

    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self.path = path
        self._clock = clock

    def _read(self) -> Any:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load champion progress from {self.path}: {e}")
            return None

    def load(self) -> Optional[StoredChampionData]:
        data = self._read()
        if not isinstance(data, dict):
            return None
        try:
            return StoredChampionData(
                champions=[Champion.from_dict(c) for c in data["champions"]],
                version=data["version"],
                last_update=float(data["lastUpdate"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable champion progress in {self.path}: {e}")
            return None

    def migrate_legacy(self) -> Optional[List[Champion]]:
        """Champions from the old format: a bare list without version info."""
        data = self._read()
        if isinstance(data, list):
            logger.info("Migrating legacy champion data...")
            return [Champion.from_dict(c) for c in data if isinstance(c, dict)]
        return None

    def save(self, champions: List[Champion], version: str, last_update: Optional[float] = None):
        payload = {
            "champions": [c.to_dict() for c in champions],
            "version": version,
            "lastUpdate": self._clock() if last_update is None else last_update,
        }
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)

    def clear(self) -> bool:
        if os.path.exists(self.path):
            os.remove(self.path)
            return True
        return False

    def should_update(self, max_age: float = PROGRESS_MAX_AGE) -> bool:
        stored = self.load()
        if stored is None:
            return True
        return self._clock() - stored.last_update > max_age


@dataclass
class ChampionData:
    champions: List[Champion]
    version: str
    source: str  # ddragon | cache | fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "champions": [c.to_dict() for c in self.champions],
            "version": self.version,
            "source": self.source,
        }


def _validate_import_entries(entries: List[Any]):
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f"Invalid champion data at index {index}")
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Invalid champion name at index {index}")
        champion_id = entry.get("id")
        if champion_id is not None and not (
            (isinstance(champion_id, int) and not isinstance(champion_id, bool))
            or (isinstance(champion_id, str) and champion_id.isdigit())
        ):
            raise ValidationError(f"Invalid champion id for champion: {name}")
        checklist = entry.get("checklist")
        if checklist is None:
            continue
        if not isinstance(checklist, dict):
            raise ValidationError(f"Missing checklist for champion: {name}")
        if not all(isinstance(checklist.get(flag), bool) for flag in ("played", "top4", "win")):
            raise ValidationError(f"Invalid checklist data for champion: {name}")


def parse_champion_entries(entries: Any) -> List[Champion]:
    """Champions from client-supplied JSON; ValidationError on any bad entry."""
    if not isinstance(entries, list):
        raise ValidationError("champions must be a list")
    _validate_import_entries(entries)
    return [Champion.from_dict(entry) for entry in entries]


class ChampionService:
    """Champion list with merged user progress."""

    def __init__(self, reference_client: ReferenceDataClient, progress_store: ChampionProgressStore):
        self.reference = reference_client
        self.store = progress_store
        self.current_version: Optional[str] = None

    def get_champions(self, force_refresh: bool = False,
                      cache_max_age: Optional[float] = None) -> ChampionData:
        """
        Champion list with the user's checklists applied.

        Uses the saved list while it is younger than `cache_max_age` seconds
        (24 hours by default); otherwise fetches from Data Dragon, merges the
        saved checklists in and saves the result. On a fetch failure the saved
        list is returned as is.
        """
        max_age = PROGRESS_MAX_AGE if cache_max_age is None else cache_max_age
        if not force_refresh and not self.store.should_update(max_age):
            stored = self.store.load()
            if stored:
                logger.debug(f"Using cached champion data, version {stored.version}")
                self.current_version = stored.version
                return ChampionData(stored.champions, stored.version, "cache")

        try:
            version, fresh = self.reference.fetch_reference_list()
        except (UpstreamTransientError, MalformedMatchData) as e:
            logger.error(f"Error fetching champions: {e}")
            stored = self.store.load()
            if stored:
                logger.info("Using stored champion data due to fetch error")
                return ChampionData(stored.champions, stored.version, "fallback")
            return ChampionData([], self.current_version or FALLBACK_VERSION, "fallback")

        self.current_version = version
        stored = self.store.load()
        if stored:
            champions = merge_with_user_progress(fresh, stored.champions)
            logger.info("Merged user progress with new champion data")
        else:
            legacy = self.store.migrate_legacy()
            champions = merge_with_user_progress(fresh, legacy) if legacy else fresh

        self.store.save(champions, version)
        return ChampionData(champions, version, "ddragon")

    def update_progress(self, champions: List[Champion]) -> List[Champion]:
        stored = self.store.load()
        version = stored.version if stored else (self.current_version or FALLBACK_VERSION)
        self.store.save(champions, version)
        return champions

    def clear_progress(self) -> List[Champion]:
        """Reset every checklist to all-false (explicit user action)."""
        data = self.get_champions()
        cleared = [replace(c, checklist=Checklist()) for c in data.champions]
        self.store.save(cleared, data.version)
        logger.info(f"Cleared checklist progress for {len(cleared)} champions")
        return cleared

    def clear_cache(self) -> int:
        """Drop the saved list and cached reference data. Progress is lost."""
        self.store.clear()
        self.current_version = None
        return self.reference.cache.clear()

    def export_progress(self) -> Dict[str, Any]:
        data = self.get_champions()
        return {
            "champions": [c.to_dict() for c in data.champions],
            "version": data.version,
            "exportDate": datetime.now(timezone.utc).isoformat(),
        }

    def import_progress(self, payload: Any) -> Tuple[List[Champion], List[str]]:
        """
        Import an exported progress file.

        Accepts the export format ({"champions": [...], "version": ...}) or a
        legacy bare list. Checklists are joined onto the current champion list
        by name.

        Returns:
            (merged champions, warnings)
        """
        warnings = []
        if isinstance(payload, dict) and isinstance(payload.get("champions"), list):
            entries = payload["champions"]
            if isinstance(payload.get("version"), str):
                warnings.append(f"Imported from LoL patch: {payload['version']}")
        elif isinstance(payload, list):
            entries = payload
            warnings.append("Legacy format detected - importing champion data only")
        else:
            raise ValidationError("Unrecognized file format - expected champion data")

        imported = parse_champion_entries(entries)

        current = self.get_champions()
        merged = merge_with_user_progress(current.champions, imported) if current.champions else imported
        self.store.save(merged, current.version)
        return merged, warnings

    def apply_match_results(self, states: Dict[str, "ChampionState"]) -> List[str]:
        """Tick checklist flags from stored match results. Returns newly ticked names."""
        data = self.get_champions()
        updated, newly_checked = apply_checklist_states(data.champions, states)
        self.store.save(updated, data.version)
        return newly_checked


@dataclass
class ChampionState:
    """Checklist flags implied by a champion's best Arena placement."""
    champion_name: str
    best_placement: int

    @property
    def played(self) -> bool:
        return True

    @property
    def top4(self) -> bool:
        return self.best_placement <= 4

    @property
    def win(self) -> bool:
        return self.best_placement == 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "championName": self.champion_name,
            "bestPlacement": self.best_placement,
            "played": self.played,
            "top4": self.top4,
            "win": self.win,
        }


def derive_checklist_states(matches: Iterable[MatchRecord]) -> Dict[str, ChampionState]:
    """Best placement per champion over a player's stored matches."""
    best: Dict[str, int] = {}
    for match in matches:
        current = best.get(match.champion_name)
        if current is None or match.placement < current:
            best[match.champion_name] = match.placement
    return {name: ChampionState(name, placement) for name, placement in best.items()}


def apply_checklist_states(champions: List[Champion],
                           states: Dict[str, ChampionState]) -> Tuple[List[Champion], List[str]]:
    """
    Set checklist flags implied by match results. Flags are only ever set,
    never cleared.

    Match payloads name champions by their image key ("MonkeyKing"), so a
    state is matched against the image key first and the display name second.
    """
    updated = []
    newly_checked = []
    for champion in champions:
        state = states.get(champion.image_key) or states.get(champion.name)
        if state is None:
            updated.append(champion)
            continue
        checklist = Checklist(
            played=champion.checklist.played or state.played,
            top4=champion.checklist.top4 or state.top4,
            win=champion.checklist.win or state.win,
        )
        if checklist != champion.checklist:
            newly_checked.append(champion.name)
        updated.append(replace(champion, checklist=checklist))
    return updated, newly_checked
