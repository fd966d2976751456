"""Tests for champions: reference data, progress merge, progress file and checklist."""

import json

import pytest
import requests

from champions import (
    Champion, ChampionProgressStore, ChampionService, ChampionState, Checklist,
    ReferenceDataClient, apply_checklist_states, derive_checklist_states,
    merge_with_user_progress, parse_champion_entries,
)
from database.matches import MatchRecord
from tracker_errors import MalformedMatchData, UpstreamTransientError, ValidationError
from ttl_cache import TTLCache

DDRAGON_PAYLOAD = {
    "type": "champion",
    "version": "14.19.1",
    "data": {
        "Zed": {"id": "Zed", "key": "238", "name": "Zed"},
        "MonkeyKing": {"id": "MonkeyKing", "key": "62", "name": "Wukong"},
        "Ahri": {"id": "Ahri", "key": "103", "name": "Ahri"},
    },
}


def champ(id, name, played=False, top4=False, win=False, image_key=None):
    return Champion(id=id, name=name, image_key=image_key or name, checklist=Checklist(played, top4, win))


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeReferenceClient:
    def __init__(self, champions, version="14.19.1"):
        self.champions = champions
        self.version = version
        self.error = None
        self.calls = 0
        self.cache = TTLCache()

    def fetch_reference_list(self, version=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.version, [champ(c.id, c.name, image_key=c.image_key) for c in self.champions]


# merge_with_user_progress

def test_merge_keeps_checklist_and_adopts_fresh_id():
    previous = [champ(7, "Example", played=True, top4=True, win=False)]
    fresh = [champ(12, "Example", image_key="ExampleNew")]

    merged = merge_with_user_progress(fresh, previous)

    assert merged[0].id == 12
    assert merged[0].image_key == "ExampleNew"
    assert merged[0].checklist == Checklist(played=True, top4=True, win=False)


def test_merge_preserves_every_shared_champion():
    previous = [
        champ(1, "Ahri", played=True),
        champ(2, "Zed", played=True, top4=True, win=True),
        # Invalid combination is user state and is kept verbatim
        champ(3, "Jhin", win=True),
    ]
    fresh = [champ(i, name) for i, name in enumerate(["Ahri", "Jhin", "Zed"], start=1)]

    merged = {c.name: c.checklist for c in merge_with_user_progress(fresh, previous)}

    for entry in previous:
        assert merged[entry.name] == entry.checklist


def test_merge_defaults_new_entries_and_drops_removed_ones():
    previous = [champ(1, "Ahri", played=True), champ(2, "Removed", played=True, top4=True)]
    fresh = [champ(1, "Ahri"), champ(2, "Newcomer", played=True)]

    merged = merge_with_user_progress(fresh, previous)

    assert [c.name for c in merged] == ["Ahri", "Newcomer"]
    assert merged[1].checklist == Checklist()


def test_merge_does_not_share_checklist_objects():
    previous = [champ(1, "Ahri", played=True)]
    merged = merge_with_user_progress([champ(1, "Ahri")], previous)

    merged[0].checklist.top4 = True

    assert previous[0].checklist.top4 is False


def test_merge_with_duplicate_previous_names_keeps_first():
    previous = [champ(1, "Twin", played=True), champ(2, "Twin", played=True, top4=True, win=True)]

    merged = merge_with_user_progress([champ(1, "Twin")], previous)

    assert merged[0].checklist == Checklist(played=True)


# Reference data

def test_reference_list_is_sorted_and_reindexed():
    champions = ReferenceDataClient.to_reference_list(DDRAGON_PAYLOAD)

    assert [(c.id, c.name, c.image_key) for c in champions] == [
        (1, "Ahri", "Ahri"),
        (2, "Wukong", "MonkeyKing"),
        (3, "Zed", "Zed"),
    ]
    assert all(c.checklist == Checklist() for c in champions)


class FakeResponse:
    def __init__(self, data, status_code=200):
        self.data = data
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.data


class FakeSession:
    def __init__(self, routes):
        self.routes = routes
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.routes[url]


def test_reference_client_fetches_latest_version_and_caches():
    base = "https://ddragon.example"
    session = FakeSession({
        f"{base}/api/versions.json": FakeResponse(["14.19.1", "14.18.1"]),
        f"{base}/cdn/14.19.1/data/en_US/champion.json": FakeResponse(DDRAGON_PAYLOAD),
    })
    client = ReferenceDataClient(base_url=base, cache=TTLCache(), session=session)

    version, champions = client.fetch_reference_list()
    client.fetch_reference_list()

    assert version == "14.19.1"
    assert len(champions) == 3
    assert len(session.urls) == 2
    assert client.champion_image_url("Ahri", version) == f"{base}/cdn/14.19.1/img/champion/Ahri.png"


@pytest.mark.parametrize("entry", [{"id": "Annie"}, {"name": "Annie"}, {"id": 1, "name": "Annie"}, "Annie"])
def test_reference_list_rejects_incomplete_entries(entry):
    with pytest.raises(MalformedMatchData):
        ReferenceDataClient.to_reference_list({"data": {"Annie": entry}})


def test_incomplete_reference_data_falls_back_to_saved_progress(tmp_path):
    base = "https://ddragon.example"
    session = FakeSession({
        f"{base}/api/versions.json": FakeResponse(["14.19.1"]),
        f"{base}/cdn/14.19.1/data/en_US/champion.json": FakeResponse({"data": {"Annie": {"id": "Annie"}}}),
    })
    store = ChampionProgressStore(str(tmp_path / "progress.json"), clock=FakeClock())
    store.save([champ(1, "Ahri", played=True)], "14.18.1")
    service = ChampionService(ReferenceDataClient(base_url=base, cache=TTLCache(), session=session), store)

    data = service.get_champions(force_refresh=True)

    assert data.source == "fallback"
    assert data.champions == [champ(1, "Ahri", played=True)]
    assert store.load().version == "14.18.1"


def test_reference_client_http_error_is_transient():
    base = "https://ddragon.example"
    session = FakeSession({f"{base}/api/versions.json": FakeResponse(None, status_code=503)})
    client = ReferenceDataClient(base_url=base, cache=TTLCache(), session=session)

    with pytest.raises(UpstreamTransientError):
        client.get_latest_version()


# Progress file

def test_progress_store_round_trip(tmp_path):
    clock = FakeClock()
    store = ChampionProgressStore(str(tmp_path / "progress.json"), clock=clock)
    champions = [champ(1, "Ahri", played=True), champ(2, "Wukong", image_key="MonkeyKing")]

    store.save(champions, "14.19.1")
    stored = store.load()

    assert stored.champions == champions
    assert stored.version == "14.19.1"
    assert stored.last_update == clock.now


def test_progress_store_should_update_after_max_age(tmp_path):
    clock = FakeClock()
    store = ChampionProgressStore(str(tmp_path / "progress.json"), clock=clock)
    assert store.should_update() is True

    store.save([champ(1, "Ahri")], "14.19.1")
    assert store.should_update() is False

    clock.now += 24 * 60 * 60 + 1
    assert store.should_update() is True
    assert store.should_update(max_age=48 * 60 * 60) is False


def test_progress_store_legacy_list(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text(json.dumps([{"id": 4, "name": "Ahri", "imageKey": "Ahri",
                                 "checklist": {"played": True, "top4": False, "win": False}}]))
    store = ChampionProgressStore(str(path))

    assert store.load() is None
    assert store.migrate_legacy() == [champ(4, "Ahri", played=True)]


def test_progress_store_clear_and_corrupt_file(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text("{not json")
    store = ChampionProgressStore(str(path))

    assert store.load() is None
    assert store.clear() is True
    assert store.clear() is False


# ChampionService

@pytest.fixture
def progress_store(tmp_path):
    return ChampionProgressStore(str(tmp_path / "progress.json"), clock=FakeClock())


@pytest.fixture
def reference():
    return FakeReferenceClient([champ(1, "Ahri"), champ(2, "Wukong", image_key="MonkeyKing"), champ(3, "Zed")])


@pytest.fixture
def service(reference, progress_store):
    return ChampionService(reference, progress_store)


def test_refresh_merges_saved_progress(service, reference, progress_store):
    progress_store.save([champ(9, "Zed", played=True, top4=True)], "14.18.1")

    data = service.get_champions(force_refresh=True)

    assert data.source == "ddragon"
    assert data.version == "14.19.1"
    by_name = {c.name: c for c in data.champions}
    assert by_name["Zed"].id == 3
    assert by_name["Zed"].checklist == Checklist(played=True, top4=True)
    assert by_name["Ahri"].checklist == Checklist()
    assert progress_store.load().champions == data.champions


def test_fresh_saved_data_is_used_without_fetch(service, reference, progress_store):
    progress_store.save([champ(1, "Ahri", played=True)], "14.18.1")

    data = service.get_champions()

    assert data.source == "cache"
    assert reference.calls == 0
    assert service.current_version == "14.18.1"


def test_fetch_failure_falls_back_to_saved_data(service, reference, progress_store):
    progress_store.save([champ(1, "Ahri", played=True)], "14.18.1")
    reference.error = UpstreamTransientError("Data Dragon down")

    data = service.get_champions(force_refresh=True)

    assert data.source == "fallback"
    assert data.champions == [champ(1, "Ahri", played=True)]


def test_fetch_failure_without_saved_data_returns_empty(service, reference):
    reference.error = UpstreamTransientError("Data Dragon down")
    assert service.get_champions().champions == []


def test_legacy_progress_is_migrated(service, progress_store):
    with open(progress_store.path, "w") as f:
        json.dump([champ(5, "Ahri", played=True, top4=True).to_dict()], f)

    data = service.get_champions()

    assert {c.name: c.checklist for c in data.champions}["Ahri"] == Checklist(played=True, top4=True)
    assert progress_store.load() is not None


def test_clear_progress_resets_all_flags(service, progress_store):
    service.get_champions()
    service.update_progress([champ(1, "Ahri", True, True, True), champ(3, "Zed", played=True)])

    cleared = service.clear_progress()

    assert all(c.checklist == Checklist() for c in cleared)
    assert all(c.checklist == Checklist() for c in progress_store.load().champions)


def test_export_then_import_restores_progress(service, progress_store):
    service.get_champions()
    service.update_progress([champ(1, "Ahri", played=True), champ(3, "Zed", True, True, True)])
    exported = service.export_progress()

    service.clear_progress()
    merged, warnings = service.import_progress(exported)

    assert warnings == ["Imported from LoL patch: 14.19.1"]
    assert {c.name: c.checklist for c in merged}["Zed"] == Checklist(True, True, True)


def test_import_accepts_legacy_list(service):
    merged, warnings = service.import_progress([{"name": "Ahri", "checklist": {"played": True, "top4": False, "win": False}}])

    assert warnings == ["Legacy format detected - importing champion data only"]
    assert {c.name: c.checklist for c in merged}["Ahri"] == Checklist(played=True)


@pytest.mark.parametrize("payload", [
    "not champion data",
    {"something": "else"},
    [{"name": ""}],
    [42],
    [{"name": "Ahri", "checklist": {"played": "yes", "top4": False, "win": False}}],
    [{"name": "Ahri", "id": "abc"}],
    [{"name": "Ahri", "id": True}],
])
def test_import_rejects_invalid_data(service, payload):
    with pytest.raises(ValidationError):
        service.import_progress(payload)


def test_parse_champion_entries_accepts_numeric_string_ids():
    parsed = parse_champion_entries([{"id": "7", "name": "Ahri", "checklist": {"played": True, "top4": False, "win": False}}])
    assert parsed == [champ(7, "Ahri", played=True)]


# Auto-checklist

def _match(champion, placement, i=0):
    return MatchRecord(f"EUW1_{champion}_{i}", champion, placement, placement == 1,
                       1_700_000_000_000 + i, 1_700_000_900_000 + i, "14.19.1.1")


def test_derive_checklist_states_uses_best_placement():
    states = derive_checklist_states([
        _match("Ahri", 6, 0), _match("Ahri", 3, 1), _match("MonkeyKing", 1, 2), _match("Zed", 7, 3),
    ])

    assert states["Ahri"].best_placement == 3
    assert (states["Ahri"].played, states["Ahri"].top4, states["Ahri"].win) == (True, True, False)
    assert (states["MonkeyKing"].top4, states["MonkeyKing"].win) == (True, True)
    assert (states["Zed"].played, states["Zed"].top4) == (True, False)


def test_apply_checklist_states_never_clears_flags():
    champions = [
        champ(1, "Ahri", played=True, top4=True, win=True),
        champ(2, "Wukong", image_key="MonkeyKing"),
        champ(3, "Zed"),
    ]
    states = {"Ahri": ChampionState("Ahri", 8), "MonkeyKing": ChampionState("MonkeyKing", 2)}

    updated, newly_checked = apply_checklist_states(champions, states)

    assert updated[0].checklist == Checklist(True, True, True)
    assert updated[1].checklist == Checklist(played=True, top4=True)
    assert updated[2].checklist == Checklist()
    assert newly_checked == ["Wukong"]


def test_apply_match_results_saves_progress(service, progress_store):
    service.get_champions()

    newly_checked = service.apply_match_results({"Zed": ChampionState("Zed", 1)})

    assert newly_checked == ["Zed"]
    saved = {c.name: c.checklist for c in progress_store.load().champions}
    assert saved["Zed"] == Checklist(True, True, True)
