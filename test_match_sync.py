"""Tests for match_sync.MatchSynchronizer."""

import pytest
import sqlalchemy as sa

from conftest import PUUID
from database.schema import arena_matches
from match_sync import SAVED, SKIPPED_CACHED, SKIPPED_MODE, SKIPPED_PROCESSED, ERROR, DUPLICATE
from tracker_errors import (
    NotFound, StorageError, UpstreamAuthError, UpstreamRateLimited, UpstreamTransientError,
)


def _statuses(result):
    return {o.match_id: o.status for o in result.outcomes}


def _rows_per_match(db):
    query = (
        sa.select(arena_matches.c.player_id, arena_matches.c.match_id, sa.func.count())
        .group_by(arena_matches.c.player_id, arena_matches.c.match_id)
    )
    with db.get_session() as session:
        return {(row[0], row[1]): row[2] for row in session.execute(query)}


def test_only_matches_after_watermark_are_saved(synchronizer, fake_client, make_player,
                                                watermark_store, match_store, match_payload):
    player = make_player(watermark=1000)
    for match_id, ts in (("EUW1_900", 900), ("EUW1_1000", 1000), ("EUW1_1100", 1100)):
        fake_client.add_match(match_payload(match_id, ts))

    result = synchronizer.sync(PUUID, incremental=True)

    assert result.saved == 1
    assert result.skipped == 2
    assert result.errors == 0
    assert result.latest_timestamp == 1100
    assert result.watermark_advanced is True
    assert _statuses(result) == {
        "EUW1_1100": SAVED,
        "EUW1_1000": SKIPPED_PROCESSED,
        "EUW1_900": SKIPPED_PROCESSED,
    }
    assert watermark_store.get(player.id) == 1100
    assert match_store.recent_match_ids(player.id) == ["EUW1_1100"]


def test_missing_participant_counts_as_error(synchronizer, fake_client, make_player,
                                             watermark_store, match_store, match_payload):
    player = make_player(watermark=1000)
    fake_client.add_match(match_payload("EUW1_2000", 2000, include_player=False))

    result = synchronizer.sync(PUUID, incremental=True)

    assert result.errors == 1
    assert result.saved == 0
    assert match_store.count_matches(player.id) == 0
    assert watermark_store.get(player.id) == 1000
    assert result.watermark_advanced is False


def test_missing_participant_does_not_abort_batch(synchronizer, fake_client, make_player,
                                                  watermark_store, match_payload):
    player = make_player(watermark=1000)
    fake_client.add_match(match_payload("EUW1_1500", 1500))
    fake_client.add_match(match_payload("EUW1_3000", 3000, include_player=False))

    result = synchronizer.sync(PUUID, incremental=True)

    assert result.errors == 1
    assert result.saved == 1
    # The broken newer match does not move the watermark
    assert watermark_store.get(player.id) == 1500


def test_second_incremental_sync_is_idempotent(synchronizer, fake_client, make_player,
                                               watermark_store, match_payload):
    player = make_player(watermark=1000)
    for match_id, ts in (("EUW1_1100", 1100), ("EUW1_1200", 1200)):
        fake_client.add_match(match_payload(match_id, ts))

    first = synchronizer.sync(PUUID, incremental=True)
    assert first.saved == 2
    watermark = watermark_store.get(player.id)

    second = synchronizer.sync(PUUID, incremental=True)

    assert second.saved == 0
    assert second.new_matches_count == 0
    assert second.watermark_advanced is False
    assert watermark_store.get(player.id) == watermark == 1200


def test_second_full_sync_is_idempotent(synchronizer, fake_client, make_player,
                                        watermark_store, match_payload, db):
    player = make_player(watermark=None)
    for match_id, ts in (("EUW1_100", 100), ("EUW1_200", 200), ("EUW1_300", 300)):
        fake_client.add_match(match_payload(match_id, ts))

    synchronizer.sync(PUUID)
    second = synchronizer.sync(PUUID)

    assert second.saved == 0
    assert second.skipped == 3
    assert set(_statuses(second).values()) == {DUPLICATE}
    assert watermark_store.get(player.id) == 300
    assert all(count == 1 for count in _rows_per_match(db).values())


def test_at_most_one_record_per_player_and_match(synchronizer, fake_client, make_player,
                                                 match_payload, db):
    make_player(watermark=None)
    for ts in range(1, 6):
        fake_client.add_match(match_payload(f"EUW1_{ts}", ts * 100))

    for incremental in (False, True, False, True):
        synchronizer.sync(PUUID, incremental=incremental)

    rows = _rows_per_match(db)
    assert len(rows) == 5
    assert set(rows.values()) == {1}


def test_watermark_never_moves_backwards(synchronizer, fake_client, make_player,
                                         watermark_store, match_store, match_payload):
    player = make_player(watermark=5000)
    fake_client.add_match(match_payload("EUW1_1000", 1000))
    fake_client.add_match(match_payload("EUW1_2000", 2000))

    history = [watermark_store.get(player.id)]
    for incremental in (False, True, False):
        synchronizer.sync(PUUID, incremental=incremental)
        history.append(watermark_store.get(player.id))

    # A full sync stores older matches but leaves the watermark alone
    assert match_store.count_matches(player.id) == 2
    assert history == sorted(history)
    assert history[-1] == 5000


def test_non_arena_match_is_never_persisted(synchronizer, fake_client, make_player,
                                            watermark_store, match_store, match_payload):
    player = make_player(watermark=1000)
    fake_client.add_match(match_payload("EUW1_9000", 9000, queue_id=420))

    for incremental in (True, False):
        result = synchronizer.sync(PUUID, incremental=incremental)
        assert _statuses(result) == {"EUW1_9000": SKIPPED_MODE}

    assert match_store.count_matches(player.id) == 0
    assert watermark_store.get(player.id) == 1000


def test_transient_detail_error_is_counted_and_batch_continues(synchronizer, fake_client, make_player,
                                                               watermark_store, match_payload):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.add_match(match_payload("EUW1_200", 200))
    fake_client.errors["EUW1_200"] = UpstreamTransientError("Riot API request failed with status 503", upstream_status=503)

    result = synchronizer.sync(PUUID)

    assert result.errors == 1
    assert result.saved == 1
    assert _statuses(result)["EUW1_200"] == ERROR
    assert watermark_store.get(player.id) == 100


def test_missing_match_detail_is_counted_as_error(synchronizer, fake_client, make_player, match_payload):
    make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.match_ids[PUUID].insert(0, "EUW1_GONE")

    result = synchronizer.sync(PUUID)

    assert result.errors == 1
    assert result.saved == 1


def test_auth_error_aborts_sync_and_keeps_stored_rows(synchronizer, fake_client, make_player,
                                                      watermark_store, match_store, match_payload):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.add_match(match_payload("EUW1_200", 200))
    # Newest first: EUW1_200 is stored, then the key is rejected
    fake_client.errors["EUW1_100"] = UpstreamAuthError("Riot API rejected the credential (403)", upstream_status=403)

    with pytest.raises(UpstreamAuthError):
        synchronizer.sync(PUUID)

    assert match_store.recent_match_ids(player.id) == ["EUW1_200"]
    assert watermark_store.get(player.id) is None


def test_rate_limit_propagates_without_retry(synchronizer, fake_client, make_player, match_payload):
    make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.errors["EUW1_100"] = UpstreamRateLimited("Riot API rate limit exceeded", retry_after=3)

    with pytest.raises(UpstreamRateLimited) as exc_info:
        synchronizer.sync(PUUID)

    assert exc_info.value.retry_after == 3
    assert fake_client.detail_calls == ["EUW1_100"]


def test_storage_error_skips_watermark_advance(synchronizer, fake_client, make_player,
                                               watermark_store, match_store, match_payload, monkeypatch):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.add_match(match_payload("EUW1_200", 200))

    original_insert = match_store.insert_match

    def failing_insert(player_id, record):
        if record.match_id == "EUW1_200":
            raise StorageError("disk full")
        return original_insert(player_id, record)

    monkeypatch.setattr(match_store, "insert_match", failing_insert)

    result = synchronizer.sync(PUUID)

    assert result.errors == 1
    assert result.saved == 1
    assert result.storage_failed is True
    assert result.watermark_advanced is False
    assert watermark_store.get(player.id) is None
    assert match_store.recent_match_ids(player.id) == ["EUW1_100"]


def test_watermark_write_failure_keeps_inserted_rows(synchronizer, fake_client, make_player,
                                                     watermark_store, match_store, match_payload, monkeypatch):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))

    def failing_advance(player_id, timestamp):
        raise StorageError("connection lost")

    monkeypatch.setattr(watermark_store, "advance", failing_advance)

    result = synchronizer.sync(PUUID)

    assert result.saved == 1
    assert result.watermark_advanced is False
    assert result.latest_timestamp is None
    assert match_store.count_matches(player.id) == 1

    # Next run re-reads the same window; storage dedup absorbs the replay
    monkeypatch.undo()
    replay = synchronizer.sync(PUUID)
    assert replay.saved == 0
    assert watermark_store.get(player.id) == 100


def test_incremental_sync_skips_stored_ids_without_fetching(synchronizer, fake_client, make_player,
                                                            match_payload):
    make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    synchronizer.sync(PUUID)

    fake_client.add_match(match_payload("EUW1_200", 200))
    fake_client.detail_calls.clear()

    result = synchronizer.sync(PUUID, incremental=True)

    assert fake_client.detail_calls == ["EUW1_200"]
    assert _statuses(result) == {"EUW1_200": SAVED, "EUW1_100": SKIPPED_CACHED}
    assert fake_client.list_calls[-1]["limit"] == 10
    assert fake_client.list_calls[-1]["queue"] == 1700


def test_incremental_without_watermark_behaves_as_full(synchronizer, fake_client, make_player, match_payload):
    make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.add_match(match_payload("EUW1_200", 200))

    result = synchronizer.sync(PUUID, incremental=True)

    assert result.saved == 2
    assert result.latest_timestamp == 200
    assert fake_client.list_calls[0]["limit"] == 30


def test_count_is_clamped_to_page_limit(synchronizer, fake_client, make_player):
    make_player(watermark=None)

    synchronizer.sync(PUUID, count=1000)
    synchronizer.sync(PUUID, count=0)

    assert [call["limit"] for call in fake_client.list_calls] == [100, 1]


def test_full_history_pages_until_short_page(synchronizer, fake_client, make_player,
                                             match_payload, tracker_config):
    tracker_config.max_page_size = 2
    make_player(watermark=None)
    for ts in range(1, 6):
        fake_client.add_match(match_payload(f"EUW1_{ts}", ts * 100))

    result = synchronizer.sync(PUUID, full_history=True)

    assert result.saved == 5
    assert [call["offset"] for call in fake_client.list_calls] == [0, 2, 4]


def test_unknown_player_raises_not_found(synchronizer):
    with pytest.raises(NotFound):
        synchronizer.sync("puuid-never-seen")


def test_saved_record_fields(synchronizer, fake_client, make_player, match_store, match_payload):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_1700000000", 1700000000, champion="Jhin", placement=1))
    fake_client.add_match(match_payload("EUW1_1700000500", 1700000500, champion="Ahri", placement=4))

    result = synchronizer.sync(PUUID)

    records = {m.match_id: m for m in match_store.find_matches(player.id)}
    jhin = records["EUW1_1700000000"]
    assert jhin.win is True
    assert jhin.placement == 1
    assert jhin.game_creation_timestamp == 1700000000 * 1000
    assert jhin.patch_version == "14.19"
    assert jhin.season_year == 2023
    assert records["EUW1_1700000500"].win is False
    assert [m["metadata"]["matchId"] for m in result.to_dict()["matches"]] == [
        "EUW1_1700000500", "EUW1_1700000000",
    ]


def test_out_of_range_placement_is_malformed(synchronizer, fake_client, make_player,
                                             match_store, match_payload):
    player = make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100, placement=0))

    result = synchronizer.sync(PUUID)

    assert result.errors == 1
    assert match_store.count_matches(player.id) == 0


def test_detail_fetches_go_through_sequencer(synchronizer, fake_client, make_player,
                                             sequencer, match_payload):
    make_player(watermark=None)
    fake_client.add_match(match_payload("EUW1_100", 100))
    fake_client.add_match(match_payload("EUW1_200", 200))

    synchronizer.sync(PUUID)

    # One list call plus one call per detail
    assert sequencer.dispatched == 3


def test_fetch_arena_details_skips_other_queues_and_failures(synchronizer, fake_client, match_store,
                                                             match_payload):
    fake_client.add_match(match_payload("EUW1_1", 1000))
    fake_client.add_match(match_payload("EUW1_2", 1100, queue_id=420))
    fake_client.add_match(match_payload("EUW1_3", 1200))
    fake_client.errors["EUW1_3"] = UpstreamTransientError("Riot API returned 503", upstream_status=503)

    details = synchronizer.fetch_arena_details(["EUW1_1", "EUW1_2", "EUW1_1", "EUW1_3", "EUW1_404"])

    assert [d.match_id for d in details] == ["EUW1_1"]
    assert fake_client.detail_calls == ["EUW1_1", "EUW1_2", "EUW1_3", "EUW1_404"]
    assert match_store.count_matches() == 0


def test_fetch_arena_details_propagates_rate_limit(synchronizer, fake_client, match_payload):
    fake_client.add_match(match_payload("EUW1_1", 1000))
    fake_client.errors["EUW1_1"] = UpstreamRateLimited("Riot API rate limit exceeded", retry_after=3)

    with pytest.raises(UpstreamRateLimited):
        synchronizer.fetch_arena_details(["EUW1_1", "EUW1_2"])
    assert fake_client.detail_calls == ["EUW1_1"]
