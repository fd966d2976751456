"""
Arena tracker API endpoints
Provides the JSON API used by the tracker frontend
"""

from flask import Flask, request, jsonify, current_app
import logging
from typing import Any, Dict, Optional

from werkzeug.exceptions import HTTPException

from champions import derive_checklist_states, parse_champion_entries
from database.matches import MatchFilters, DEFAULT_FILTERED_MATCHES
from database.players import PlayerRecord
from riot_api import parse_riot_id
from tracker_errors import TrackerError, ValidationError, NotFound, UpstreamRateLimited

logger = logging.getLogger(__name__)

app = Flask(__name__)

MAX_HISTORY_IDS = 20


def get_services():
    """Service container for this app, built on first use."""
    services = current_app.config.get("TRACKER_SERVICES")
    if services is None:
        from services import build_services
        services = build_services()
        current_app.config["TRACKER_SERVICES"] = services
    return services


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _int_param(value: Any, name: str, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _bool_param(value: Any, name: str, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be a boolean")


def _require_player(puuid: Optional[str], message: str = "User not found in database") -> PlayerRecord:
    if not puuid:
        raise ValidationError("PUUID is required")
    player = get_services().players.find_by_puuid(puuid)
    if player is None:
        raise NotFound(message)
    return player


def _user(player: PlayerRecord) -> Dict[str, str]:
    return {"gameName": player.game_name, "tagLine": player.tag_line}


@app.errorhandler(TrackerError)
def handle_tracker_error(error: TrackerError):
    """Classified error envelope; upstream bodies are never passed through."""
    if isinstance(error, (ValidationError, NotFound)):
        message = error.message
    else:
        message = error.public_message
    log = logger.warning if error.status_code < 500 else logger.error
    log(f"{request.method} {request.path} -> {error.status_code}: {error.message}")

    response = jsonify({"error": message})
    response.status_code = error.status_code
    if isinstance(error, UpstreamRateLimited) and error.retry_after:
        response.headers["Retry-After"] = str(error.retry_after)
    return response


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        response = jsonify({"error": error.description})
        response.status_code = error.code
        return response
    logger.exception(f"Unhandled error on {request.path}: {error}")
    response = jsonify({"error": "Internal server error"})
    response.status_code = 500
    return response


@app.route('/api/status')
def get_status():
    """Database connection status and row counts"""
    services = get_services()
    connection = services.db.test_connection()
    payload = {
        "success": connection.get("success", False),
        "database": connection,
    }
    if connection.get("success"):
        payload["stats"] = services.matches.get_database_stats()
    return jsonify(payload)


@app.route('/api/riot-account', methods=['POST'])
def riot_account():
    """Resolve a Riot ID to a stored player"""
    data = _json_body()
    game_name = (data.get("gameName") or "").strip()
    tag_line = (data.get("tagLine") or "").strip()
    if not game_name or not tag_line:
        raise ValidationError("Both gameName and tagLine are required")
    if parse_riot_id(f"{game_name}#{tag_line}") is None:
        raise ValidationError("Invalid Riot ID format")

    identity = get_services().resolver.resolve(game_name, tag_line)
    return jsonify({
        "success": True,
        "account": identity.to_dict(),
        "fromDatabase": identity.from_cache,
    })


@app.route('/api/match-history', methods=['POST'])
def match_history():
    """Recent match ids straight from the Riot API"""
    data = _json_body()
    puuid = data.get("puuid")
    if not puuid:
        raise ValidationError("PUUID is required")
    count = _int_param(data.get("count"), "count", default=10)
    queue = _int_param(data.get("queue"), "queue")

    try:
        match_ids = get_services().client.list_match_ids(
            puuid, offset=0, limit=min(max(count, 1), MAX_HISTORY_IDS), queue=queue,
        )
    except NotFound:
        raise NotFound("No match history found for this account")

    return jsonify({
        "success": True,
        "matchIds": match_ids,
        "count": len(match_ids),
        "puuid": puuid,
    })


@app.route('/api/arena-matches', methods=['POST'])
def arena_matches():
    """Details of the Arena games among the given match ids; nothing is stored"""
    data = _json_body()
    match_ids = data.get("matchIds")
    if not isinstance(match_ids, list) or not all(isinstance(m, str) for m in match_ids):
        raise ValidationError("Match IDs array is required")
    max_matches = _int_param(data.get("maxMatches"), "maxMatches", default=10)

    checked = match_ids[:min(max(max_matches, 0), MAX_HISTORY_IDS)]
    details = get_services().synchronizer.fetch_arena_details(checked) if checked else []

    return jsonify({
        "success": True,
        "arenaMatches": [detail.to_dict() for detail in details],
        "totalChecked": len(checked),
        "arenaCount": len(details),
    })


@app.route('/api/match-details', methods=['POST'])
def match_details():
    """Sync a player's Arena matches into the database"""
    data = _json_body()
    puuid = data.get("puuid")
    if not puuid:
        raise ValidationError("PUUID is required")

    result = get_services().synchronizer.sync(
        puuid,
        incremental=_bool_param(data.get("incrementalUpdate"), "incrementalUpdate"),
        count=_int_param(data.get("count"), "count"),
        full_history=_bool_param(data.get("fullHistory"), "fullHistory"),
    )
    payload = {"success": True}
    payload.update(result.to_dict())
    return jsonify(payload)


@app.route('/api/filtered-matches', methods=['POST'])
def filtered_matches():
    """Stored matches filtered by date range (epoch seconds), patch and season"""
    data = _json_body()
    player = _require_player(data.get("puuid"))

    filters = MatchFilters(
        start_date=_int_param(data.get("startDate"), "startDate"),
        end_date=_int_param(data.get("endDate"), "endDate"),
        patch=data.get("patch") or None,
        season=_int_param(data.get("season"), "season"),
        limit=_int_param(data.get("limit"), "limit", default=DEFAULT_FILTERED_MATCHES),
    )
    matches = get_services().matches.find_matches_filtered(player.id, filters)

    return jsonify({
        "success": True,
        "matches": [m.to_api_dict() for m in matches],
        "totalMatches": len(matches),
        "filters": filters.to_dict(),
        "user": _user(player),
    })


@app.route('/api/match-metadata', methods=['POST'])
def match_metadata():
    """Counts, available patches and seasons, and date range of stored matches"""
    player = _require_player(_json_body().get("puuid"))
    metadata = get_services().matches.get_match_metadata(player.id)
    return jsonify({"success": True, "metadata": metadata, "user": _user(player)})


@app.route('/api/champion-progress')
def champion_progress():
    """Per-champion statistics over stored matches"""
    args = request.args
    player = _require_player(args.get("puuid"), "User not found in database. Please run Account Lookup first.")

    filters = MatchFilters(
        start_date=_int_param(args.get("startDate"), "startDate"),
        end_date=_int_param(args.get("endDate"), "endDate"),
        patch=args.get("patch") or None,
        season=_int_param(args.get("season"), "season"),
    )
    stats = get_services().matches.get_champion_stats(player.id, filters)

    payload = {"success": True, "user": _user(player), "filters": filters.to_dict()}
    payload.update(stats)
    return jsonify(payload)


@app.route('/api/auto-checklist', methods=['POST'])
def auto_checklist():
    """Tick checklist flags from the player's best placement per champion"""
    data = _json_body()
    player = _require_player(
        data.get("puuid"), "User not found in database. Please run Account Lookup first."
    )
    dry_run = _bool_param(data.get("dryRun"), "dryRun")
    services = get_services()

    matches = services.matches.find_matches(player.id)
    states = derive_checklist_states(matches)
    newly_checked = [] if dry_run else services.champions.apply_match_results(states)

    return jsonify({
        "success": True,
        "userName": player.riot_id,
        "dryRun": dry_run,
        "championData": {
            "playedChampions": len(states),
            "checkedChampions": sorted(states),
            "newlyChecked": newly_checked,
            "championStates": [state.to_dict() for state in states.values()],
        },
    })


@app.route('/api/champions', methods=['GET'])
def champions():
    """Champion reference list with saved checklist progress"""
    force_refresh = _bool_param(request.args.get("refresh"), "refresh")
    data = get_services().champions.get_champions(force_refresh=force_refresh)
    payload = {"success": True}
    payload.update(data.to_dict())
    return jsonify(payload)


@app.route('/api/champions', methods=['PUT'])
def update_champions():
    """Save edited checklists"""
    entries = _json_body().get("champions")
    if not isinstance(entries, list):
        raise ValidationError("champions must be a list")
    saved = get_services().champions.update_progress(parse_champion_entries(entries))
    return jsonify({"success": True, "champions": [c.to_dict() for c in saved]})


@app.route('/api/champions/import', methods=['POST'])
def import_champions():
    """Import a progress export (or a legacy bare list)"""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Invalid JSON format")
    merged, warnings = get_services().champions.import_progress(payload)
    return jsonify({"success": True, "champions": [c.to_dict() for c in merged], "warnings": warnings})


@app.route('/api/champions/export')
def export_champions():
    return jsonify(get_services().champions.export_progress())


@app.route('/api/champions/clear', methods=['POST'])
def clear_champions():
    """Reset every checklist to unchecked"""
    cleared = get_services().champions.clear_progress()
    return jsonify({"success": True, "champions": [c.to_dict() for c in cleared]})


@app.route('/api/cache', methods=['DELETE'])
def clear_cache():
    """Drop cached reference data and region lookups"""
    dropped = get_services().cache.clear()
    logger.info(f"Cleared {dropped} cached entries")
    return jsonify({"success": True, "cleared": dropped, "message": "Cache will be refreshed on next request"})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True, port=5000)
