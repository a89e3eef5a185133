"""
Flask JSON API over the competition engine.

Rankings live as YAML files in the data directory; every read-modify-write
runs under a file lock.
"""
import os
import re
import random

import yaml
from filelock import FileLock
from flask import Flask, abort, jsonify, request

from competition.allocation import assign_courts
from competition.config import (
    ELIMINATION, HYBRID, INDIVIDUAL, MEXICANO, add_tiebreak, config_from_dict, remove_tiebreak, reorder_tiebreaks,
)
from competition.elimination import final_placings, generate_bracket, propagate_result
from competition.errors import (
    CompetitionError, ConfigurationError, ResultLockedError, RoundNotCompleteError, ValidationError,
)
from competition.generators import (
    generate_for_format, generate_hybrid_groups, generate_individual_round, generate_mexicano_round,
)
from competition.models import (
    NOT_PLAYED, PLAYOFF_STAGE, Division, ManualAdjustment, Match, Pair, Player, Ranking, Score,
)
from competition.phases import (
    MovementPlan, build_playoffs, close_phase, plan_transition, validate_destinations,
)
from competition.pozo import advance_round
from competition.scoring import score_match
from competition.standings import (
    calculate_global_standings, division_standings, update_player_stats, uses_pair_keys,
)

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('COMPETITION_DATA_DIR', os.path.join(BASE_DIR, 'data'))
os.makedirs(DATA_DIR, exist_ok=True)

_data_lock = FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)

_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.errorhandler(ValidationError)
def handle_validation_error(e):
    app.logger.warning(f'Rejected request to {request.path}: {e}')
    return jsonify({'error': str(e)}), 400


@app.errorhandler(ResultLockedError)
def handle_result_locked(e):
    app.logger.warning(f'Rejected request to {request.path}: {e}')
    return jsonify({'error': str(e)}), 409


@app.errorhandler(ConfigurationError)
def handle_configuration_error(e):
    app.logger.error(f'Configuration error on {request.path}: {e}')
    return jsonify({'error': str(e)}), 500


@app.errorhandler(404)
def handle_not_found(e):
    return jsonify({'error': getattr(e, 'description', 'Not found')}), 404


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _ranking_file(ranking_id: str) -> str:
    if not _ID_PATTERN.match(ranking_id):
        abort(404, description=f'Ranking {ranking_id} not found')
    return os.path.join(DATA_DIR, 'rankings', f'{ranking_id}.yaml')


def _plan_file(ranking_id: str) -> str:
    return os.path.join(DATA_DIR, 'plans', f'{ranking_id}.yaml')


def _players_file() -> str:
    return os.path.join(DATA_DIR, 'players.yaml')


def _read_yaml(path: str):
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def _write_yaml(path: str, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_ranking(ranking_id: str) -> Ranking:
    """Load a ranking or answer 404."""
    path = _ranking_file(ranking_id)
    if not os.path.exists(path):
        abort(404, description=f'Ranking {ranking_id} not found')
    return Ranking.from_dict(_read_yaml(path))


def save_ranking(ranking: Ranking):
    _write_yaml(_ranking_file(ranking.id), ranking.to_dict())


def list_rankings() -> list:
    rankings_dir = os.path.join(DATA_DIR, 'rankings')
    if not os.path.isdir(rankings_dir):
        return []
    rankings = []
    for name in sorted(os.listdir(rankings_dir)):
        if not name.endswith('.yaml'):
            continue
        try:
            rankings.append(Ranking.from_dict(_read_yaml(os.path.join(rankings_dir, name))))
        except (yaml.YAMLError, KeyError, CompetitionError) as e:
            app.logger.warning(f'Failed to parse {name}: {e}')
    return rankings


def load_plan(ranking_id: str) -> MovementPlan:
    path = _plan_file(ranking_id)
    if not os.path.exists(path):
        abort(404, description=f'No pending transition for ranking {ranking_id}')
    return MovementPlan.from_dict(_read_yaml(path))


def save_plan(ranking_id: str, plan: MovementPlan):
    _write_yaml(_plan_file(ranking_id), plan.to_dict())


def load_players() -> dict:
    path = _players_file()
    if not os.path.exists(path):
        return {}
    data = _read_yaml(path) or {}
    return {pid: Player(pid, p.get('name', ''), p.get('stats')) for pid, p in data.items()}


def save_players(players: dict):
    _write_yaml(_players_file(), {pid: {'name': p.name, 'stats': p.stats} for pid, p in players.items()})


def _find_match(ranking: Ranking, match_id: str):
    division, match = ranking.find_match(match_id)
    if match is None:
        abort(404, description=f'Match {match_id} not found')
    return division, match


def _plan_response(ranking: Ranking, plan: MovementPlan) -> dict:
    warnings = validate_destinations(plan, ranking.config.format_config.expected_size)
    data = plan.to_dict()
    data['destinations'] = plan.destinations()
    data['warnings'] = [w.to_dict() for w in warnings]
    return data


def _standings_payload(ranking: Ranking) -> dict:
    return {
        'divisions': {
            str(d.number): [row.to_dict() for row in division_standings(d, ranking)]
            for d in ranking.sorted_divisions()
        },
        'global': [row.to_dict() for row in calculate_global_standings(ranking)],
    }


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

@app.route('/api/rankings', methods=['GET'])
def get_rankings():
    return jsonify([
        {'id': r.id, 'name': r.name, 'format': r.format, 'phase': r.phase}
        for r in list_rankings()
    ])


@app.route('/api/rankings', methods=['POST'])
def create_ranking():
    """Create a ranking from a name and a config dict."""
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Missing ranking name'}), 400
    config = config_from_dict(data.get('config') or {})
    ranking = Ranking(name, config)
    with _data_lock:
        save_ranking(ranking)
    return jsonify(ranking.to_dict()), 201


@app.route('/api/rankings/<ranking_id>', methods=['GET'])
def get_ranking(ranking_id):
    return jsonify(load_ranking(ranking_id).to_dict())


@app.route('/api/rankings/<ranking_id>', methods=['DELETE'])
def delete_ranking(ranking_id):
    with _data_lock:
        path = _ranking_file(ranking_id)
        if not os.path.exists(path):
            abort(404, description=f'Ranking {ranking_id} not found')
        os.remove(path)
        plan = _plan_file(ranking_id)
        if os.path.exists(plan):
            os.remove(plan)
    return jsonify({'success': True})


@app.route('/api/rankings/<ranking_id>/divisions', methods=['POST'])
def create_divisions(ranking_id):
    """
    Generate divisions from a participant list.

    Elimination rankings get their draw(s), hybrid rankings their groups, and
    every other format one new division with its opening schedule.
    """
    data = request.get_json(silent=True) or {}
    participants = data.get('participants') or []
    seed = data.get('seed')
    rng = random.Random(seed) if seed is not None else None
    warnings = []

    with _data_lock:
        ranking = load_ranking(ranking_id)
        config = ranking.config
        next_number = max((d.number for d in ranking.divisions), default=0) + 1

        if config.format == ELIMINATION:
            options = config.format_config
            new_divisions = generate_bracket(participants, consolation=options.consolation,
                                             third_place=options.third_place_match,
                                             seeded=options.seeded, rng=rng)
            for offset, division in enumerate(new_divisions):
                division.number = next_number + offset
            ranking.phase = 'playoff'
        elif config.format == HYBRID:
            new_divisions = generate_hybrid_groups(participants, config)
            for offset, division in enumerate(new_divisions):
                division.number = next_number + offset
        else:
            number = data.get('number') or next_number
            if ranking.division(number):
                return jsonify({'error': f'Division {number} already exists'}), 400
            matches = generate_for_format(config, participants, number, rng)
            courts = data.get('courts')
            if courts:
                warnings = assign_courts(matches, int(courts))
            new_divisions = [Division(number, players=_participant_keys(participants), matches=matches,
                                      name=data.get('name'))]

        ranking.divisions.extend(new_divisions)
        save_ranking(ranking)

    return jsonify({
        'divisions': [d.to_dict() for d in new_divisions],
        'warnings': warnings,
    }), 201


def _participant_keys(participants) -> list:
    """Pairs given as two-element lists are stored by their "p1::p2" key."""
    keys = []
    for participant in participants:
        if isinstance(participant, (list, tuple)):
            keys.append('::'.join(participant))
        else:
            keys.append(participant)
    return keys


@app.route('/api/rankings/<ranking_id>/divisions/<int:number>/retired', methods=['POST'])
def retire_player(ranking_id, number):
    data = request.get_json(silent=True) or {}
    participant = data.get('participant')
    with _data_lock:
        ranking = load_ranking(ranking_id)
        division = ranking.division(number)
        if division is None:
            abort(404, description=f'Division {number} not found')
        if participant not in division.players:
            return jsonify({'error': f'{participant} is not in division {number}'}), 400
        if participant not in division.retired_players:
            division.retired_players.append(participant)
        save_ranking(ranking)
    return jsonify(division.to_dict())


@app.route('/api/rankings/<ranking_id>/divisions/<int:number>/matches', methods=['POST'])
def add_manual_match(ranking_id, number):
    """Add an ad-hoc match between division members, optionally with its result."""
    data = request.get_json(silent=True) or {}
    if 'pair1' not in data or 'pair2' not in data:
        return jsonify({'error': 'Both pair1 and pair2 are required'}), 400
    pair1, pair2 = Pair.coerce(data['pair1']), Pair.coerce(data['pair2'])
    if set(pair1.players) & set(pair2.players):
        return jsonify({'error': 'A participant cannot play on both sides'}), 400
    with _data_lock:
        ranking = load_ranking(ranking_id)
        division = ranking.division(number)
        if division is None:
            abort(404, description=f'Division {number} not found')
        if division.stage == PLAYOFF_STAGE:
            return jsonify({'error': 'Bracket draws do not take ad-hoc matches'}), 400
        if uses_pair_keys(ranking.config):
            members = [pair1.key, pair2.key]
        else:
            members = list(pair1.players) + list(pair2.players)
        outsiders = [m for m in members if m not in division.players]
        if outsiders:
            return jsonify({'error': f'Not in division {number}: {", ".join(outsiders)}'}), 400
        match = Match(data.get('round') or division.current_round() or 1, pair1, pair2,
                      court=data.get('court'))
        if data.get('sets') or data.get('points_scored') is not None or data.get('force_draw'):
            score_match(match, ranking.config, _score_from_request(data),
                        force_draw=bool(data.get('force_draw')))
        division.matches.append(match)
        save_ranking(ranking)
    app.logger.info(f'Added match {match.id} to division {number} of ranking {ranking_id}')
    return jsonify(match.to_dict()), 201


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def _score_from_request(data: dict) -> Score:
    sets = data.get('sets') or []
    points_scored = data.get('points_scored')
    return Score(
        sets=[tuple(s) for s in sets],
        points_scored=tuple(points_scored) if points_scored is not None else None,
        is_incomplete=bool(data.get('is_incomplete')),
    )


def _apply_result(ranking_id: str, match_id: str, correction: bool):
    data = request.get_json(silent=True) or {}
    with _data_lock:
        ranking = load_ranking(ranking_id)
        _, match = _find_match(ranking, match_id)
        resolution = score_match(match, ranking.config, _score_from_request(data),
                                 force_draw=bool(data.get('force_draw')), correction=correction)
        if match.round_name is not None:
            ranking.divisions = propagate_result(ranking.divisions, match_id)
        save_ranking(ranking)
        _, match = ranking.find_match(match_id)
    return jsonify({
        'match': match.to_dict(),
        'points': list(resolution.points),
        'finalization_type': resolution.finalization_type,
        'description': resolution.description,
    })


@app.route('/api/rankings/<ranking_id>/matches/<match_id>/result', methods=['POST'])
def record_result(ranking_id, match_id):
    """Record the result of a pending match. Finished matches answer 409."""
    return _apply_result(ranking_id, match_id, correction=False)


@app.route('/api/rankings/<ranking_id>/matches/<match_id>/result', methods=['PUT'])
def correct_result(ranking_id, match_id):
    """Explicitly correct the result of a match."""
    app.logger.info(f'Correcting match {match_id} of ranking {ranking_id}')
    return _apply_result(ranking_id, match_id, correction=True)


@app.route('/api/rankings/<ranking_id>/matches/<match_id>/not-played', methods=['POST'])
def mark_not_played(ranking_id, match_id):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        _, match = _find_match(ranking, match_id)
        match.mark_not_played()
        save_ranking(ranking)
    return jsonify(match.to_dict())


@app.route('/api/rankings/<ranking_id>/adjustments/<participant>', methods=['PUT'])
def set_adjustment(ranking_id, participant):
    """Replace a participant's manual adjustment; an empty body clears it."""
    adjustment = ManualAdjustment.from_dict(request.get_json(silent=True) or {})
    with _data_lock:
        ranking = load_ranking(ranking_id)
        if adjustment.is_empty():
            ranking.adjustments.pop(participant, None)
        else:
            ranking.adjustments[participant] = adjustment
        save_ranking(ranking)
    return jsonify({'participant': participant, 'adjustment': adjustment.to_dict()})


# ---------------------------------------------------------------------------
# Tie-breaks and standings
# ---------------------------------------------------------------------------

@app.route('/api/rankings/<ranking_id>/tiebreaks', methods=['PUT'])
def reorder_ranking_tiebreaks(ranking_id):
    data = request.get_json(silent=True) or {}
    with _data_lock:
        ranking = load_ranking(ranking_id)
        ranking.config = reorder_tiebreaks(ranking.config, data.get('order') or [])
        save_ranking(ranking)
    return jsonify({'tiebreaks': list(ranking.config.tiebreaks)})


@app.route('/api/rankings/<ranking_id>/tiebreaks', methods=['POST'])
def add_ranking_tiebreak(ranking_id):
    data = request.get_json(silent=True) or {}
    with _data_lock:
        ranking = load_ranking(ranking_id)
        ranking.config = add_tiebreak(ranking.config, data.get('criterion'), data.get('position'))
        save_ranking(ranking)
    return jsonify({'tiebreaks': list(ranking.config.tiebreaks)})


@app.route('/api/rankings/<ranking_id>/tiebreaks/<criterion>', methods=['DELETE'])
def remove_ranking_tiebreak(ranking_id, criterion):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        ranking.config = remove_tiebreak(ranking.config, criterion)
        save_ranking(ranking)
    return jsonify({'tiebreaks': list(ranking.config.tiebreaks)})


@app.route('/api/rankings/<ranking_id>/standings', methods=['GET'])
def get_standings(ranking_id):
    return jsonify(_standings_payload(load_ranking(ranking_id)))


# ---------------------------------------------------------------------------
# Ladder rounds, phase transitions and playoffs
# ---------------------------------------------------------------------------

@app.route('/api/rankings/<ranking_id>/divisions/<int:number>/advance', methods=['POST'])
def advance_ladder_round(ranking_id, number):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        division = ranking.division(number)
        if division is None:
            abort(404, description=f'Division {number} not found')
        matches = advance_round(division, ranking.config)
        division.matches.extend(matches)
        save_ranking(ranking)
    return jsonify({'round': division.current_round(), 'matches': [m.to_dict() for m in matches]})


@app.route('/api/rankings/<ranking_id>/divisions/<int:number>/rounds', methods=['POST'])
def generate_next_round(ranking_id, number):
    """Generate the next round of a round-by-round format (Mexicano or random pods)."""
    data = request.get_json(silent=True) or {}
    seed = data.get('seed')
    with _data_lock:
        ranking = load_ranking(ranking_id)
        division = ranking.division(number)
        if division is None:
            abort(404, description=f'Division {number} not found')
        current = division.current_round()
        if any(not m.is_finished() and m.status != NOT_PLAYED for m in division.matches_in_round(current)):
            raise RoundNotCompleteError(f'Round {current} of division {number} is still in play')
        if ranking.format == MEXICANO:
            matches = generate_mexicano_round(division.players, division_standings(division, ranking),
                                              current + 1, ranking.config.num_courts)
        elif ranking.format == INDIVIDUAL:
            matches = generate_individual_round(division.players, current + 1,
                                                random.Random(seed) if seed is not None else None)
        else:
            return jsonify({'error': f'Format {ranking.format} does not generate rounds one at a time'}), 400
        division.matches.extend(matches)
        save_ranking(ranking)
    return jsonify({'round': current + 1, 'matches': [m.to_dict() for m in matches]}), 201


@app.route('/api/rankings/<ranking_id>/transition', methods=['GET'])
def preview_transition(ranking_id):
    """Compute (or reload) the pending movement plan of a ranking."""
    with _data_lock:
        ranking = load_ranking(ranking_id)
        if os.path.exists(_plan_file(ranking_id)) and not request.args.get('refresh'):
            plan = load_plan(ranking_id)
        else:
            plan = plan_transition(ranking)
            save_plan(ranking_id, plan)
    return jsonify(_plan_response(ranking, plan))


@app.route('/api/rankings/<ranking_id>/transition/overrides/<participant>', methods=['PUT'])
def override_movement(ranking_id, participant):
    data = request.get_json(silent=True) or {}
    with _data_lock:
        ranking = load_ranking(ranking_id)
        plan = load_plan(ranking_id)
        plan.override(participant, data.get('division'))
        save_plan(ranking_id, plan)
    return jsonify(_plan_response(ranking, plan))


@app.route('/api/rankings/<ranking_id>/transition/overrides/<participant>', methods=['DELETE'])
def clear_movement_override(ranking_id, participant):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        plan = load_plan(ranking_id)
        plan.clear_override(participant)
        save_plan(ranking_id, plan)
    return jsonify(_plan_response(ranking, plan))


@app.route('/api/rankings/<ranking_id>/transition/overrides', methods=['DELETE'])
def clear_movement_overrides(ranking_id):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        plan = load_plan(ranking_id)
        plan.clear_overrides()
        save_plan(ranking_id, plan)
    return jsonify(_plan_response(ranking, plan))


@app.route('/api/rankings/<ranking_id>/transition/confirm', methods=['POST'])
def confirm_ranking_transition(ranking_id):
    """Close the current phase using the pending plan and start the next one."""
    data = request.get_json(silent=True) or {}
    seed = data.get('seed')
    with _data_lock:
        ranking = load_ranking(ranking_id)
        plan = load_plan(ranking_id)
        strict = bool(data['strict']) if 'strict' in data else None
        closed, warnings = close_phase(ranking, plan, strict=strict,
                                       rng=random.Random(seed) if seed is not None else None)
        save_ranking(closed)
        os.remove(_plan_file(ranking_id))
    return jsonify({
        'divisions': [d.to_dict() for d in closed.divisions],
        'warnings': [w.to_dict() for w in warnings],
    })


@app.route('/api/rankings/<ranking_id>/playoffs', methods=['POST'])
def create_playoffs(ranking_id):
    with _data_lock:
        ranking = load_ranking(ranking_id)
        playoffs = build_playoffs(ranking)
        ranking.divisions.extend(playoffs)
        ranking.phase = 'playoff'
        save_ranking(ranking)
    return jsonify({'divisions': [d.to_dict() for d in playoffs]}), 201


@app.route('/api/rankings/<ranking_id>/placings', methods=['GET'])
def get_placings(ranking_id):
    ranking = load_ranking(ranking_id)
    main = next((d for d in ranking.sorted_divisions()
                 if d.stage == 'playoff' and d.kind == 'main'), None)
    if main is None:
        abort(404, description='Ranking has no main draw')
    return jsonify(final_placings(main))


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

@app.route('/api/players', methods=['GET'])
def get_players():
    return jsonify({pid: {'name': p.name, 'stats': p.stats} for pid, p in load_players().items()})


@app.route('/api/players', methods=['POST'])
def create_player():
    data = request.get_json(silent=True) or {}
    player_id = (data.get('id') or '').strip()
    if not player_id or not _ID_PATTERN.match(player_id):
        return jsonify({'error': 'Player id must be letters, numbers, hyphens or underscores'}), 400
    with _data_lock:
        players = load_players()
        if player_id in players:
            return jsonify({'error': f'Player {player_id} already exists'}), 400
        players[player_id] = Player(player_id, data.get('name', ''))
        save_players(players)
    return jsonify({'id': player_id, 'name': players[player_id].name}), 201


@app.route('/api/players/stats', methods=['POST'])
def refresh_player_stats():
    """Recompute lifetime statistics of every player from all rankings."""
    with _data_lock:
        players = update_player_stats(load_players(), list_rankings())
        save_players(players)
    return jsonify({pid: p.stats for pid, p in players.items()})


if __name__ == '__main__':
    app.run(debug=True)
