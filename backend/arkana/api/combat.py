from flask import Blueprint, jsonify, request, current_app
from arkana import db
from arkana.services import actions, turns
from arkana.services.turns import CombatError
from arkana.services.signature import validate_signature
from arkana.services.effects.formatting import encode_for_lsl
from arkana.validation import validate_signed_payload


combat = Blueprint('combat', __name__)


def _ok(data):
    return jsonify({'success': True, 'data': data})


def _error(message, status):
    return jsonify({'success': False, 'error': message}), status


def _signed_request(uuid_fields=(), string_fields=(), optional_uuid_fields=()):
    """Validate the body and signature. Returns ``(value, error_response)``."""
    data = request.get_json(silent=True)
    value, error = validate_signed_payload(
        data, uuid_fields=uuid_fields, string_fields=string_fields, optional_uuid_fields=optional_uuid_fields
    )
    if error:
        return None, _error(error, 400)
    valid, sig_error = validate_signature(value['timestamp'], value['signature'], value['universe'])
    if not valid:
        current_app.logger.warning(f"[signature] rejected {request.path}: {sig_error}")
        return None, _error(sig_error or 'Unauthorized', 401)
    return value, None


def _failed(tag, exc):
    db.session.rollback()
    current_app.logger.exception(f"[{tag}] unexpected error: {exc}")
    return _error('Internal server error', 500)


@combat.route('/end-turn', methods=['POST'])
def end_turn():
    value, failure = _signed_request(uuid_fields=('player_uuid',))
    if failure:
        return failure
    try:
        player = turns.load_ready_player(value['player_uuid'])
        result = turns.end_turn(player)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('end-turn', exc)

    return _ok({
        'player_name': encode_for_lsl(result['player_name']),
        'effects_remaining': result['effects_remaining'],
        'healing_applied': result['healing_applied'],
        'current_hp': result['current_hp'],
        'max_hp': result['max_hp'],
        'message': encode_for_lsl(result['message']),
    })


@combat.route('/end-scene', methods=['POST'])
def end_scene():
    value, failure = _signed_request(uuid_fields=('player_uuid',))
    if failure:
        return failure
    try:
        player = turns.load_ready_player(value['player_uuid'])
        result = turns.end_scene(player)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('end-scene', exc)

    return _ok({
        'player_name': encode_for_lsl(result['player_name']),
        'effects_removed': result['effects_removed'],
        'effects_remaining': result['effects_remaining'],
        'message': encode_for_lsl(result['message']),
    })


@combat.route('/user-active-effects', methods=['POST'])
def user_active_effects():
    value, failure = _signed_request(uuid_fields=('player_uuid',))
    if failure:
        return failure
    try:
        player = turns.load_ready_player(value['player_uuid'])
        effects = turns.deactivatable_effects(player)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('user-active-effects', exc)

    return _ok({
        'effects': [{'id': e['id'], 'name': encode_for_lsl(e['name'])} for e in effects],
    })


@combat.route('/deactivate-active-effect', methods=['POST'])
def deactivate_active_effect():
    value, failure = _signed_request(uuid_fields=('player_uuid',), string_fields=('effect_id',))
    if failure:
        return failure
    try:
        player = turns.load_ready_player(value['player_uuid'])
        result = turns.deactivate_effect(player, value['effect_id'])
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('deactivate', exc)

    return _ok({
        'player_name': encode_for_lsl(result['player_name']),
        'effect_deactivated': encode_for_lsl(result['effect_deactivated']),
        'effects_remaining': result['effects_remaining'],
        'current_hp': result['current_hp'],
        'message': encode_for_lsl(result['message']),
    })


@combat.route('/first-aid', methods=['POST'])
def first_aid():
    value, failure = _signed_request(uuid_fields=('healer_uuid', 'target_uuid'))
    if failure:
        return failure
    if value['healer_uuid'] == value['target_uuid']:
        return _error('Cannot administer first aid to yourself', 400)
    try:
        healer = turns.load_ready_player(value['healer_uuid'], role='Healer', require_rp_mode=False)
        target = turns.load_ready_player(value['target_uuid'], role='Target', require_rp_mode=False)
        result = turns.first_aid(healer, target)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('first-aid', exc)

    return _ok({
        'is_success': 'true',
        'healing_amount': result['healing_amount'],
        'healer': {
            'uuid': result['healer']['uuid'],
            'name': encode_for_lsl(result['healer']['name']),
        },
        'target': {
            'uuid': result['target']['uuid'],
            'name': encode_for_lsl(result['target']['name']),
            'health_before': result['target']['health_before'],
            'health_after': result['target']['health_after'],
        },
        'message': encode_for_lsl(result['message']),
    })


@combat.route('/live-stats', methods=['POST'])
def live_stats():
    value, failure = _signed_request(uuid_fields=('player_uuid',))
    if failure:
        return failure
    try:
        player = turns.load_ready_player(value['player_uuid'])
        summary = turns.live_stats_summary(player)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('live-stats', exc)

    summary['player_name'] = encode_for_lsl(summary['player_name'])
    summary['breakdown'] = {k: encode_for_lsl(v) for k, v in summary['breakdown'].items()}
    return _ok(summary)


@combat.route('/power-activate', methods=['POST'])
def power_activate():
    value, failure = _signed_request(
        uuid_fields=('caster_uuid',), string_fields=('power_id',), optional_uuid_fields=('target_uuid',)
    )
    if failure:
        return failure
    try:
        caster = turns.load_ready_player(value['caster_uuid'], role='Caster')
        target = None
        if value['target_uuid'] and value['target_uuid'] != value['caster_uuid']:
            target = turns.load_ready_player(value['target_uuid'], role='Target', require_rp_mode=False)
        result = actions.activate_power(caster, value['power_id'], target)
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('power-activate', exc)

    data = {
        'activation_success': 'true' if result['activation_success'] else 'false',
        'power_id': result['power_id'],
        'power_name': encode_for_lsl(result['power_name']),
        'roll_info': encode_for_lsl(result['roll_info']),
        'caster': dict(result['caster'], name=encode_for_lsl(result['caster']['name'])),
        'target': None,
        'message': encode_for_lsl(result['message']),
    }
    if result['target']:
        data['target'] = dict(
            result['target'],
            name=encode_for_lsl(result['target']['name']),
            effects_applied=[encode_for_lsl(name) for name in result['target']['effects_applied']],
        )
    return _ok(data)


@combat.route('/attack', methods=['POST'])
def attack():
    value, failure = _signed_request(
        uuid_fields=('attacker_uuid', 'target_uuid'), string_fields=('attack_type',)
    )
    if failure:
        return failure
    if value['attack_type'] not in actions.ATTACK_STATS:
        return _error('"attack_type" must be one of [physical, ranged, power]', 400)
    if value['attacker_uuid'] == value['target_uuid']:
        return _error('Cannot attack yourself', 400)
    try:
        attacker = turns.load_ready_player(value['attacker_uuid'], role='Attacker')
        target = turns.load_ready_player(value['target_uuid'], role='Target', require_rp_mode=False)
        result = actions.attack(attacker, target, value['attack_type'])
    except CombatError as exc:
        return _error(exc.message, exc.status)
    except Exception as exc:
        return _failed('attack', exc)

    return _ok({
        'is_hit': 'true' if result['is_hit'] else 'false',
        'attack_type': result['attack_type'],
        'd20_roll': result['d20_roll'],
        'attack_roll': result['attack_roll'],
        'target_number': result['target_number'],
        'damage': result['damage'],
        'damage_reduction': result['damage_reduction'],
        'roll_info': encode_for_lsl(result['roll_info']),
        'attack_breakdown': encode_for_lsl(result['attack_breakdown']),
        'defense_breakdown': encode_for_lsl(result['defense_breakdown']),
        'attacker': {
            'uuid': result['attacker']['uuid'],
            'name': encode_for_lsl(result['attacker']['name']),
        },
        'target': dict(result['target'], name=encode_for_lsl(result['target']['name'])),
        'message': encode_for_lsl(result['message']),
    })
