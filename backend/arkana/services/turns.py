"""Combat turn bookkeeping backed by the database.

Each operation loads a character, runs the pure engine, persists the
outcome and returns a JSON-ready summary. Encoding for the in-world
client happens in the routes.
"""

import json
from datetime import datetime, timedelta, timezone
from math import ceil
from typing import Optional, Tuple

from flask import current_app

from arkana import db, socketio
from arkana.models import User, Event
from arkana.services.effects import engine
from arkana.services.effects.catalog import get_effect_definition
from arkana.services.effects.formatting import format_live_stats_for_lsl

FIRST_AID_EVENT = 'FIRST_AID'
FIRST_AID_HEALING = 1


class CombatError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def find_player(sl_uuid: str, universe: str = 'arkana') -> Optional[User]:
    return User.query.filter_by(sl_uuid=sl_uuid, universe=universe).first()


def combat_readiness(user: Optional[User], role: str = 'Player', require_rp_mode: bool = True) -> Tuple[Optional[str], int]:
    if not user:
        return f'{role} not found in Arkana universe', 404
    if not user.arkana_stats or not user.arkana_stats.registration_completed:
        return f'{role} registration incomplete', 400
    if require_rp_mode and (not user.stats or user.stats.status != 0):
        return f'{role} is not in RP mode', 400
    return None, 200


def load_ready_player(sl_uuid: str, role: str = 'Player', require_rp_mode: bool = True) -> User:
    user = find_player(sl_uuid)
    error, status = combat_readiness(user, role, require_rp_mode)
    if error:
        raise CombatError(error, status)
    return user


def player_room(sl_uuid: str) -> str:
    return f"player:{sl_uuid.lower()}"


def notify_effects_update(user: User) -> None:
    socketio.emit(
        'effects_update',
        {
            'player_uuid': user.sl_uuid,
            'effects_remaining': len(engine.parse_active_effects(user.arkana_stats.active_effects)),
            'current_hp': user.stats.health if user.stats else None,
        },
        to=player_room(user.sl_uuid),
        namespace='/ws',
    )


def end_turn(user: User) -> dict:
    stats = user.arkana_stats
    active_effects = engine.parse_active_effects(stats.active_effects)
    current_hp = user.stats.health if user.stats else 0

    processed = engine.process_effects_turn_and_apply_healing(
        current_hp,
        stats.effective_max_hp,
        stats.base_stats(),
        active_effects,
        previous_live_stats=stats.recorded_live_stats,
    )

    stats.apply_update(engine.build_stats_update(
        active_effects=processed['active_effects'],
        live_stats=processed['live_stats'],
        max_hp=processed['new_max_hp'],
    ))
    if user.stats:
        user.stats.health = processed['new_hp']
    db.session.commit()

    remaining = len(processed['active_effects'])
    message = f"Turn ended. {remaining} active effects remaining."
    if processed['healing_applied'] > 0:
        healed = processed['new_hp'] - current_hp
        message += f" Healed {healed} HP from: {', '.join(processed['heal_effect_names'])}."

    current_app.logger.info(
        f"[end-turn] player={user.sl_uuid} remaining={remaining} "
        f"healed={processed['healing_applied']} hp={processed['new_hp']}/{processed['new_max_hp']}"
    )
    notify_effects_update(user)

    return {
        'player_name': stats.character_name,
        'effects_remaining': remaining,
        'healing_applied': processed['healing_applied'],
        'current_hp': processed['new_hp'],
        'max_hp': processed['new_max_hp'],
        'message': message,
    }


def end_scene(user: User) -> dict:
    stats = user.arkana_stats
    active_effects = engine.parse_active_effects(stats.active_effects)
    cleared = engine.clear_scene_effects(active_effects, stats.base_stats())

    # Health bonuses from scene effects go away with them
    current_hp = user.stats.health if user.stats else 0
    bonus = engine.apply_health_bonus_changes(
        active_effects, cleared['live_stats'], current_hp, stats.effective_max_hp,
        old_live_stats=stats.recorded_live_stats,
    )

    stats.apply_update(engine.build_stats_update(
        active_effects=cleared['active_effects'],
        live_stats=cleared['live_stats'],
        max_hp=bonus['new_max_hp'],
    ))
    if user.stats:
        user.stats.health = bonus['new_hp']
    db.session.commit()

    remaining = len(cleared['active_effects'])
    removed = len(active_effects) - remaining
    current_app.logger.info(f"[end-scene] player={user.sl_uuid} removed={removed} remaining={remaining}")
    notify_effects_update(user)

    return {
        'player_name': stats.character_name,
        'effects_removed': removed,
        'effects_remaining': remaining,
        'message': f"Scene ended. {removed} temporary effects cleared.",
    }


def _is_deactivatable(effect: dict, player_name: str) -> bool:
    effect_def = get_effect_definition(effect.get('effect_id'))
    if not effect_def or effect_def.get('duration') != 'scene':
        return False
    caster = effect.get('caster_name')
    return not caster or caster == player_name


def deactivatable_effects(user: User) -> list:
    stats = user.arkana_stats
    return [
        {'id': e.get('effect_id'), 'name': e.get('name')}
        for e in engine.parse_active_effects(stats.active_effects)
        if _is_deactivatable(e, stats.character_name)
    ]


def deactivate_effect(user: User, effect_id: str) -> dict:
    """Drop one self-cast scene effect; doing so uses up the player's turn."""
    stats = user.arkana_stats
    player_name = stats.character_name
    active_effects = engine.parse_active_effects(stats.active_effects)

    target = next((e for e in active_effects if e.get('effect_id') == effect_id), None)
    if target is None:
        raise CombatError('Effect not found in active effects', 404)

    effect_def = get_effect_definition(effect_id)
    if not effect_def or effect_def.get('duration') != 'scene':
        raise CombatError('Cannot deactivate turn-based effects', 400)
    if target.get('caster_name') and target['caster_name'] != player_name:
        raise CombatError('Cannot deactivate effects cast by others', 403)

    remaining_effects = [e for e in active_effects if e is not target]
    result = end_turn_with(user, active_effects, remaining_effects)

    current_app.logger.info(
        f"[deactivate] player={user.sl_uuid} effect={effect_id} remaining={result['effects_remaining']}"
    )
    name = target.get('name') or effect_id
    return {
        'player_name': player_name,
        'effect_deactivated': name,
        'effects_remaining': result['effects_remaining'],
        'current_hp': result['current_hp'],
        'message': f"Deactivated {name}. Effects remaining: {result['effects_remaining']}. Turn used.",
    }


def end_turn_with(user: User, before: list, after: list) -> dict:
    """Run a turn on ``after``, settling Health bonuses lost since ``before``."""
    stats = user.arkana_stats
    current_hp = user.stats.health if user.stats else 0

    # Removing the effect itself may shrink max HP before the turn ticks
    removed_live_stats = engine.recalculate_live_stats(stats.base_stats(), after)
    removal = engine.apply_health_bonus_changes(
        before, removed_live_stats, current_hp, stats.effective_max_hp,
        old_live_stats=stats.recorded_live_stats,
    )
    processed = engine.process_effects_turn_and_apply_healing(
        removal['new_hp'], removal['new_max_hp'], stats.base_stats(), after,
        previous_live_stats=removed_live_stats,
    )

    stats.apply_update(engine.build_stats_update(
        active_effects=processed['active_effects'],
        live_stats=processed['live_stats'],
        max_hp=processed['new_max_hp'],
    ))
    if user.stats:
        user.stats.health = processed['new_hp']
    db.session.commit()
    notify_effects_update(user)

    return {
        'effects_remaining': len(processed['active_effects']),
        'current_hp': processed['new_hp'],
    }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def first_aid(healer: User, target: User) -> dict:
    cooldown = int(current_app.config.get('FIRST_AID_COOLDOWN_SEC', 1800))
    now = datetime.now(timezone.utc)

    recent = (
        Event.query
        .filter(Event.user_id == healer.id, Event.type == FIRST_AID_EVENT,
                Event.timestamp >= now - timedelta(seconds=cooldown))
        .order_by(Event.timestamp.desc())
        .first()
    )
    if recent:
        elapsed = (now - _as_utc(recent.timestamp)).total_seconds()
        minutes_left = max(1, ceil((cooldown - elapsed) / 60))
        raise CombatError(f"First aid on cooldown. {minutes_left} minutes remaining.", 400)

    if not target.stats:
        raise CombatError('Target has no health record', 400)

    health_before = target.stats.health
    health_after = min(health_before + FIRST_AID_HEALING, target.arkana_stats.effective_max_hp)
    target.stats.health = health_after

    db.session.add(Event(
        user_id=healer.id,
        type=FIRST_AID_EVENT,
        timestamp=now,
        details=json.dumps({
            'target_uuid': target.sl_uuid,
            'target_name': target.arkana_stats.character_name,
            'healing_amount': FIRST_AID_HEALING,
            'health_before': health_before,
            'health_after': health_after,
        }),
    ))
    db.session.commit()

    healer_name = healer.arkana_stats.character_name
    target_name = target.arkana_stats.character_name
    current_app.logger.info(
        f"[first-aid] healer={healer.sl_uuid} target={target.sl_uuid} hp={health_before}->{health_after}"
    )
    notify_effects_update(target)

    return {
        'healing_amount': FIRST_AID_HEALING,
        'healer': {'uuid': healer.sl_uuid, 'name': healer_name},
        'target': {
            'uuid': target.sl_uuid,
            'name': target_name,
            'health_before': health_before,
            'health_after': health_after,
        },
        'message': f"{healer_name} successfully administers first aid to {target_name}! Healed {FIRST_AID_HEALING} HP.",
    }


def live_stats_summary(user: User) -> dict:
    stats = user.arkana_stats
    base = stats.base_stats()
    active_effects = engine.parse_active_effects(stats.active_effects)
    live_stats = engine.recalculate_live_stats(base, active_effects)
    passives = engine.passive_effects_to_active(stats.passive_ids())

    return {
        'player_name': stats.character_name,
        'live_stats': live_stats,
        'live_stats_string': format_live_stats_for_lsl(live_stats, active_effects),
        'modifiers': {
            stat: engine.get_effective_stat_modifier(base, live_stats, stat)
            for stat in engine.STAT_NAMES
        },
        'breakdown': {
            stat: engine.get_detailed_stat_calculation(base, live_stats, stat, active_effects)['formatted']
            for stat in engine.STAT_NAMES
        },
        'damage_reduction': engine.calculate_damage_reduction(active_effects + passives),
        'current_hp': user.stats.health if user.stats else 0,
        'max_hp': stats.effective_max_hp,
    }
