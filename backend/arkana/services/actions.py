"""Power activation and basic attacks.

Both resolve rolls through the effects engine, then persist the caster
and target the same way the turn operations in ``turns`` do.
"""

import random
from typing import Optional

from flask import current_app

from arkana import db
from arkana.models import User
from arkana.services import turns
from arkana.services.effects import engine
from arkana.services.effects.catalog import get_power_definition
from arkana.services.turns import CombatError

ATTACK_BASE_DAMAGE = 1

# attack type -> (attacker stat, defender stat)
ATTACK_STATS = {
    'physical': ('physical', 'dexterity'),
    'ranged': ('dexterity', 'dexterity'),
    'power': ('mental', 'mental'),
}

CASTER_TARGETS = ('self', 'all_allies')
FRIENDLY_TARGETS = ('ally', 'single')
HOSTILE_TARGETS = ('enemy', 'area', 'all_enemies')


def _combat_view(user: User) -> dict:
    """Base stats plus active and passive effects, as the engine wants them."""
    stats = user.arkana_stats
    base = stats.base_stats()
    active_effects = engine.parse_active_effects(stats.active_effects)
    passives = engine.passive_effects_to_active(stats.passive_ids())
    combined = active_effects + passives
    return {
        'base': base,
        'active_effects': active_effects,
        'passives': passives,
        'combined': combined,
        'live_stats': engine.recalculate_live_stats(base, combined),
    }


def _current_hp(user: User) -> int:
    return user.stats.health if user.stats else 0


def _immediate_totals(results):
    damage = sum(r.get('damage', 0) for r in results)
    healing = sum(r.get('heal', 0) for r in results if r['effect_def'].get('duration') == 'immediate')
    return damage, healing


def _split_by_recipient(results, has_target: bool):
    """Partition effect results into ``(caster_results, target_results)``."""
    caster_results = []
    for target_type in CASTER_TARGETS:
        caster_results += engine.get_effects_by_target(results, target_type)

    target_results = []
    for target_type in FRIENDLY_TARGETS:
        if has_target:
            target_results += engine.get_effects_by_target(results, target_type)
        else:
            caster_results += engine.get_effects_by_target(results, target_type)
    if has_target:
        for target_type in HOSTILE_TARGETS:
            target_results += engine.get_effects_by_target(results, target_type)
        target_results += engine.get_effects_by_target(results, 'all_allies')
    return caster_results, target_results


def _save(user: User, active_effects, live_stats, max_hp, hp) -> None:
    user.arkana_stats.apply_update(engine.build_stats_update(
        active_effects=active_effects,
        live_stats=live_stats,
        max_hp=max_hp,
    ))
    if user.stats:
        user.stats.health = hp


def _settle_recipient(user: User, results, caster_name: str) -> dict:
    """Apply incoming effect results to a character other than the caster."""
    stats = user.arkana_stats
    view = _combat_view(user)
    health_before = _current_hp(user)

    damage, healing = _immediate_totals(results)
    outcome = engine.apply_damage_and_healing(
        health_before, stats.effective_max_hp, damage, healing, view['active_effects'], view['passives']
    )

    active_effects = view['active_effects']
    for result in results:
        active_effects = engine.apply_active_effect(active_effects, result, caster_name)
    live_stats = engine.recalculate_live_stats(view['base'], active_effects)
    bonus = engine.apply_health_bonus_changes(
        view['active_effects'], live_stats, outcome['new_hp'], stats.effective_max_hp,
        old_live_stats=stats.recorded_live_stats,
    )
    _save(user, active_effects, live_stats, bonus['new_max_hp'], bonus['new_hp'])

    return {
        'health_before': health_before,
        'health_after': bonus['new_hp'],
        'damage_dealt': outcome['damage_dealt'],
        'damage_reduction': outcome['damage_reduction'],
        'effects_applied': [r['effect_def'].get('name', r['effect_def']['id']) for r in results
                            if r['effect_def'].get('duration') not in ('immediate', 'permanent')],
    }


def _settle_caster(user: User, results) -> dict:
    """Use up the caster's turn, then apply what the power does to them."""
    stats = user.arkana_stats
    view = _combat_view(user)
    health_before = _current_hp(user)
    damage, healing = _immediate_totals(results)

    turn = engine.process_effects_turn_and_apply_healing(
        health_before, stats.effective_max_hp, view['base'], view['active_effects'],
        immediate_healing=healing,
        previous_live_stats=stats.recorded_live_stats,
    )
    hp = turn['new_hp']
    if damage:
        hp = engine.apply_damage_and_healing(
            hp, turn['new_max_hp'], damage, 0, turn['active_effects'], view['passives']
        )['new_hp']

    active_effects = turn['active_effects']
    for result in results:
        active_effects = engine.apply_active_effect(active_effects, result, stats.character_name)
    live_stats = engine.recalculate_live_stats(view['base'], active_effects)
    bonus = engine.apply_health_bonus_changes(
        turn['active_effects'], live_stats, hp, turn['new_max_hp'], old_live_stats=turn['live_stats']
    )
    _save(user, active_effects, live_stats, bonus['new_max_hp'], bonus['new_hp'])

    return {
        'health_before': health_before,
        'health_after': bonus['new_hp'],
        'max_hp': bonus['new_max_hp'],
        'effects_remaining': len(active_effects),
    }


def activate_power(caster: User, power_id: str, target: Optional[User] = None) -> dict:
    """Activate one of the caster's powers, optionally on ``target``.

    Check effects roll first; if any fails the caster still loses the turn
    and nothing else resolves.
    """
    power = get_power_definition(power_id)
    if not power:
        raise CombatError('Power not found', 404)
    if power_id not in caster.arkana_stats.power_ids():
        raise CombatError('Caster does not own this power', 403)
    if target is not None and target.id == caster.id:
        target = None

    effect_ids = power.get('effects', {}).get('ability', []) + power.get('effects', {}).get('attack', [])
    caster_view = _combat_view(caster)
    target_view = _combat_view(target) if target else None
    opponent = target_view or caster_view

    results = []
    for effect_id in effect_ids:
        result = engine.execute_effect(
            effect_id, caster_view['base'], opponent['base'],
            attacker_live_stats=caster_view['live_stats'],
            target_live_stats=opponent['live_stats'],
        )
        if result:
            results.append(result)

    checks = [r for r in results if r['effect_def'].get('category') == 'check']
    if target is None and any(c['effect_def'].get('check_vs') == 'enemy_stat' for c in checks):
        raise CombatError('This power requires a target', 400)
    roll_info = '; '.join(c['roll_info'] for c in checks)
    succeeded = all(c['success'] for c in checks)

    caster_name = caster.arkana_stats.character_name
    power_name = power.get('name', power_id)

    if not succeeded:
        caster_outcome = _settle_caster(caster, [])
        target_outcome = None
        message = f"{caster_name} fails to activate {power_name}. ({roll_info})"
    else:
        applied = [r for r in results if r['effect_def'].get('category') != 'check']
        caster_results, target_results = _split_by_recipient(applied, target is not None)
        caster_outcome = _settle_caster(caster, caster_results)
        target_outcome = _settle_recipient(target, target_results, caster_name) if target else None
        message = f"{caster_name} activates {power_name}"
        if target:
            message += f" on {target.arkana_stats.character_name}"
        message += '!'
        if target_outcome and target_outcome['damage_dealt']:
            message += f" Deals {target_outcome['damage_dealt']} damage."
        if roll_info:
            message += f" ({roll_info})"

    db.session.commit()

    current_app.logger.info(
        f"[power-activate] caster={caster.sl_uuid} power={power_id} "
        f"target={target.sl_uuid if target else '-'} success={succeeded}"
    )
    turns.notify_effects_update(caster)
    if target:
        turns.notify_effects_update(target)

    response = {
        'activation_success': succeeded,
        'power_id': power_id,
        'power_name': power_name,
        'roll_info': roll_info,
        'caster': {
            'uuid': caster.sl_uuid,
            'name': caster_name,
            'health_before': caster_outcome['health_before'],
            'health_after': caster_outcome['health_after'],
            'max_hp': caster_outcome['max_hp'],
        },
        'target': None,
        'message': message,
    }
    if target and target_outcome:
        response['target'] = {
            'uuid': target.sl_uuid,
            'name': target.arkana_stats.character_name,
            'health_before': target_outcome['health_before'],
            'health_after': target_outcome['health_after'],
            'effects_applied': target_outcome['effects_applied'],
        }
    return response


def attack(attacker: User, target: User, attack_type: str, rng=None) -> dict:
    """One basic attack roll: d20 plus the attack modifier against the target's defense."""
    if attack_type not in ATTACK_STATS:
        raise CombatError(f"Invalid attack type: {attack_type}", 400)
    if attacker.id == target.id:
        raise CombatError('Cannot attack yourself', 400)
    if not target.stats or target.stats.health <= 0:
        raise CombatError('Target is unconscious', 400)

    rng = rng or random
    attack_stat, defense_stat = ATTACK_STATS[attack_type]
    attacker_view = _combat_view(attacker)
    target_view = _combat_view(target)

    offense = engine.get_detailed_stat_calculation(
        attacker_view['base'], attacker_view['live_stats'], attack_stat, attacker_view['combined']
    )
    defense = engine.get_detailed_defense_calculation(
        target_view['base'], target_view['live_stats'], defense_stat, target_view['combined']
    )

    d20 = rng.randint(1, 20)
    total = d20 + offense['final_modifier']
    hit = total >= defense['final_tn']
    roll_info = f"Roll: {d20}+{offense['final_modifier']}={total} vs TN:{defense['final_tn']}"

    health_before = target.stats.health
    damage_dealt = 0
    damage_reduction = 0
    if hit:
        outcome = engine.apply_damage_and_healing(
            health_before, target.arkana_stats.effective_max_hp, ATTACK_BASE_DAMAGE, 0,
            target_view['active_effects'], target_view['passives'],
        )
        target.stats.health = outcome['new_hp']
        damage_dealt = outcome['damage_dealt']
        damage_reduction = outcome['damage_reduction']
        db.session.commit()
        turns.notify_effects_update(target)

    attacker_name = attacker.arkana_stats.character_name
    target_name = target.arkana_stats.character_name
    if hit:
        message = f"{attacker_name} hits {target_name} for {damage_dealt} damage! ({roll_info})"
    else:
        message = f"{attacker_name} misses {target_name}. ({roll_info})"

    current_app.logger.info(
        f"[attack] attacker={attacker.sl_uuid} target={target.sl_uuid} type={attack_type} "
        f"hit={hit} damage={damage_dealt}"
    )

    return {
        'is_hit': hit,
        'attack_type': attack_type,
        'd20_roll': d20,
        'attack_roll': total,
        'target_number': defense['final_tn'],
        'damage': damage_dealt,
        'damage_reduction': damage_reduction,
        'roll_info': roll_info,
        'attack_breakdown': offense['formatted'],
        'defense_breakdown': defense['formatted'],
        'attacker': {'uuid': attacker.sl_uuid, 'name': attacker_name},
        'target': {
            'uuid': target.sl_uuid,
            'name': target_name,
            'health_before': health_before,
            'health_after': target.stats.health,
            'is_unconscious': target.stats.health <= 0,
        },
        'message': message,
    }
