"""Turn-based effect resolution.

Everything in this module works on plain dicts so the results can be
stored as JSON as-is:

* effect definitions come from :mod:`catalog`
* active effects look like ``{'effect_id', 'name', 'duration',
  'turns_left', 'applied_at', 'caster_name'?, 'source_id'?,
  'source_name'?, 'source_type'?}``
* base stats carry ``physical``, ``dexterity``, ``mental``,
  ``perception`` and ``hit_points``
* live stats map ``Physical`` / ``Physical_rollbonus`` / control keys to
  accumulated ints or effect names

No function here mutates its arguments.
"""

import json
import logging
import random
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .catalog import get_effect_definition

logger = logging.getLogger(__name__)

SCENE_TURNS = 999
STAT_NAMES = ('physical', 'dexterity', 'mental', 'perception')
HEALTH_STAT = 'Health'

# Live stat keys that carry no information at these values are dropped
LIVE_STATS_RESET_VALUES = {
    'Physical': 0,
    'Dexterity': 0,
    'Mental': 0,
    'Perception': 0,
    'Health': 0,
    'Stealth': 0,
    'Physical_rollbonus': 0,
    'Dexterity_rollbonus': 0,
    'Mental_rollbonus': 0,
    'Perception_rollbonus': 0,
    'Stealth_rollbonus': 0,
}

_LEADING_INT = re.compile(r'\s*([+-]?\d+)')


def calculate_stat_modifier(value: int) -> int:
    if value <= 0:
        return -3
    if value == 1:
        return -2
    if value == 2:
        return 0
    if value == 3:
        return 2
    if value == 4:
        return 4
    return 6


def parse_active_effects(raw) -> List[dict]:
    """Decode stored effects; anything that is not a list becomes []."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []
    return [dict(e) for e in raw if isinstance(e, dict)]


def parse_formula_amount(formula: Optional[str]) -> int:
    """Leading integer of a ``"N + Stat"`` formula."""
    if not formula:
        return 0
    match = _LEADING_INT.match(formula.split('+')[0])
    return int(match.group(1)) if match else 0


def parse_duration_turns(duration: Optional[str]) -> int:
    if not duration:
        return 0
    if duration == 'scene':
        return SCENE_TURNS
    if duration.startswith('turns:'):
        try:
            return int(duration.split(':', 1)[1])
        except ValueError:
            return 0
    return 0


def parse_turns_left(value) -> int:
    """Stored turn counter; missing or non-numeric values count as 0."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _stat_key(stat: str) -> str:
    return stat.strip().lower()


def _capitalize(stat: str) -> str:
    return stat[:1].upper() + stat[1:]


def get_effective_stat_modifier(base_stats: dict, live_stats: Optional[dict], stat: str) -> int:
    """Tier modifier of (base + stat_value bonus) plus the flat roll bonus."""
    key = _stat_key(stat)
    cap = _capitalize(key)
    value = int(base_stats.get(key, 0) or 0)
    roll_bonus = 0
    if live_stats:
        stat_bonus = live_stats.get(cap)
        if isinstance(stat_bonus, int) and not isinstance(stat_bonus, bool):
            value += stat_bonus
        bonus = live_stats.get(f"{cap}_rollbonus")
        if isinstance(bonus, int) and not isinstance(bonus, bool):
            roll_bonus = bonus
    return calculate_stat_modifier(value) + roll_bonus


def _stat_modifier(stats: dict, live_stats: Optional[dict], stat: Optional[str]) -> int:
    if not stat or _stat_key(stat) not in STAT_NAMES:
        return 0
    if live_stats is not None:
        return get_effective_stat_modifier(stats, live_stats, stat)
    return calculate_stat_modifier(int(stats.get(_stat_key(stat), 0) or 0))


def _formula_total(formula: Optional[str], stats: dict, live_stats: Optional[dict]) -> int:
    if not formula:
        return 0
    parts = [p.strip() for p in formula.split('+')]
    total = parse_formula_amount(parts[0])
    if len(parts) > 1:
        total += _stat_modifier(stats, live_stats, parts[1])
    return total


def execute_effect(effect_id, attacker, target, target_stat_value=None,
                   attacker_live_stats=None, target_live_stats=None, rng=None) -> Optional[dict]:
    """Resolve a single effect and return ``{'success', 'effect_def', ...}``.

    Checks roll a d20 from ``rng`` (defaults to :mod:`random`) against a
    target number; damage and heal effects evaluate their formulas; other
    categories just succeed so the caller can store them.
    """
    effect_def = get_effect_definition(effect_id)
    if not effect_def:
        logger.warning(f"[engine] effect definition not found: {effect_id}")
        return None

    category = effect_def.get('category')

    if category == 'check':
        rng = rng or random
        attacker_mod = _stat_modifier(attacker, attacker_live_stats, effect_def.get('check_stat'))
        target_number = 10
        defense_stat = None
        vs_stat = effect_def.get('check_vs_stat')
        if effect_def.get('check_vs') == 'enemy_stat' and vs_stat:
            defense_stat = _stat_key(vs_stat)
            if target_live_stats is not None:
                target_number = 10 + get_effective_stat_modifier(target, target_live_stats, defense_stat)
            else:
                value = target_stat_value if target_stat_value is not None else target.get(defense_stat, 2)
                target_number = 10 + calculate_stat_modifier(int(value or 0))
        elif effect_def.get('check_vs') == 'fixed' and effect_def.get('check_tn'):
            target_number = int(effect_def['check_tn'])

        d20 = rng.randint(1, 20)
        total = d20 + attacker_mod
        return {
            'success': total >= target_number,
            'effect_def': effect_def,
            'roll_info': f"Roll: {d20}+{attacker_mod}={total} vs TN:{target_number}",
            'defense_stat': defense_stat,
        }

    if category == 'damage':
        damage = int(effect_def.get('damage_fixed') or 0)
        if effect_def.get('damage_formula'):
            damage = _formula_total(effect_def['damage_formula'], attacker, attacker_live_stats)
        return {'success': True, 'effect_def': effect_def, 'damage': damage}

    if category == 'heal':
        heal = _formula_total(effect_def.get('heal_formula'), attacker, attacker_live_stats)
        return {'success': True, 'effect_def': effect_def, 'heal': heal}

    return {'success': True, 'effect_def': effect_def}


def apply_active_effect(current_effects, effect_result, caster_name=None, source=None) -> List[dict]:
    """Add (or extend) the effect carried by ``effect_result``.

    Immediate, permanent and duration-less effects are never stored. An existing entry
    with the same id is only replaced when the new duration is longer.
    """
    effect_def = effect_result['effect_def']
    duration = effect_def.get('duration')
    effects = [dict(e) for e in current_effects]

    if duration in ('immediate', 'permanent'):
        return effects

    turns_left = parse_duration_turns(duration)
    if turns_left <= 0:
        return effects

    new_effect = {
        'effect_id': effect_def['id'],
        'name': effect_def.get('name', effect_def['id']),
        'duration': duration,
        'turns_left': turns_left,
        'applied_at': datetime.now(timezone.utc).isoformat(),
        'caster_name': caster_name,
    }
    if source:
        new_effect['source_id'] = source.get('source_id')
        new_effect['source_name'] = source.get('source_name')
        new_effect['source_type'] = source.get('source_type')

    for idx, existing in enumerate(effects):
        if existing.get('effect_id') == effect_def['id']:
            if turns_left > parse_turns_left(existing.get('turns_left')):
                effects[idx] = new_effect
            return effects

    effects.append(new_effect)
    return effects


def _definitions(active_effects: Iterable[dict]):
    for effect in active_effects:
        effect_def = get_effect_definition(effect.get('effect_id'))
        if effect_def is None:
            logger.warning(f"[engine] skipping unknown active effect {effect.get('effect_id')}")
            continue
        yield effect, effect_def


def recalculate_live_stats(base_stats, active_effects) -> Dict[str, object]:
    """Stack every active modifier into a fresh live stats dict.

    ``base_stats`` is accepted for symmetry with the other entry points;
    live stats only hold deltas on top of it.
    """
    live_stats: Dict[str, object] = {}

    for _effect, effect_def in _definitions(active_effects):
        category = effect_def.get('category')

        if category == 'stat_modifier' and effect_def.get('stat'):
            stat = effect_def['stat']
            modifier = int(effect_def.get('modifier') or 0)
            modifier_type = effect_def.get('modifier_type') or 'stat_value'
            if modifier_type == 'roll_bonus':
                key = f"{stat}_rollbonus"
            elif modifier_type == 'stat_value':
                key = stat
            else:
                continue
            current = live_stats.get(key, 0)
            if isinstance(current, int):
                live_stats[key] = current + modifier

        elif category == 'control' and effect_def.get('control_type'):
            live_stats[effect_def['control_type']] = effect_def.get('name')

        elif category == 'special' and effect_def.get('type'):
            live_stats[effect_def['type']] = effect_def.get('name')

    for key, reset_value in LIVE_STATS_RESET_VALUES.items():
        if key in live_stats and live_stats[key] == reset_value:
            del live_stats[key]

    return live_stats


def _heal_per_turn(effect_def: dict) -> int:
    if effect_def.get('category') != 'heal' or effect_def.get('duration') == 'immediate':
        return 0
    return parse_formula_amount(effect_def.get('heal_formula'))


def process_effects_turn(active_effects, base_stats) -> dict:
    """Advance every active effect by one turn.

    Heal-over-time is totalled before anything is decremented. Effects
    tagged ``scene`` keep their counter; everything else loses one turn
    and is dropped at zero.
    """
    total_healing = 0
    heal_effect_names = []

    for effect, effect_def in _definitions(active_effects):
        amount = _heal_per_turn(effect_def)
        if amount > 0:
            total_healing += amount
            heal_effect_names.append(effect.get('name'))

    updated = []
    for effect in active_effects:
        effect = dict(effect)
        if effect.get('duration') != 'scene':
            effect['turns_left'] = parse_turns_left(effect.get('turns_left')) - 1
        if parse_turns_left(effect.get('turns_left')) > 0:
            updated.append(effect)

    return {
        'active_effects': updated,
        'live_stats': recalculate_live_stats(base_stats, updated),
        'healing_applied': total_healing,
        'heal_effect_names': heal_effect_names,
    }


def health_bonus(active_effects) -> int:
    total = 0
    for _effect, effect_def in _definitions(active_effects):
        if (effect_def.get('category') == 'stat_modifier'
                and effect_def.get('stat') == HEALTH_STAT
                and (effect_def.get('modifier_type') or 'stat_value') == 'stat_value'):
            total += int(effect_def.get('modifier') or 0)
    return total


def _live_health(live_stats) -> int:
    value = live_stats.get(HEALTH_STAT, 0) if live_stats else 0
    if not isinstance(value, int) or isinstance(value, bool):
        return 0
    return value


def apply_health_bonus_changes(old_active_effects, new_live_stats, current_hp, current_max_hp,
                               old_live_stats=None) -> dict:
    """Move max HP by the change in the Health modifier.

    Gaining a bonus raises current HP by the same amount; losing one only
    clamps current HP to the lowered maximum.

    When ``old_live_stats`` is given (the live stats stored alongside
    ``current_max_hp``) the old bonus is read from it instead of from the
    current definitions.
    """
    if old_live_stats is not None:
        old_bonus = _live_health(old_live_stats)
    else:
        old_bonus = health_bonus(old_active_effects)
    new_bonus = _live_health(new_live_stats)
    delta = new_bonus - old_bonus

    new_max_hp = max(1, int(current_max_hp) + delta)
    new_hp = int(current_hp)
    if delta > 0:
        new_hp += delta
    new_hp = max(0, min(new_hp, new_max_hp))

    return {'new_max_hp': new_max_hp, 'new_hp': new_hp, 'bonus_delta': delta}


def process_effects_turn_and_apply_healing(current_hp, max_hp, base_stats, active_effects,
                                           immediate_healing=0, previous_live_stats=None) -> dict:
    """Run a turn, settle Health bonuses, then heal against the new maximum."""
    turn = process_effects_turn(active_effects, base_stats)
    bonus = apply_health_bonus_changes(
        active_effects, turn['live_stats'], current_hp, max_hp, old_live_stats=previous_live_stats
    )

    total_healing = turn['healing_applied'] + int(immediate_healing or 0)
    new_hp = max(0, min(bonus['new_hp'] + total_healing, bonus['new_max_hp']))

    result = dict(turn)
    result.update({
        'healing_applied': total_healing,
        'new_hp': new_hp,
        'new_max_hp': bonus['new_max_hp'],
    })
    return result


def clear_scene_effects(active_effects, base_stats) -> dict:
    """Drop every turn and scene effect, keeping permanent ones."""
    remaining = []
    for effect in active_effects:
        effect_def = get_effect_definition(effect.get('effect_id'))
        if effect_def and effect_def.get('duration') == 'permanent':
            remaining.append(dict(effect))
    return {
        'active_effects': remaining,
        'live_stats': recalculate_live_stats(base_stats, remaining),
    }


def passive_effects_to_active(effect_ids, source_type='perk') -> List[dict]:
    """Wrap always-on effect ids so they can be summed like active ones."""
    passives = []
    for effect_id in effect_ids or []:
        effect_def = get_effect_definition(effect_id)
        if not effect_def:
            continue
        passives.append({
            'effect_id': effect_id,
            'name': effect_def.get('name', effect_id),
            'duration': 'permanent',
            'turns_left': SCENE_TURNS,
            'source_type': source_type,
        })
    return passives


def calculate_damage_reduction(active_effects) -> int:
    total = 0
    for _effect, effect_def in _definitions(active_effects):
        if effect_def.get('category') == 'defense' and effect_def.get('type') == 'reduction':
            total += int(effect_def.get('damage_reduction') or 0)
    return max(0, total)


def apply_damage_and_healing(current_hp, max_hp, damage, healing, active_effects,
                             passive_effects=()) -> dict:
    reduction = calculate_damage_reduction(list(active_effects) + list(passive_effects)) if damage > 0 else 0
    damage_dealt = max(0, int(damage) - reduction)
    new_hp = max(0, min(int(current_hp) - damage_dealt + int(healing), int(max_hp)))
    return {
        'new_hp': new_hp,
        'damage_dealt': damage_dealt,
        'damage_reduction': min(reduction, int(damage)) if damage > 0 else 0,
    }


def _display_name(effect: dict) -> str:
    if effect.get('source_name'):
        return f"{effect['source_name']}[{effect.get('source_type')}]"
    return effect.get('name') or effect.get('effect_id')


def _signed(value: int) -> str:
    return f"+{value}" if value >= 0 else str(value)


def _modifier_breakdown(base_stats, live_stats, stat, active_effects):
    key = _stat_key(stat)
    cap = _capitalize(key)
    base_value = int(base_stats.get(key, 0) or 0)
    stat_value_effects = []
    roll_bonus_effects = []

    if live_stats is not None:
        for effect, effect_def in _definitions(active_effects):
            if effect_def.get('category') != 'stat_modifier' or effect_def.get('stat') != cap:
                continue
            entry = {'name': _display_name(effect), 'modifier': int(effect_def.get('modifier') or 0)}
            modifier_type = effect_def.get('modifier_type') or 'stat_value'
            if modifier_type == 'stat_value':
                stat_value_effects.append(entry)
            elif modifier_type == 'roll_bonus':
                roll_bonus_effects.append(entry)

    effective = base_value + sum(e['modifier'] for e in stat_value_effects)
    tier = calculate_stat_modifier(effective)

    if stat_value_effects:
        listed = ' '.join(f"{'+' if e['modifier'] >= 0 else ''}{e['name']}({e['modifier']})" for e in stat_value_effects)
        text = f"{cap}[{base_value} {listed} ={effective}]({_signed(tier)})"
    else:
        text = f"{cap}[{base_value}]({_signed(tier)})"
    if roll_bonus_effects:
        text += ' ' + ' '.join(f"{'+' if e['modifier'] >= 0 else ''}{e['name']}({e['modifier']})" for e in roll_bonus_effects)

    return {
        'base_stat': base_value,
        'stat_value_effects': stat_value_effects,
        'effective_stat': effective,
        'tier_modifier': tier,
        'roll_bonus_effects': roll_bonus_effects,
        'roll_bonus_total': sum(e['modifier'] for e in roll_bonus_effects),
        'text': text,
    }


def get_detailed_stat_calculation(base_stats, live_stats, stat, active_effects) -> dict:
    """Breakdown such as ``Physical[2 +Strength(3) =5](+6) +Focus(1)``."""
    parts = _modifier_breakdown(base_stats, live_stats, stat, active_effects)
    return {
        'base_stat': parts['base_stat'],
        'stat_value_effects': parts['stat_value_effects'],
        'effective_stat': parts['effective_stat'],
        'tier_modifier': parts['tier_modifier'],
        'roll_bonus_effects': parts['roll_bonus_effects'],
        'final_modifier': parts['tier_modifier'] + parts['roll_bonus_total'],
        'formatted': parts['text'],
    }


def get_detailed_defense_calculation(base_stats, live_stats, stat, active_effects) -> dict:
    """Target number breakdown, e.g. ``10 + Dexterity[4](+4) = 14``."""
    base_tn = 10
    parts = _modifier_breakdown(base_stats, live_stats, stat, active_effects)
    final_tn = base_tn + parts['tier_modifier'] + parts['roll_bonus_total']
    return {
        'base_tn': base_tn,
        'base_stat': parts['base_stat'],
        'stat_value_effects': parts['stat_value_effects'],
        'effective_stat': parts['effective_stat'],
        'tier_modifier': parts['tier_modifier'],
        'roll_bonus_effects': parts['roll_bonus_effects'],
        'final_tn': final_tn,
        'formatted': f"{base_tn} + {parts['text']} = {final_tn}",
    }


def get_effects_by_target(effect_results, target_type) -> List[dict]:
    return [r for r in effect_results if r['effect_def'].get('target') == target_type]


def build_stats_update(active_effects=None, live_stats=None, max_hp=None) -> dict:
    data = {}
    if active_effects is not None:
        data['active_effects'] = active_effects
    if live_stats is not None:
        data['live_stats'] = live_stats
    if isinstance(max_hp, int) and not isinstance(max_hp, bool):
        data['max_hp'] = max_hp
    return data
