"""Display strings for the in-world client.

LSL scripts split replies on pipes and mangle raw UTF-8, so anything
human readable leaves the server percent-encoded (decoded in-world with
``llUnescapeURL``).
"""

from urllib.parse import quote

from .catalog import get_effect_definition
from .engine import SCENE_TURNS, calculate_damage_reduction, parse_formula_amount, parse_turns_left

# Same unreserved set as JavaScript's encodeURIComponent
_LSL_SAFE = "-_.!~*'()"


def encode_for_lsl(value) -> str:
    if not value:
        return ''
    return quote(str(value), safe=_LSL_SAFE)


def sanitize_for_lsl(value, max_length: int = 50) -> str:
    if not value:
        return ''
    sanitized = str(value).replace('|', '-')
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + '...'
    return sanitized


def format_duration(turns_left) -> str:
    turns_left = parse_turns_left(turns_left)
    if turns_left == SCENE_TURNS:
        return 'scene'
    if turns_left == 1:
        return '1 turn left'
    return f"{turns_left} turns left"


def _effects_in(active_effects, category):
    for effect in active_effects:
        effect_def = get_effect_definition(effect.get('effect_id'))
        if effect_def and effect_def.get('category') == category:
            yield effect, effect_def


def _by_caster(active_effects, category):
    return [
        f"{e.get('name')} by {e.get('caster_name') or 'Unknown'}({format_duration(e.get('turns_left'))})"
        for e, _ in _effects_in(active_effects, category)
    ]


def format_live_stats_for_lsl(live_stats, active_effects) -> str:
    """Summarise live stats and active effects, one line per section."""
    sections = []

    grouped = {
        name: {'total': value, 'effects': []}
        for name, value in (live_stats or {}).items()
        if isinstance(value, int) and not isinstance(value, bool)
    }
    for effect, effect_def in _effects_in(active_effects, 'stat_modifier'):
        stat = effect_def.get('stat')
        if not stat:
            continue
        roll_bonus = (effect_def.get('modifier_type') or 'stat_value') == 'roll_bonus'
        key = f"{stat}_rollbonus" if roll_bonus else stat
        if key not in grouped:
            continue
        if effect.get('source_name'):
            base_name = f"{effect['source_name']}[{effect.get('source_type')}]"
        else:
            base_name = effect.get('name')
        indicator = '[roll]' if roll_bonus else '[stat]'
        grouped[key]['effects'].append(f"{base_name}{indicator}({format_duration(effect.get('turns_left'))})")

    stat_lines = []
    for key, entry in grouped.items():
        total = entry['total']
        sign = '+' if total >= 0 else ''
        label = key.replace('_rollbonus', ' Roll Bonus')
        if entry['effects']:
            stat_lines.append(f"{label} {sign}{total} ({', '.join(entry['effects'])})")
        else:
            stat_lines.append(f"{label} {sign}{total}")
    if stat_lines:
        sections.append('🔮 Effects: ' + '\n'.join(stat_lines))

    utilities = _by_caster(active_effects, 'utility')
    if utilities:
        sections.append('🔧 Utilities: ' + ', '.join(utilities))

    specials = _by_caster(active_effects, 'special')
    if specials:
        sections.append('✨ Special: ' + ', '.join(specials))

    defenses = [
        (effect, effect_def) for effect, effect_def in _effects_in(active_effects, 'defense')
        if effect_def.get('type') == 'reduction'
    ]
    if defenses:
        reduction = calculate_damage_reduction([effect for effect, _ in defenses])
        listed = ', '.join(f"{e.get('name')}({format_duration(e.get('turns_left'))})" for e, _ in defenses)
        sections.append(f"🛡️ Defense: Damage Reduction -{reduction} ({listed})")

    heals = []
    per_turn = 0
    for effect, effect_def in _effects_in(active_effects, 'heal'):
        if effect_def.get('duration') == 'immediate':
            continue
        amount = parse_formula_amount(effect_def.get('heal_formula'))
        if amount > 0:
            per_turn += amount
            heals.append(f"{effect.get('name')}({format_duration(effect.get('turns_left'))})")
    if heals:
        sections.append(f"💚 Healing: +{per_turn} HP/turn ({', '.join(heals)})")

    controls = _by_caster(active_effects, 'control')
    if controls:
        sections.append('⛓️ Control: ' + ', '.join(controls))

    if not sections:
        return ''
    return encode_for_lsl('\n'.join(sections))
