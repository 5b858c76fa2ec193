import uuid

from arkana.services.signature import ISO_TIMESTAMP_RE, SIGNATURE_RE


def is_uuid(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return len(value) == 36


def validate_signed_payload(data, uuid_fields=(), string_fields=(), universe='arkana',
                            optional_uuid_fields=()):
    """Check a signed in-world request body.

    Optional uuid fields come back as None when absent or empty.

    Returns ``(cleaned, error)``; exactly one of them is None.
    """
    if not isinstance(data, dict):
        return None, 'Request body must be a JSON object'

    for field in uuid_fields:
        if data.get(field) in (None, ''):
            return None, f'"{field}" is required'
        if not is_uuid(data[field]):
            return None, f'"{field}" must be a valid GUID'

    for field in optional_uuid_fields:
        if data.get(field) not in (None, '') and not is_uuid(data[field]):
            return None, f'"{field}" must be a valid GUID'

    for field in string_fields:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            return None, f'"{field}" is required'
        if len(value) > 255:
            return None, f'"{field}" must be at most 255 characters'

    given_universe = data.get('universe')
    if not isinstance(given_universe, str) or not given_universe:
        return None, '"universe" is required'
    if universe and given_universe.lower() != universe:
        return None, f'"universe" must be [{universe}]'

    timestamp = data.get('timestamp')
    if not isinstance(timestamp, str) or not timestamp:
        return None, '"timestamp" is required'
    if not ISO_TIMESTAMP_RE.match(timestamp):
        return None, '"timestamp" has an invalid format'

    signature = data.get('signature')
    if not isinstance(signature, str) or not signature:
        return None, '"signature" is required'
    if not SIGNATURE_RE.match(signature):
        return None, '"signature" must be a 64 character hex digest'

    cleaned = {field: data[field] for field in (*uuid_fields, *string_fields)}
    for field in optional_uuid_fields:
        cleaned[field] = data.get(field) or None
    cleaned.update({
        'universe': given_universe.lower(),
        'timestamp': timestamp,
        'signature': signature,
    })
    return cleaned, None


EFFECT_CATEGORIES = (
    'check', 'damage', 'stat_modifier', 'control', 'heal',
    'utility', 'defense', 'special', 'ownership',
)
EFFECT_TARGETS = ('enemy', 'self', 'ally', 'area', 'all_enemies', 'all_allies', 'single')


def validate_effect_definition(data, effect_id=None):
    """Check an admin-submitted effect definition; returns ``(cleaned, error)``."""
    if not isinstance(data, dict):
        return None, 'Effect definition must be a JSON object'

    cleaned = {k: v for k, v in data.items() if not k.startswith('_')}
    if effect_id is not None:
        cleaned['id'] = effect_id

    if not isinstance(cleaned.get('id'), str) or not cleaned['id'].strip():
        return None, '"id" is required'
    if not isinstance(cleaned.get('name'), str) or not cleaned['name'].strip():
        return None, '"name" is required'
    if cleaned.get('category') not in EFFECT_CATEGORIES:
        return None, f'"category" must be one of {", ".join(EFFECT_CATEGORIES)}'
    if cleaned.get('target') is not None and cleaned['target'] not in EFFECT_TARGETS:
        return None, f'"target" must be one of {", ".join(EFFECT_TARGETS)}'

    duration = cleaned.get('duration')
    if duration is not None and duration not in ('immediate', 'permanent', 'scene'):
        turns = duration.split(':', 1)[1] if isinstance(duration, str) and duration.startswith('turns:') else ''
        if not turns.isdigit() or int(turns) <= 0:
            return None, '"duration" must be immediate, permanent, scene or turns:N'

    if cleaned['category'] == 'stat_modifier':
        if not cleaned.get('stat'):
            return None, '"stat" is required for stat_modifier effects'
        if not isinstance(cleaned.get('modifier', 0), int):
            return None, '"modifier" must be an integer'
        if cleaned.get('modifier_type', 'stat_value') not in ('stat_value', 'roll_bonus'):
            return None, '"modifier_type" must be stat_value or roll_bonus'

    if cleaned['category'] == 'defense' and not isinstance(cleaned.get('damage_reduction', 0), int):
        return None, '"damage_reduction" must be an integer'

    return cleaned, None
