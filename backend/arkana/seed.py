import json

from arkana import db
from arkana.models import AdminUser, User, UserStats, ArkanaStats

DEMO_CHARACTERS = [
    {
        'sl_uuid': '11111111-1111-4111-8111-111111111111',
        'username': 'ryn.resident',
        'character_name': 'Ryn Vale',
        'race': 'human',
        'archetype': 'Synthral',
        'stats': {'physical': 3, 'dexterity': 2, 'mental': 2, 'perception': 2, 'hit_points': 15},
        'passive_effects': ['defense_reduction_passive_1'],
        'powers': ['power_strength_surge', 'power_iron_skin', 'power_stun_gaze'],
    },
    {
        'sl_uuid': '22222222-2222-4222-8222-222222222222',
        'username': 'kestrel.resident',
        'character_name': 'Kestrel Ash',
        'race': 'strigoi',
        'archetype': 'Life',
        'stats': {'physical': 2, 'dexterity': 3, 'mental': 4, 'perception': 1, 'hit_points': 10},
        'passive_effects': ['perk_iron_will'],
        'powers': ['power_healing_touch', 'power_vital_bloom', 'power_spark'],
    },
]


def seed_demo_data():
    """Admin account plus two registered characters in RP mode."""
    admin_user = AdminUser(username='admin')
    admin_user.set_password('password')
    db.session.add(admin_user)

    for entry in DEMO_CHARACTERS:
        user = User(sl_uuid=entry['sl_uuid'], username=entry['username'], universe='arkana')
        user.stats = UserStats(health=entry['stats']['hit_points'], status=0)
        user.arkana_stats = ArkanaStats(
            character_name=entry['character_name'],
            race=entry['race'],
            archetype=entry['archetype'],
            registration_completed=True,
            active_effects='[]',
            live_stats='{}',
            passive_effects=json.dumps(entry['passive_effects']),
            powers=json.dumps(entry['powers']),
            **entry['stats'],
        )
        db.session.add(user)

    db.session.commit()
