import json
from urllib.parse import unquote

from arkana import db
from arkana.models import Event, User
from arkana.services.effects.engine import SCENE_TURNS
from conftest import MISSING_UUID, OTHER_UUID, PLAYER_UUID, active


def _reload(sl_uuid=PLAYER_UUID):
    db.session.expire_all()
    return User.query.filter_by(sl_uuid=sl_uuid).first()


def _effects(user):
    return json.loads(user.arkana_stats.active_effects)


def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json()['database'] == 'ok'


def test_end_turn_requires_valid_signature(client, make_player):
    make_player()
    res = client.post('/api/arkana/combat/end-turn', json={
        'player_uuid': PLAYER_UUID,
        'universe': 'arkana',
        'timestamp': '2025-10-01T12:00:00.000Z',
        'signature': 'a' * 64,
    })
    assert res.status_code == 401
    assert res.get_json()['success'] is False


def test_end_turn_rejects_bad_payload(client, signed):
    res = client.post('/api/arkana/combat/end-turn', json=signed())
    assert res.status_code == 400
    assert res.get_json()['error'] == '"player_uuid" is required'

    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid='not-a-guid'))
    assert res.status_code == 400

    res = client.post('/api/arkana/combat/end-turn', json=dict(signed(player_uuid=PLAYER_UUID), universe='gor'))
    assert res.status_code == 400


def test_end_turn_unknown_player(client, signed):
    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=MISSING_UUID))
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Player not found in Arkana universe'


def test_end_turn_requires_registration_and_rp_mode(client, signed, make_player):
    make_player(registered=False)
    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Player registration incomplete'

    make_player(sl_uuid=OTHER_UUID, name='Ooc Player', status=1)
    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=OTHER_UUID))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Player is not in RP mode'


def test_end_turn_decrements_and_keeps_scene_effects(client, signed, make_player):
    make_player(active_effects=[
        active('buff_physical_1', 3),
        active('buff_stealth_4', SCENE_TURNS),
        active('control_stun', 1),
    ])
    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['effects_remaining'] == 2
    assert data['healing_applied'] == 0
    assert unquote(data['message']) == 'Turn ended. 2 active effects remaining.'
    assert unquote(data['player_name']) == 'Test Character'

    user = _reload()
    remaining = {e['effect_id']: e['turns_left'] for e in _effects(user)}
    assert remaining == {'buff_physical_1': 2, 'buff_stealth_4': SCENE_TURNS}
    assert json.loads(user.arkana_stats.live_stats) == {'Physical': 1, 'Stealth': 4}


def test_end_turn_applies_heal_over_time(client, signed, make_player):
    make_player(health=5, active_effects=[active('heal_over_time_2', 3)])
    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['healing_applied'] == 2
    assert data['current_hp'] == 7
    assert unquote(data['message']) == 'Turn ended. 1 active effects remaining. Healed 2 HP from: Regeneration.'
    assert _reload().stats.health == 7


def test_end_turn_healing_reports_actual_gain(client, signed, make_player):
    make_player(health=9, active_effects=[active('heal_over_time_2', 3)])
    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['current_hp'] == 10
    assert 'Healed 1 HP from: Regeneration.' in unquote(data['message'])


def test_end_turn_expiring_health_bonus_lowers_max(client, signed, make_player):
    make_player(health=15, max_hp=15, active_effects=[active('buff_health_5', 1)])
    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['max_hp'] == 10
    assert data['current_hp'] == 10
    user = _reload()
    assert user.arkana_stats.max_hp == 10
    assert user.stats.health == 10


def test_end_scene_clears_temporary_effects(client, signed, make_player):
    make_player(health=13, max_hp=13, active_effects=[
        active('buff_stealth_4', SCENE_TURNS),
        active('buff_health_scene_3', SCENE_TURNS),
        active('buff_physical_1', 2),
        active('perk_iron_will', SCENE_TURNS, duration='permanent'),
    ])
    res = client.post('/api/arkana/combat/end-scene', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['effects_removed'] == 3
    assert data['effects_remaining'] == 1

    user = _reload()
    assert [e['effect_id'] for e in _effects(user)] == ['perk_iron_will']
    assert json.loads(user.arkana_stats.live_stats) == {'Mental': 1}
    assert user.arkana_stats.max_hp == 10
    assert user.stats.health == 10


def test_user_active_effects_lists_own_scene_effects(client, signed, make_player):
    make_player(active_effects=[
        active('utility_test_eavesdrop', SCENE_TURNS),
        active('buff_stealth_4', SCENE_TURNS, caster_name='Test Character'),
        active('special_invisibility', SCENE_TURNS, caster_name='Someone Else'),
        active('buff_physical_1', 3),
    ])
    res = client.post('/api/arkana/combat/user-active-effects', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 200
    effects = res.get_json()['data']['effects']
    assert [e['id'] for e in effects] == ['utility_test_eavesdrop', 'buff_stealth_4']
    assert effects[1]['name'] == 'Shadow%20Veil'


def test_deactivate_scene_effect_uses_turn(client, signed, make_player):
    make_player(active_effects=[
        active('utility_test_eavesdrop', SCENE_TURNS),
        active('buff_physical_1', 3),
    ])
    res = client.post('/api/arkana/combat/deactivate-active-effect',
                      json=signed(player_uuid=PLAYER_UUID, effect_id='utility_test_eavesdrop'))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert unquote(data['effect_deactivated']) == 'Eavesdrop'
    assert data['effects_remaining'] == 1
    assert unquote(data['message']) == 'Deactivated Eavesdrop. Effects remaining: 1. Turn used.'

    remaining = _effects(_reload())
    assert remaining == [dict(remaining[0], effect_id='buff_physical_1', turns_left=2)]


def test_deactivate_effect_errors(client, signed, make_player):
    make_player(active_effects=[
        active('buff_physical_1', 3),
        active('buff_stealth_4', SCENE_TURNS, caster_name='Someone Else'),
    ])
    url = '/api/arkana/combat/deactivate-active-effect'

    res = client.post(url, json=signed(player_uuid=PLAYER_UUID, effect_id='control_stun'))
    assert res.status_code == 404

    res = client.post(url, json=signed(player_uuid=PLAYER_UUID, effect_id='buff_physical_1'))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Cannot deactivate turn-based effects'

    res = client.post(url, json=signed(player_uuid=PLAYER_UUID, effect_id='buff_stealth_4'))
    assert res.status_code == 403

    # nothing changed
    assert len(_effects(_reload())) == 2


def test_deactivating_health_bonus_lowers_max(client, signed, make_player):
    make_player(health=13, max_hp=13, active_effects=[active('buff_health_scene_3', SCENE_TURNS)])
    res = client.post('/api/arkana/combat/deactivate-active-effect',
                      json=signed(player_uuid=PLAYER_UUID, effect_id='buff_health_scene_3'))
    assert res.status_code == 200
    user = _reload()
    assert user.arkana_stats.max_hp == 10
    assert user.stats.health == 10


def test_first_aid_heals_and_records_cooldown(client, signed, make_player):
    make_player(name='Healer')
    make_player(sl_uuid=OTHER_UUID, name='Wounded', health=3, status=1)

    body = signed(healer_uuid=PLAYER_UUID, target_uuid=OTHER_UUID)
    res = client.post('/api/arkana/combat/first-aid', json=body)
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['healing_amount'] == 1
    assert data['target']['health_before'] == 3
    assert data['target']['health_after'] == 4
    assert _reload(OTHER_UUID).stats.health == 4
    assert Event.query.filter_by(type='FIRST_AID').count() == 1

    res = client.post('/api/arkana/combat/first-aid', json=signed(healer_uuid=PLAYER_UUID, target_uuid=OTHER_UUID))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'First aid on cooldown. 30 minutes remaining.'
    assert _reload(OTHER_UUID).stats.health == 4


def test_first_aid_caps_at_max_hp(client, signed, make_player):
    make_player(name='Healer')
    make_player(sl_uuid=OTHER_UUID, name='Fine', health=10)
    data = client.post('/api/arkana/combat/first-aid',
                       json=signed(healer_uuid=PLAYER_UUID, target_uuid=OTHER_UUID)).get_json()['data']
    assert data['target']['health_after'] == 10


def test_first_aid_errors(client, signed, make_player):
    make_player(name='Healer')
    url = '/api/arkana/combat/first-aid'

    res = client.post(url, json=signed(healer_uuid=PLAYER_UUID, target_uuid=PLAYER_UUID))
    assert res.status_code == 400

    res = client.post(url, json=signed(healer_uuid=PLAYER_UUID, target_uuid=MISSING_UUID))
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Target not found in Arkana universe'

    res = client.post(url, json=signed(healer_uuid=MISSING_UUID, target_uuid=PLAYER_UUID))
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Healer not found in Arkana universe'


def test_live_stats(client, signed, make_player):
    make_player(passive_effects=['defense_reduction_passive_1'], active_effects=[
        active('buff_physical_3', SCENE_TURNS),
        active('roll_bonus_physical_1', 2),
        active('defense_reduction_2', SCENE_TURNS),
    ])
    res = client.post('/api/arkana/combat/live-stats', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['live_stats'] == {'Physical': 3, 'Physical_rollbonus': 1}
    assert data['modifiers']['physical'] == 7
    assert data['modifiers']['mental'] == 0
    assert unquote(data['breakdown']['physical']) == 'Physical[2 +Strength(3) =5](+6) +Focus(1)'
    assert data['damage_reduction'] == 3
    assert 'Damage Reduction -2' in unquote(data['live_stats_string'])
    assert data['current_hp'] == 10
    assert data['max_hp'] == 10


def test_unexpected_error_returns_500(client, signed, make_player, monkeypatch):
    from arkana.services import turns

    def boom(user):
        raise RuntimeError('boom')

    make_player()
    monkeypatch.setattr(turns, 'end_turn', boom)
    res = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 500
    assert res.get_json() == {'success': False, 'error': 'Internal server error'}


def test_end_turn_uses_applied_health_bonus_after_edit(client, signed, make_player):
    from arkana.models import ArkanaData
    from arkana.services.effects import catalog
    from arkana.services.effects.store import sync_stored_effects

    make_player(health=15, max_hp=15, active_effects=[active('buff_health_5', 2)])
    edited = dict(catalog.get_effect_definition('buff_health_5'), modifier=2)
    db.session.add(ArkanaData(id='buff_health_5', data_type='effect', json_data=json.dumps(edited)))
    db.session.commit()
    sync_stored_effects()

    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['max_hp'] == 12
    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['max_hp'] == 10
    assert _reload().arkana_stats.max_hp == 10


def test_live_stats_tolerates_garbled_turns_left(client, signed, make_player):
    make_player(active_effects=[active('buff_physical_1', 'abc')])
    res = client.post('/api/arkana/combat/live-stats', json=signed(player_uuid=PLAYER_UUID))
    assert res.status_code == 200
    assert '0 turns left' in unquote(res.get_json()['data']['live_stats_string'])


def test_first_aid_target_without_health_record(client, signed, make_player):
    make_player(name='Healer')
    target = make_player(sl_uuid=OTHER_UUID, name='Ghost')
    target.stats = None
    db.session.commit()

    res = client.post('/api/arkana/combat/first-aid', json=signed(healer_uuid=PLAYER_UUID, target_uuid=OTHER_UUID))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Target has no health record'
    assert Event.query.filter_by(type='FIRST_AID').count() == 0


POWER_URL = '/api/arkana/combat/power-activate'
ATTACK_URL = '/api/arkana/combat/attack'


def test_power_activate_self_buff(client, signed, make_player):
    make_player(powers=['power_strength_surge'])
    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_strength_surge'))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['activation_success'] == 'true'
    assert data['target'] is None
    assert unquote(data['message']) == 'Test Character activates Strength Surge!'

    user = _reload()
    effects = _effects(user)
    assert [(e['effect_id'], e['turns_left'], e['caster_name']) for e in effects] == [
        ('buff_physical_3', SCENE_TURNS, 'Test Character')
    ]
    assert json.loads(user.arkana_stats.live_stats) == {'Physical': 3}


def test_power_activate_health_bonus_round_trip(client, signed, make_player):
    make_player(powers=['power_vital_bloom'])
    data = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_vital_bloom')).get_json()['data']
    assert data['caster']['max_hp'] == 15
    assert data['caster']['health_after'] == 15

    client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID))
    data = client.post('/api/arkana/combat/end-turn', json=signed(player_uuid=PLAYER_UUID)).get_json()['data']
    assert data['max_hp'] == 10
    assert data['current_hp'] == 10


def test_power_activate_check_success_applies_to_target(client, signed, make_player, monkeypatch):
    monkeypatch.setattr('random.randint', lambda low, high: 15)
    make_player(name='Caster', powers=['power_stun_gaze'])
    make_player(sl_uuid=OTHER_UUID, name='Mark')

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_stun_gaze',
                                             target_uuid=OTHER_UUID))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['activation_success'] == 'true'
    assert unquote(data['roll_info']) == 'Roll: 15+0=15 vs TN:10'
    assert [unquote(n) for n in data['target']['effects_applied']] == ['Stunned']

    target_effects = _effects(_reload(OTHER_UUID))
    assert [(e['effect_id'], e['caster_name']) for e in target_effects] == [('control_stun', 'Caster')]
    assert _effects(_reload()) == []


def test_power_activate_failed_check_still_uses_turn(client, signed, make_player, monkeypatch):
    monkeypatch.setattr('random.randint', lambda low, high: 1)
    make_player(name='Caster', powers=['power_stun_gaze'], active_effects=[active('buff_physical_1', 1)])
    make_player(sl_uuid=OTHER_UUID, name='Mark')

    data = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_stun_gaze',
                                              target_uuid=OTHER_UUID)).get_json()['data']
    assert data['activation_success'] == 'false'
    assert data['target'] is None
    assert _effects(_reload(OTHER_UUID)) == []
    # the caster's one-turn buff ticked away
    assert _effects(_reload()) == []


def test_power_activate_damage_and_heal_on_target(client, signed, make_player):
    make_player(name='Caster', powers=['power_spark', 'power_healing_touch'])
    make_player(sl_uuid=OTHER_UUID, name='Mark', health=6, passive_effects=['defense_reduction_passive_1'])

    data = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_spark',
                                              target_uuid=OTHER_UUID)).get_json()['data']
    assert data['target']['health_before'] == 6
    assert data['target']['health_after'] == 5

    data = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_healing_touch',
                                              target_uuid=OTHER_UUID)).get_json()['data']
    assert data['target']['health_after'] == 7
    assert _reload(OTHER_UUID).stats.health == 7


def test_power_activate_errors(client, signed, make_player):
    make_player(powers=['power_stun_gaze'])

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_spark'))
    assert res.status_code == 403
    assert res.get_json()['error'] == 'Caster does not own this power'

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_unknown'))
    assert res.status_code == 404

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_stun_gaze'))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'This power requires a target'

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_stun_gaze',
                                             target_uuid=MISSING_UUID))
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Target not found in Arkana universe'

    res = client.post(POWER_URL, json=signed(caster_uuid=PLAYER_UUID, power_id='power_stun_gaze',
                                             target_uuid='not-a-uuid'))
    assert res.status_code == 400


def test_attack_hit_deals_damage(client, signed, make_player, monkeypatch):
    monkeypatch.setattr('random.randint', lambda low, high: 10)
    make_player(name='Brawler', physical=3)
    make_player(sl_uuid=OTHER_UUID, name='Mark')

    res = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=OTHER_UUID,
                                              attack_type='physical'))
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['is_hit'] == 'true'
    assert data['damage'] == 1
    assert unquote(data['roll_info']) == 'Roll: 10+2=12 vs TN:10'
    assert data['target']['health_before'] == 10
    assert data['target']['health_after'] == 9
    assert _reload(OTHER_UUID).stats.health == 9


def test_attack_damage_absorbed_by_passive_reduction(client, signed, make_player, monkeypatch):
    monkeypatch.setattr('random.randint', lambda low, high: 20)
    make_player(name='Brawler')
    make_player(sl_uuid=OTHER_UUID, name='Tank', passive_effects=['defense_reduction_passive_1'])

    data = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=OTHER_UUID,
                                               attack_type='physical')).get_json()['data']
    assert data['is_hit'] == 'true'
    assert data['damage'] == 0
    assert data['damage_reduction'] == 1
    assert _reload(OTHER_UUID).stats.health == 10


def test_ranged_attack_miss_uses_dexterity(client, signed, make_player, monkeypatch):
    monkeypatch.setattr('random.randint', lambda low, high: 11)
    make_player(name='Archer', dexterity=4)
    make_player(sl_uuid=OTHER_UUID, name='Dodger', dexterity=5)

    data = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=OTHER_UUID,
                                               attack_type='ranged')).get_json()['data']
    assert data['is_hit'] == 'false'
    assert data['target_number'] == 16
    assert unquote(data['attack_breakdown']) == 'Dexterity[4](+4)'
    assert unquote(data['defense_breakdown']) == '10 + Dexterity[5](+6) = 16'
    assert _reload(OTHER_UUID).stats.health == 10


def test_attack_errors(client, signed, make_player):
    make_player(name='Brawler')
    make_player(sl_uuid=OTHER_UUID, name='Down', health=0)

    res = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=PLAYER_UUID,
                                              attack_type='physical'))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Cannot attack yourself'

    res = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=OTHER_UUID,
                                              attack_type='psychic'))
    assert res.status_code == 400

    res = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=OTHER_UUID,
                                              attack_type='physical'))
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Target is unconscious'

    res = client.post(ATTACK_URL, json=signed(attacker_uuid=PLAYER_UUID, target_uuid=MISSING_UUID,
                                              attack_type='physical'))
    assert res.status_code == 404
