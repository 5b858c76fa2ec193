import json
import os
import sys
import pytest

# Ensure the backend root (containing the `arkana` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arkana import create_app, db, socketio
from arkana.services.effects import catalog, engine
from arkana.services.signature import create_signed_request

PLAYER_UUID = '550e8400-e29b-41d4-a716-446655440000'
OTHER_UUID = '660e8400-e29b-41d4-a716-446655440001'
MISSING_UUID = '770e8400-e29b-41d4-a716-446655440002'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    ARKANA_UNIVERSE_SECRET_KEY = 'arkana-test-secret'
    GOR_UNIVERSE_SECRET_KEY = 'gor-test-secret'
    SIGNATURE_WINDOW_SEC = 300
    FIRST_AID_COOLDOWN_SEC = 1800
    EFFECTS_DATA_PATH = None
    POWERS_DATA_PATH = None
    CATALOG_TTL_SEC = 300
    ALLOWED_ORIGINS = ['http://localhost:3000']


@pytest.fixture(autouse=True)
def effects_catalog():
    catalog.load_effects()
    catalog.load_powers()
    yield
    catalog.reset()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import arkana.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def signed(flask_app):
    """Build a freshly signed request body for the arkana universe."""
    def _signed(**fields):
        fields.setdefault('universe', 'arkana')
        return create_signed_request(fields, 'arkana')
    return _signed


@pytest.fixture()
def make_player(flask_app):
    from arkana.models import User, UserStats, ArkanaStats

    def _make_player(sl_uuid=PLAYER_UUID, name='Test Character', active_effects=None,
                     health=10, hit_points=10, max_hp=None, status=0, registered=True,
                     passive_effects=None, powers=None, live_stats=None, **stats):
        active_effects = active_effects or []
        if live_stats is None:
            live_stats = engine.recalculate_live_stats(
                {key: stats.get(key, 2) for key in engine.STAT_NAMES}, active_effects
            )
        user = User(sl_uuid=sl_uuid, username=name.lower().replace(' ', '.'), universe='arkana')
        user.stats = UserStats(health=health, status=status)
        user.arkana_stats = ArkanaStats(
            character_name=name,
            physical=stats.get('physical', 2),
            dexterity=stats.get('dexterity', 2),
            mental=stats.get('mental', 2),
            perception=stats.get('perception', 2),
            hit_points=hit_points,
            max_hp=max_hp,
            registration_completed=registered,
            active_effects=json.dumps(active_effects),
            live_stats=json.dumps(live_stats),
            passive_effects=json.dumps(passive_effects or []),
            powers=json.dumps(powers or []),
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_player


def active(effect_id, turns_left, name=None, duration=None, caster_name=None, **extra):
    """Stored active-effect record as the engine writes it."""
    effect_def = catalog.get_effect_definition(effect_id) or {}
    record = {
        'effect_id': effect_id,
        'name': name or effect_def.get('name', effect_id),
        'duration': duration or effect_def.get('duration', 'scene'),
        'turns_left': turns_left,
        'applied_at': '2025-10-01T12:00:00+00:00',
    }
    if caster_name is not None:
        record['caster_name'] = caster_name
    record.update(extra)
    return record


@pytest.fixture()
def admin_client(flask_app, client):
    from arkana.models import AdminUser
    admin_user = AdminUser(username='admin')
    admin_user.set_password('password')
    db.session.add(admin_user)
    db.session.commit()
    res = client.post('/login', json={'username': 'admin', 'password': 'password'})
    assert res.status_code == 200
    return client


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
