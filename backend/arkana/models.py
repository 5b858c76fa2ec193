from arkana import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json


def _utcnow():
    return datetime.now(timezone.utc)


def _load_json(raw, default):
    if raw is None or raw == '':
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class AdminUser(UserMixin, db.Model):
    __tablename__ = 'admin_user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class User(db.Model):
    """An in-world avatar registered with one universe."""
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    sl_uuid = db.Column(db.String(36), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False)
    universe = db.Column(db.String(50), nullable=False, default='arkana')
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    stats = db.relationship('UserStats', back_populates='user', uselist=False, cascade='all, delete-orphan')
    arkana_stats = db.relationship('ArkanaStats', back_populates='user', uselist=False, cascade='all, delete-orphan')
    events = db.relationship('Event', back_populates='user', lazy='dynamic', cascade='all, delete-orphan')

    __table_args__ = (db.UniqueConstraint('sl_uuid', 'universe', name='uq_users_sl_uuid_universe'),)

    def to_dict(self):
        return {
            'id': self.id,
            'sl_uuid': self.sl_uuid,
            'username': self.username,
            'universe': self.universe,
        }


class UserStats(db.Model):
    __tablename__ = 'user_stats'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    health = db.Column(db.Integer, nullable=False, default=100)
    status = db.Column(db.Integer, nullable=False, default=0)  # 0 = IC/RP mode
    last_updated = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    user = db.relationship('User', back_populates='stats')

    def to_dict(self):
        return {
            'health': self.health,
            'status': self.status,
        }


class ArkanaStats(db.Model):
    __tablename__ = 'arkana_stats'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    character_name = db.Column(db.String(128), nullable=False)
    race = db.Column(db.String(64), nullable=True)
    archetype = db.Column(db.String(64), nullable=True)
    physical = db.Column(db.Integer, nullable=False, default=1)
    dexterity = db.Column(db.Integer, nullable=False, default=1)
    mental = db.Column(db.Integer, nullable=False, default=1)
    perception = db.Column(db.Integer, nullable=False, default=1)
    hit_points = db.Column(db.Integer, nullable=False, default=5)  # base max HP
    max_hp = db.Column(db.Integer, nullable=True)  # current max HP including Health bonuses
    registration_completed = db.Column(db.Boolean, nullable=False, default=False)
    # JSON-encoded columns
    active_effects = db.Column(db.Text, nullable=True, default='[]')
    live_stats = db.Column(db.Text, nullable=True, default='{}')
    # effect ids granted permanently by owned perks, cybernetics and weaves
    passive_effects = db.Column(db.Text, nullable=True, default='[]')
    # ids of powers the character can activate
    powers = db.Column(db.Text, nullable=True, default='[]')
    user = db.relationship('User', back_populates='arkana_stats')

    @property
    def effective_max_hp(self):
        return self.max_hp if self.max_hp is not None else self.hit_points

    @property
    def live_stats_dict(self):
        return _load_json(self.live_stats, {})

    @property
    def recorded_live_stats(self):
        """Live stats saved together with ``max_hp``; None if never written."""
        recorded = _load_json(self.live_stats, None)
        return recorded if isinstance(recorded, dict) else None

    def base_stats(self):
        """Stat block handed to the effects engine."""
        return {
            'physical': self.physical,
            'dexterity': self.dexterity,
            'mental': self.mental,
            'perception': self.perception,
            'hit_points': self.hit_points,
        }

    def passive_ids(self):
        return [i for i in _load_json(self.passive_effects, []) if isinstance(i, str)]

    def power_ids(self):
        return [i for i in _load_json(self.powers, []) if isinstance(i, str)]

    def apply_update(self, data):
        """Apply a dict built by ``engine.build_stats_update``."""
        if 'active_effects' in data:
            self.active_effects = json.dumps(data['active_effects'])
        if 'live_stats' in data:
            self.live_stats = json.dumps(data['live_stats'])
        if 'max_hp' in data:
            self.max_hp = data['max_hp']

    def to_dict(self):
        return {
            'character_name': self.character_name,
            'race': self.race,
            'archetype': self.archetype,
            'physical': self.physical,
            'dexterity': self.dexterity,
            'mental': self.mental,
            'perception': self.perception,
            'hit_points': self.hit_points,
            'max_hp': self.effective_max_hp,
            'registration_completed': self.registration_completed,
            'active_effects': _load_json(self.active_effects, []),
            'live_stats': self.live_stats_dict,
            'passive_effects': self.passive_ids(),
            'powers': self.power_ids(),
        }


class Event(db.Model):
    __tablename__ = 'events'
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(100), nullable=False, index=True)
    details = db.Column(db.Text, nullable=False, default='{}')
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    user = db.relationship('User', back_populates='events')

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'details': _load_json(self.details, {}),
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'user_id': self.user_id,
        }


class ArkanaData(db.Model):
    """Admin-editable game content (effects, powers, perks...)."""
    __tablename__ = 'arkana_data'
    id = db.Column(db.String(128), primary_key=True)
    data_type = db.Column(db.String(64), nullable=False, index=True)
    json_data = db.Column(db.Text, nullable=False)
    order_number = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def data(self):
        return _load_json(self.json_data, {})

    def to_dict(self):
        payload = dict(self.data)
        payload['id'] = self.id
        payload['_data_type'] = self.data_type
        payload['_order_number'] = self.order_number
        return payload
