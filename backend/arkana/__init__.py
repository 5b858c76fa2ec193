from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('ALLOWED_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Bundled definitions; admin-edited effect rows are overlaid per request once stale
    from arkana.services.effects import catalog
    catalog.load_effects(flask_app.config.get('EFFECTS_DATA_PATH'))
    catalog.load_powers(flask_app.config.get('POWERS_DATA_PATH'))

    from arkana.main import main
    flask_app.register_blueprint(main)

    from arkana.api.combat import combat
    flask_app.register_blueprint(combat, url_prefix='/api/arkana/combat')

    from arkana.api.admin import admin
    flask_app.register_blueprint(admin, url_prefix='/api/arkana/admin')

    from arkana.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from arkana.services.effects.store import refresh_stored_effects

    @flask_app.before_request
    def refresh_effect_catalog():
        refresh_stored_effects(flask_app.config.get('CATALOG_TTL_SEC', 300))

    from arkana.models import AdminUser

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(AdminUser, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from arkana.seed import seed_demo_data
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            seed_demo_data()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
