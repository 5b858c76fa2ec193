from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from arkana import db
from arkana.models import AdminUser

main = Blueprint('main', __name__)

@main.route('/login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    password = data.get('password')
    if not username or not password:
        return jsonify({"success": False, "message": "Username and password are required"}), 400
    user = AdminUser.query.filter_by(username=username).first()
    if user and user.check_password(password):
        login_user(user)
        current_app.logger.info(f"[admin] login username={username}")
        return jsonify({"success": True, "user": user.to_dict()})
    current_app.logger.warning(f"[admin] failed login username={username}")
    return jsonify({"success": False, "message": "Invalid credentials"}), 401

@main.route('/check_login', methods=['GET', 'OPTIONS'])
def check_login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200

    @login_required
    def protected_check():
        return jsonify({"success": True, "user": current_user.to_dict()})

    return protected_check()

@main.route('/logout', methods=['POST', 'OPTIONS'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})

@main.route('/health')
def health():
    try:
        db.session.execute(db.text('SELECT 1'))
        database = 'ok'
    except Exception as exc:
        current_app.logger.exception(f"[health] database check failed: {exc}")
        database = 'unavailable'
    status = 200 if database == 'ok' else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status
