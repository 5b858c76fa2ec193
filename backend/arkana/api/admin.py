import json

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from arkana import db
from arkana.models import ArkanaData
from arkana.services.effects import catalog
from arkana.services.effects.store import EFFECT_DATA_TYPE, sync_stored_effects
from arkana.validation import validate_effect_definition


admin = Blueprint('admin', __name__)


def _effect_row(effect_id):
    return ArkanaData.query.filter_by(id=effect_id, data_type=EFFECT_DATA_TYPE).first()


def _save_failed(tag, exc):
    db.session.rollback()
    current_app.logger.exception(f"[admin] {tag} failed: {exc}")
    return jsonify({'success': False, 'error': 'Internal server error'}), 500


@admin.route('/effects', methods=['GET'])
@login_required
def list_effects():
    """Bundled definitions merged with stored overrides, stored rows flagged."""
    stored = {
        row.id: row for row in
        ArkanaData.query.filter_by(data_type=EFFECT_DATA_TYPE).order_by(ArkanaData.order_number, ArkanaData.id).all()
    }
    effects = []
    for effect_id, definition in sorted(catalog.all_effects().items()):
        entry = dict(definition)
        entry['_stored'] = effect_id in stored
        if effect_id in stored:
            entry['_order_number'] = stored[effect_id].order_number
        effects.append(entry)
    return jsonify({'success': True, 'data': {'effects': effects, 'total': len(effects)}})


@admin.route('/effects/<string:effect_id>', methods=['GET'])
@login_required
def get_effect(effect_id):
    row = _effect_row(effect_id)
    if row:
        return jsonify({'success': True, 'data': row.to_dict()})
    definition = catalog.get_effect_definition(effect_id)
    if not definition:
        return jsonify({'success': False, 'error': 'Effect not found'}), 404
    return jsonify({'success': True, 'data': definition})


@admin.route('/effects', methods=['POST'])
@login_required
def create_effect():
    definition, error = validate_effect_definition(request.get_json(silent=True))
    if error:
        return jsonify({'success': False, 'error': error}), 400
    if db.session.get(ArkanaData, definition['id']) is not None:
        return jsonify({'success': False, 'error': f"Effect {definition['id']} already exists"}), 409

    try:
        order_number = (request.get_json(silent=True) or {}).get('_order_number')
        row = ArkanaData(
            id=definition['id'],
            data_type=EFFECT_DATA_TYPE,
            json_data=json.dumps(definition),
            order_number=order_number if isinstance(order_number, int) else None,
        )
        db.session.add(row)
        db.session.commit()
        sync_stored_effects()
    except Exception as exc:
        return _save_failed('create effect', exc)

    current_app.logger.info(f"[admin] {current_user.username} created effect {row.id}")
    return jsonify({'success': True, 'data': row.to_dict()}), 201


@admin.route('/effects/<string:effect_id>', methods=['PUT'])
@login_required
def update_effect(effect_id):
    """Store an override; editing a bundled effect creates its first row."""
    payload = request.get_json(silent=True)
    definition, error = validate_effect_definition(payload, effect_id=effect_id)
    if error:
        return jsonify({'success': False, 'error': error}), 400

    row = _effect_row(effect_id)
    if row is None and catalog.get_effect_definition(effect_id) is None:
        return jsonify({'success': False, 'error': 'Effect not found'}), 404

    try:
        if row is None:
            row = ArkanaData(id=effect_id, data_type=EFFECT_DATA_TYPE)
            db.session.add(row)
        row.json_data = json.dumps(definition)
        order_number = payload.get('_order_number')
        if isinstance(order_number, int):
            row.order_number = order_number
        db.session.commit()
        sync_stored_effects()
    except Exception as exc:
        return _save_failed('update effect', exc)

    current_app.logger.info(f"[admin] {current_user.username} updated effect {effect_id}")
    return jsonify({'success': True, 'data': row.to_dict()})


@admin.route('/effects/<string:effect_id>', methods=['DELETE'])
@login_required
def delete_effect(effect_id):
    row = _effect_row(effect_id)
    if row is None:
        return jsonify({'success': False, 'error': 'Stored effect not found'}), 404
    try:
        db.session.delete(row)
        db.session.commit()
        catalog.unregister_effect(effect_id)
    except Exception as exc:
        return _save_failed('delete effect', exc)

    current_app.logger.info(f"[admin] {current_user.username} deleted effect {effect_id}")
    return jsonify({'success': True, 'data': {'id': effect_id}})
