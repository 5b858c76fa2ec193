from flask_socketio import join_room, leave_room, emit
from flask import request, current_app
from arkana import socketio
from arkana.services import turns
from arkana.services.effects import engine
from arkana.validation import is_uuid
from typing import Dict, Set


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect():
    rooms_joined = _sid_to_players.pop(_get_sid(), set())
    if rooms_joined:
        current_app.logger.debug(f"[socketio] disconnect sid={_get_sid()} players={sorted(rooms_joined)}")


def handle_join_player(data):
    player_uuid = (data or {}).get('player_uuid')
    if not player_uuid:
        emit('error', {'message': 'player_uuid is required'})
        return
    if not is_uuid(player_uuid):
        emit('error', {'message': 'player_uuid must be a valid GUID'})
        return
    room = turns.player_room(player_uuid)
    join_room(room)
    _sid_to_players.setdefault(_get_sid(), set()).add(player_uuid)
    emit('joined', {'room': room})

    # Send the current state so a fresh HUD does not wait for the next turn
    user = turns.find_player(player_uuid)
    if user and user.arkana_stats:
        emit('effects_update', {
            'player_uuid': player_uuid,
            'effects_remaining': len(engine.parse_active_effects(user.arkana_stats.active_effects)),
            'current_hp': user.stats.health if user.stats else None,
        })


def handle_leave_player(data):
    player_uuid = (data or {}).get('player_uuid')
    if not player_uuid:
        emit('error', {'message': 'player_uuid is required'})
        return
    room = turns.player_room(player_uuid)
    leave_room(room)
    _sid_to_players.get(_get_sid(), set()).discard(player_uuid)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})

# ---- Room bookkeeping ----

_sid_to_players: Dict[str, Set[str]] = {}

def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('join_player', handle_join_player, namespace='/ws')
    socketio.on_event('leave_player', handle_leave_player, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_player', handle_join_player, namespace='/')
        socketio.on_event('leave_player', handle_leave_player, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
