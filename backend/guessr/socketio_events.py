from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typing import Dict, Set
from guessr.services.rounds.registry import get_registry


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*_args):
    # Every round this socket watched loses a watcher; the registry
    # closes rounds nobody is watching after a grace period
    watched = _sid_to_rounds.pop(_get_sid(), set())
    registry = get_registry(current_app)
    for round_id in watched:
        registry.detach(round_id)


def handle_join_round(data):
    round_id = (data or {}).get('round_id')
    if not round_id:
        emit('error', {'message': 'round_id is required'})
        return
    engine = get_registry(current_app).get(round_id)
    if engine is None:
        emit('error', {'message': 'Round not found', 'round_id': round_id})
        return
    join_room(_room(round_id))
    watched = _sid_to_rounds.setdefault(_get_sid(), set())
    if round_id not in watched:
        watched.add(round_id)
        get_registry(current_app).attach(round_id)
    emit('joined', {'room': _room(round_id)})
    emit('state_update', engine.snapshot())


def handle_leave_round(data):
    round_id = (data or {}).get('round_id')
    if not round_id:
        emit('error', {'message': 'round_id is required'})
        return
    leave_room(_room(round_id))
    emit('left', {'room': _room(round_id)})
    # Explicit quit: close the round immediately
    _sid_to_rounds.get(_get_sid(), set()).discard(round_id)
    get_registry(current_app).discard(round_id)


def handle_guess_input(data):
    engine = _engine_for(data)
    if engine:
        engine.set_guess((data or {}).get('guess') or '')


def handle_submit_guess(data):
    engine = _engine_for(data)
    if engine and not engine.submit_guess((data or {}).get('guess')):
        emit('error', {'message': 'Not accepting guesses at this time', 'round_id': engine.round_id})


def handle_request_next(data):
    engine = _engine_for(data)
    if engine and not engine.request_next():
        emit('error', {'message': 'Answer has not been revealed yet', 'round_id': engine.round_id})


def handle_image_ready(data):
    engine = _engine_for(data)
    if engine:
        engine.image_ready((data or {}).get('image_url'))


def handle_image_error(data):
    engine = _engine_for(data)
    if engine:
        engine.image_error((data or {}).get('image_url'))


def handle_ping(data):
    emit('pong', data or {})

# ---- Socket context helpers ----

_sid_to_rounds: Dict[str, Set[str]] = {}

def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def _room(round_id: str) -> str:
    return f"round:{round_id}"

def _engine_for(data):
    round_id = (data or {}).get('round_id')
    engine = get_registry(current_app).get(round_id) if round_id else None
    if engine is None:
        emit('error', {'message': 'Round not found', 'round_id': round_id})
    return engine


_HANDLERS = (
    ('connect', handle_connect),
    ('disconnect', handle_disconnect),
    ('join_round', handle_join_round),
    ('leave_round', handle_leave_round),
    ('guess_input', handle_guess_input),
    ('submit_guess', handle_submit_guess),
    ('request_next', handle_request_next),
    ('image_ready', handle_image_ready),
    ('image_error', handle_image_error),
    ('ping', handle_ping),
)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from guessr import socketio

    for event, handler in _HANDLERS:
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        for event, handler in _HANDLERS:
            socketio.on_event(event, handler, namespace='/')
