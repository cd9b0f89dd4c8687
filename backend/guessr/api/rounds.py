from flask import Blueprint, jsonify, request, current_app
from guessr.services.rounds.registry import get_registry

rounds = Blueprint('rounds', __name__)
cards = Blueprint('cards', __name__)

MAX_CARD_BATCH = 50


def _round_or_404(round_id):
    engine = get_registry(current_app).get(round_id)
    if engine is None:
        return None, (jsonify({'error': 'Round not found'}), 404)
    return engine, None


def _state_payload(engine):
    payload = engine.snapshot()
    payload['durations'] = get_registry(current_app).durations(engine.state.mode)
    return payload


def _rejected(engine, message):
    return jsonify({'error': message, 'state': engine.snapshot()}), 409


def fetch_card_batch(app, count):
    """Run one refill through the source chain and return the cards."""
    supply = get_registry(app).new_supply(batch_size=count)
    try:
        supply.ensure(count, wait=True)
        return supply.peek(count)
    finally:
        supply.close()


@rounds.route('/create', methods=['POST'])
def create_round():
    data = request.get_json(silent=True) or {}
    engine = get_registry(current_app).create(data.get('mode'), client_id=data.get('client_id'))
    return jsonify(_state_payload(engine)), 201


@rounds.route('/<string:round_id>/state', methods=['GET'])
def get_round_state(round_id):
    engine, error = _round_or_404(round_id)
    if error:
        return error
    return jsonify(_state_payload(engine))


@rounds.route('/<string:round_id>/guess', methods=['POST'])
def submit_guess(round_id):
    engine, error = _round_or_404(round_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    guess = data.get('guess')
    if guess is not None and not isinstance(guess, str):
        return jsonify({'error': 'guess must be a string'}), 400
    if not engine.submit_guess(guess):
        return _rejected(engine, 'Not accepting guesses at this time')
    return jsonify(_state_payload(engine))


@rounds.route('/<string:round_id>/next', methods=['POST'])
def request_next(round_id):
    engine, error = _round_or_404(round_id)
    if error:
        return error
    if not engine.request_next():
        return _rejected(engine, 'Answer has not been revealed yet')
    return jsonify(_state_payload(engine))


@rounds.route('/<string:round_id>/image', methods=['POST'])
def image_signal(round_id):
    engine, error = _round_or_404(round_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    image_url = data.get('image_url')
    if status == 'ready':
        accepted = engine.image_ready(image_url)
    elif status == 'error':
        accepted = engine.image_error(image_url)
    else:
        return jsonify({'error': "status must be 'ready' or 'error'"}), 400
    if not accepted:
        return _rejected(engine, 'Image signal does not match the current question')
    return jsonify(_state_payload(engine))


@rounds.route('/<string:round_id>/leave', methods=['POST'])
def leave_round(round_id):
    if not get_registry(current_app).discard(round_id):
        return jsonify({'error': 'Round not found'}), 404
    return jsonify({'message': 'Round closed.'})


@cards.route('', methods=['GET'])
def get_cards():
    try:
        count = int(request.args.get('count', 24))
    except ValueError:
        return jsonify({'error': 'count must be an integer'}), 400
    count = max(1, min(count, MAX_CARD_BATCH))
    items = fetch_card_batch(current_app, count)
    response = jsonify({'items': [c.to_dict() for c in items]})
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    return response
