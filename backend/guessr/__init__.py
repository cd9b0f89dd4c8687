from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Round registry must exist before any blueprint or socket handler runs
    from guessr.services.rounds.registry import RoundRegistry
    RoundRegistry(flask_app)

    from guessr.api.rounds import rounds, cards
    flask_app.register_blueprint(rounds, url_prefix='/api/rounds')
    flask_app.register_blueprint(cards, url_prefix='/api/cards')

    @flask_app.route('/')
    def index():
        return jsonify({'message': 'Welcome to the Animal Guessr round server!'})

    from guessr.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('sample-cards')
    @click.option('--count', default=10, show_default=True, help='Number of cards to fetch.')
    def sample_cards_command(count):
        """Fetches one batch through the card source chain and prints it."""
        from guessr.api.rounds import fetch_card_batch
        with flask_app.app_context():
            for card in fetch_card_batch(flask_app, count):
                click.echo(f"{card.common_name} ({card.scientific_name}) [{card.license}] {card.image_url}")

    flask_app.cli.add_command(sample_cards_command)

    return flask_app
