"""
Flask application for the operator HTTP API.

Provides:
- GET /health: Service health check
- GET /status: Diagnostic string, pending confirmation and recent events
- POST /ack: Operator acknowledgment (resumes scanning)
"""

from flask import Flask, jsonify
from flask_cors import CORS

from .logging_config import get_logger
from .recognition.confirmation import confirmation_message
from .utils.timing import format_uptime

logger = get_logger(__name__)


def create_app(session) -> Flask:
    """
    Create and configure Flask application.

    Args:
        session: ScanningSession exposed to the operator

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)
    controller = session.controller

    @app.route('/health')
    def health():
        """Health check endpoint."""
        index = controller.index
        return jsonify({
            'status': 'error' if session.error else 'ok',
            'state': controller.state.value,
            'uptime': format_uptime(session.uptime.elapsed()),
            'gallery': {
                'identities': len(index),
                'vectors': index.vector_count,
            },
            'session': session.session_id,
            'service': session.config.service_name,
        })

    @app.route('/status')
    def status():
        """Current detection status for the operator display."""
        pending = controller.pending_confirmation
        confirmation = None
        if pending is not None:
            confirmation = {
                'displayName': pending,
                'message': confirmation_message(pending),
            }

        error = session.error or controller.gallery_error
        return jsonify({
            'state': controller.state.value,
            'running': session.running,
            'diagnostic': controller.diagnostic,
            'confirmation': confirmation,
            'recent': [_summarize(event) for event in controller.recent_events],
            'error': str(error) if error else None,
        })

    @app.route('/ack', methods=['POST'])
    def acknowledge():
        """Operator acknowledgment of the pending confirmation."""
        if not controller.acknowledge():
            return jsonify({'acknowledged': False, 'error': 'Nothing to acknowledge'}), 409
        return jsonify({'acknowledged': True, 'state': controller.state.value})

    return app


def _summarize(event) -> dict:
    """Event dict without the snapshot payload."""
    data = event.to_dict()
    data['hasSnapshot'] = data.pop('photoDataUrl') is not None
    return data
