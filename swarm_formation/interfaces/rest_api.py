"""
REST API for the swarm formation coordinator

Provides HTTP endpoints for goal submission, pause/resume/cancel and status.
"""

import threading
from typing import Optional
import logging

try:
    from flask import Flask, request, jsonify
    from flask_cors import CORS
    FLASK_AVAILABLE = True
except ImportError:
    FLASK_AVAILABLE = False

from ..errors import (
    EndpointUnavailable,
    GenerationFailure,
    GoalRejected,
    RemoteAborted,
    RemoteRejected,
    ValidationError,
)
from ..swarm.coordinator import FormationCoordinator

logger = logging.getLogger(__name__)


def create_api_server(coordinator: FormationCoordinator,
                      port: int = 8080,
                      host: str = '0.0.0.0') -> Optional['APIServer']:
    """
    Create and start REST API server

    Args:
        coordinator: FormationCoordinator instance
        port: HTTP port
        host: Host address

    Returns:
        APIServer instance or None if Flask not available
    """
    if not FLASK_AVAILABLE:
        logger.warning("Flask not installed - REST API disabled")
        return None

    server = APIServer(coordinator, port, host)
    server.start()
    return server


class APIServer:
    """REST API Server"""

    def __init__(self, coordinator: FormationCoordinator,
                 port: int = 8080, host: str = '0.0.0.0'):
        self.coordinator = coordinator
        self.port = port
        self.host = host

        self.app = Flask(__name__)
        CORS(self.app)

        self._thread: Optional[threading.Thread] = None
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes"""

        # ==================== Status ====================

        @self.app.route('/api/status', methods=['GET'])
        def get_status():
            """Get coordinator status, agents and last feedback/result"""
            return jsonify(self.coordinator.get_status())

        @self.app.route('/api/state', methods=['GET'])
        def get_state():
            """Get coordinator state machine status"""
            return jsonify(self.coordinator.state_machine.get_status())

        # ==================== Goal ====================

        @self.app.route('/api/goal', methods=['POST'])
        def submit_goal():
            """
            Submit a formation goal

            Request body: {frame_id, path: [{id, pose}], yaw_swarm: {angle}, max_speed}
            Returns: normalised goal
            """
            data = request.get_json(silent=True)
            if not data:
                return jsonify({'error': 'No data provided'}), 400

            try:
                goal = self.coordinator.submit_goal(data)
            except (ValidationError, GenerationFailure) as e:
                return jsonify({'error': str(e), 'accepted': False}), 400
            except GoalRejected as e:
                return jsonify({'error': str(e), 'accepted': False}), 409
            except (EndpointUnavailable, RemoteRejected, RemoteAborted) as e:
                return jsonify({'error': str(e), 'accepted': False}), 503

            return jsonify({'accepted': True, 'goal': goal.to_dict()}), 201

        @self.app.route('/api/pause', methods=['POST'])
        def pause():
            """Pause coordinator polling"""
            if self.coordinator.pause():
                return jsonify({'success': True})
            return jsonify({'error': 'No tracking goal to pause'}), 409

        @self.app.route('/api/resume', methods=['POST'])
        def resume():
            """Resume coordinator polling"""
            if self.coordinator.resume():
                return jsonify({'success': True})
            return jsonify({'error': 'Coordinator not paused'}), 409

        @self.app.route('/api/cancel', methods=['POST'])
        def cancel():
            """Cancel the active goal"""
            data = request.get_json(silent=True) or {}
            reason = data.get('reason', 'canceled by operator')
            if self.coordinator.cancel(reason):
                return jsonify({'success': True})
            return jsonify({'error': 'No active goal'}), 409

        # ==================== Configuration ====================

        @self.app.route('/api/config', methods=['GET'])
        def get_config():
            """Get system configuration"""
            return jsonify(self.coordinator.config.to_dict())

    def start(self):
        """Start API server in background thread"""
        self._thread = threading.Thread(
            target=lambda: self.app.run(
                host=self.host,
                port=self.port,
                debug=False,
                use_reloader=False
            ),
            daemon=True
        )
        self._thread.start()
        logger.info(f"REST API started on http://{self.host}:{self.port}")
