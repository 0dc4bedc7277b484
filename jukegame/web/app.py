"""Flask application exposing the round pipeline and maintenance tick"""

import logging
import threading
from typing import Any, Dict, Optional, Tuple

from flask import Flask, current_app, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from jukegame.errors import AuthenticationError, UpstreamUnavailable, ValidationError
from jukegame.game.stage1 import Stage1Request
from jukegame.game.stage2 import Stage2Request
from jukegame.maintenance.healing import log_healing_outcome
from jukegame.utils.auth import parse_bearer_token, require_bearer_token
from jukegame.utils.deadline import Deadline

logger = logging.getLogger(__name__)


def _services():
    return current_app.config["SERVICES"]


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _pydantic_errors(e: PydanticValidationError):
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in e.errors(include_url=False)
    ]


def _error_response(e: Exception, where: str) -> Tuple[Any, int]:
    """Map an exception to a JSON error response."""
    if isinstance(e, AuthenticationError):
        return jsonify({"error": str(e)}), 401
    if isinstance(e, PydanticValidationError):
        return jsonify({"error": "Invalid request body", "details": _pydantic_errors(e)}), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, UpstreamUnavailable):
        logger.error("%s: catalog unavailable: %s", where, e)
        return jsonify({"error": str(e)}), 404 if e.not_found else 500

    logger.error("Error in %s: %s", where, e, exc_info=True)
    return jsonify({"error": "Internal server error"}), 500


def create_app(services, config: Optional[dict] = None) -> Flask:
    """Create and configure Flask app.

    Args:
        services: GameServices instance shared by all requests
        config: Optional Flask configuration overrides

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    if config:
        app.config.update(config)
    app.config["SERVICES"] = services

    @app.route('/round/stage1-init', methods=['POST'])
    def stage1_init():
        """Resolve target profiles, seed artist and candidate artist ids."""
        svc = _services()
        budget = Deadline(svc.config.pipeline.request_budget_ms)
        try:
            token = require_bearer_token(request.headers.get('Authorization'))
            body = Stage1Request.model_validate(_json_body())
            result = svc.resolver.resolve(body, token)
        except Exception as e:
            return _error_response(e, "stage1-init")

        # Fire-and-forget: the response does not wait for healing
        if len(svc.healing_queue) and budget.has_at_least(svc.config.pipeline.healing_min_remaining_ms):
            future = svc.healing_dispatcher.dispatch(token, svc.config.pipeline.healing_batch_size)
            future.add_done_callback(log_healing_outcome)

        return jsonify(result)

    @app.route('/round/stage2-candidates', methods=['POST'])
    def stage2_candidates():
        """Assemble the candidate track pool for the given artists."""
        svc = _services()
        try:
            token = require_bearer_token(request.headers.get('Authorization'))
            body = Stage2Request.model_validate(_json_body())
            return jsonify(svc.assembler.assemble(body, token))
        except Exception as e:
            return _error_response(e, "stage2-candidates")

    @app.route('/maintenance/tick', methods=['GET', 'POST'])
    def maintenance_tick():
        """Run one maintenance tick. Always 200; failures are in the payload."""
        svc = _services()
        token = _json_body().get("token") or parse_bearer_token(request.headers.get('Authorization'))
        try:
            return jsonify(svc.scheduler.tick(token=token))
        except Exception as e:
            logger.error("Error in maintenance tick: %s", e, exc_info=True)
            return jsonify({
                "processed": 0,
                "failed": 0,
                "remaining": 0,
                "requeued": 0,
                "durationMs": 0,
                "genreBackfill": 0,
                "genreBackfillDetail": {"updated": 0, "failed": 0},
                "healing": {"processed": 0, "succeeded": 0, "failed": 0},
                "errors": [str(e)],
            })

    @app.route('/api/health')
    def api_health():
        """Store reachability and catalog circuit state."""
        from jukegame.web.health import get_all_services
        checks = get_all_services(_services())
        overall = 'healthy' if all(c.get('healthy', False) for c in checks.values()) else 'degraded'
        return jsonify({'status': overall, 'services': checks})

    @app.route('/api/stats')
    def api_stats():
        """Queue depths, backfill counters and the last tick."""
        try:
            from jukegame.web.health import get_system_stats
            return jsonify(get_system_stats(_services()))
        except Exception as e:
            logger.error("Error in stats endpoint: %s", e)
            return jsonify({'error': str(e)}), 500

    return app


def start_web_server(services, host: str = "0.0.0.0", port: int = 5000, threaded: bool = True):
    """Start the web server.

    Args:
        services: GameServices instance
        host: Interface to bind
        port: Port to listen on
        threaded: If True, start in background thread; if False, run in current thread

    Returns:
        Thread object if threaded=True, None otherwise
    """
    app = create_app(services)
    logger.info("🌐 Starting jukegame API on %s:%d", host, port)

    if threaded:
        thread = threading.Thread(
            target=lambda: app.run(host=host, port=port, debug=False, use_reloader=False),
            daemon=True
        )
        thread.start()
        return thread

    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
    return None
