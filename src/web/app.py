"""
Sensor Relay - HTTP front end

Thin Flask app over a RelayService. Serves JSON snapshots under /api and
the live event stream at /api/stream.
"""

from flask import Flask, jsonify

from __version__ import __version__
from web.blueprints import register_blueprints


def add_security_headers(response):
    """Add security and CORS headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    # Dashboards are served from elsewhere (desktop shell, static pages)
    response.headers['Access-Control-Allow-Origin'] = '*'
    return response


def create_app(service, **config) -> Flask:
    """
    Build the Flask app for a relay service.

    Args:
        service: RelayService to expose (read-only)
        **config: Extra Flask config, e.g. STREAM_KEEPALIVE=5

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    app.config.update(config)
    app.extensions['sensor_relay'] = service

    register_blueprints(app)
    app.after_request(add_security_headers)

    @app.route('/')
    def index():
        return jsonify({
            'name': 'sensor-relay',
            'version': __version__,
            'endpoints': ['/api/current', '/api/history', '/api/status', '/api/stream'],
        })

    return app
