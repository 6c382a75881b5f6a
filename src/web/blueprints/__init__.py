"""
Flask Blueprints for the Sensor Relay HTTP API
"""

from .sensor import sensor_bp

__all__ = [
    'sensor_bp',
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(sensor_bp, url_prefix='/api')
