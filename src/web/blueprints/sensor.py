"""
Sensor Blueprint - Snapshots and live event feed

Read-only view of the relay: latest sample, history, connection status,
and a server-sent-events stream of the subscriber feed.
"""

import queue

from flask import Blueprint, Response, current_app, jsonify, request

from web.utils import STREAM_KEEPALIVE, current_payload, format_sse

sensor_bp = Blueprint('sensor', __name__)

STREAM_QUEUE_SIZE = 256


def _service():
    return current_app.extensions['sensor_relay']


@sensor_bp.route('/current')
def api_current():
    """Latest sample plus connection flag."""
    service = _service()
    return jsonify(current_payload(service.current(), service.manager.is_connected))


@sensor_bp.route('/history')
def api_history():
    """Retained samples, oldest first."""
    return jsonify([sample.to_dict() for sample in _service().history()])


@sensor_bp.route('/status')
def api_status():
    """Connection manager and discovery status."""
    return jsonify(_service().status())


@sensor_bp.route('/stream')
def api_stream():
    """Live event feed as text/event-stream.

    The first messages are the replayed status, latest sample and history.
    """
    service = _service()
    keepalive = current_app.config.get('STREAM_KEEPALIVE', STREAM_KEEPALIVE)
    events = queue.Queue(maxsize=STREAM_QUEUE_SIZE)

    # put_nowait raises queue.Full for a stalled client, which drops the subscription
    subscription = service.subscribe(events.put_nowait, name=f"sse-{request.remote_addr}")

    def generate():
        try:
            while subscription.active or not events.empty():
                try:
                    event = events.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            service.unsubscribe(subscription)

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
