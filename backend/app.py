import logging
import time

from flask import Blueprint, Flask, Response, g, jsonify, request
from flask_cors import CORS

import diagnostics
from chat import ChatRequestError, start_chat
from config import CONFIG, ConfigError
from db import StorageError, get_client
from derivs import DerivsRequestError, check_rate_limit, get_derivs, parse_symbols
from http_client import UpstreamError, breaker_snapshots
from jobs import JOBS, job_metrics, run_job
from logging_config import REQUEST_ID_CTX, new_correlation_id
from metrics import emit_breaker_prometheus, emit_job_prometheus, emit_prometheus
from news_cache import get_cached_news

logger = logging.getLogger(__name__)

app = Flask(__name__)

startup_time = time.time()

cors_env = CONFIG['CORS_ALLOWED_ORIGINS']
cors_origins = '*' if cors_env == '*' else [o.strip() for o in cors_env.split(',') if o.strip()]
CORS(app, origins=cors_origins,
     allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type'],
     expose_headers=['X-Request-ID', 'Retry-After', 'X-RateLimit-Limit',
                     'X-RateLimit-Remaining', 'X-RateLimit-Reset'])

_ERROR_STATS = {'5xx': 0}


@app.before_request
def _before_req():
    g._start_time = time.time()
    cid = request.headers.get('X-Request-ID') or new_correlation_id()
    g._request_id = cid
    g._ctx_token = REQUEST_ID_CTX.set(cid)


@app.after_request
def _after_req(resp):
    if 500 <= resp.status_code < 600:
        _ERROR_STATS['5xx'] += 1
    rid = getattr(g, '_request_id', None)
    if rid:
        resp.headers['X-Request-ID'] = rid
    return resp


@app.teardown_request
def _teardown_req(exc):
    token = g.pop('_ctx_token', None)
    if token is not None:
        REQUEST_ID_CTX.reset(token)


@app.errorhandler(StorageError)
def _storage_error(e):
    logger.error(f'storage error: {e}', extra={'event': 'storage_error'})
    return jsonify({'error': str(e)}), 500


@app.errorhandler(ConfigError)
def _config_error(e):
    logger.error(f'config error: {e}', extra={'event': 'config_error'})
    return jsonify({'error': str(e)}), 500


# ---------------- Jobs -----------------
jobs_bp = Blueprint('jobs', __name__)


@jobs_bp.route('/api/jobs', methods=['GET'])
def list_jobs():
    return jsonify({'jobs': sorted(JOBS)})


@jobs_bp.route('/api/jobs/<name>', methods=['POST'])
def trigger_job(name):
    if name not in JOBS:
        return jsonify({'success': False, 'error': f'Unknown job: {name}'}), 404
    params = request.get_json(silent=True) or {}
    if not isinstance(params, dict):
        return jsonify({'success': False, 'error': 'Request body must be a JSON object'}), 400
    body, status = run_job(name, params, client=get_client())
    return jsonify(body), status


# ---------------- Public read surface -----------------
public_bp = Blueprint('public', __name__)


@public_bp.route('/api/news', methods=['GET'])
def news():
    return jsonify(get_cached_news(get_client()))


def _client_ip() -> str:
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.headers.get('x-real-ip') or request.remote_addr or 'unknown'


@public_bp.route('/api/derivs', methods=['GET'])
def derivs():
    try:
        symbols = parse_symbols(request.args.get('symbols'))
    except DerivsRequestError as e:
        return jsonify(e.body), 400
    client = get_client()
    limit = CONFIG['DERIVS_RATE_LIMIT']
    window = CONFIG['DERIVS_RATE_WINDOW']
    allowed, remaining = check_rate_limit(client, _client_ip(), limit, window)
    rate_headers = {
        'X-RateLimit-Limit': str(limit),
        'X-RateLimit-Remaining': str(remaining),
    }
    if not allowed:
        resp = jsonify({'error': 'Rate limit exceeded. Please try again later.', 'retryAfter': window})
        resp.headers.update({**rate_headers, 'Retry-After': str(window),
                             'X-RateLimit-Reset': str(int(time.time()) + window)})
        return resp, 429
    resp = jsonify(get_derivs(client, symbols))
    resp.headers.update(rate_headers)
    return resp


@public_bp.route('/api/chat', methods=['POST'])
def chat():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    try:
        stream = start_chat(get_client(), body)
    except ChatRequestError as e:
        return jsonify({'error': str(e)}), 400
    except UpstreamError as e:
        logger.error(f'Anthropic API error: {e.status} {e}', extra={'event': 'chat_upstream_error'})
        if e.status == 429:
            return jsonify({'error': 'Rate limit exceeded. Please try again in a moment.'}), 429
        if e.status == 401:
            return jsonify({'error': 'API authentication failed.'}), 401
        return jsonify({'error': 'AI service temporarily unavailable'}), 500
    return Response(stream, mimetype='text/event-stream', headers={'Cache-Control': 'no-cache'})


# ---------------- Admin diagnostics -----------------
admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin_bp.route('/rate-limits', methods=['GET'])
def rate_limits():
    return jsonify(diagnostics.rate_limits(get_client()))


@admin_bp.route('/freshness', methods=['GET'])
def freshness():
    return jsonify(diagnostics.data_freshness(get_client()))


@admin_bp.route('/pipeline', methods=['GET'])
def pipeline():
    return jsonify(diagnostics.pipeline_health(get_client()))


app.register_blueprint(jobs_bp)
app.register_blueprint(public_bp)
app.register_blueprint(admin_bp)


# ---------------- Health + Metrics -----------------
@app.route('/api/health')
def api_health():
    """Liveness only; does not touch storage or providers."""
    return jsonify({
        'ok': True,
        'status': 'ok',
        'uptime_seconds': round(time.time() - startup_time, 2),
        'errors_5xx': _ERROR_STATS['5xx'],
    })


@app.route('/api/metrics')
def metrics_json():
    return jsonify({
        'ok': True,
        'uptime_seconds': round(time.time() - startup_time, 2),
        'errors_5xx': _ERROR_STATS['5xx'],
        'jobs': job_metrics(),
        'circuit_breakers': breaker_snapshots(),
    })


@app.route('/metrics.prom')
def metrics_prom():
    """Text exposition without prometheus_client. Keep names stable & snake_case."""
    lines = []
    emit_prometheus(lines, 'app_uptime_seconds', round(time.time() - startup_time, 2), 'gauge',
                    'Seconds since the API process started')
    emit_prometheus(lines, 'http_errors_5xx_total', _ERROR_STATS['5xx'], 'counter',
                    'Responses served with a 5xx status')
    emit_job_prometheus(lines, job_metrics())
    emit_breaker_prometheus(lines, breaker_snapshots())
    return Response('\n'.join(lines) + '\n', mimetype='text/plain; version=0.0.4')


@app.errorhandler(Exception)
def _unhandled(e):
    # HTTPExceptions (404, 405...) keep their own status
    code = getattr(e, 'code', None)
    if isinstance(code, int) and code < 500:
        return jsonify({'error': getattr(e, 'description', str(e))}), code
    logger.exception(f'unhandled error: {e}', extra={'event': 'unhandled_error'})
    return jsonify({'error': str(e)}), 500
