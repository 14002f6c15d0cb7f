#!/usr/bin/env python3

"""

UFO HUB X Key Server

Issues, verifies and extends timed keys bound to a Roblox uid + place

"""

import logging
from datetime import datetime

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from .audit import log_audit
from .codec import OpaqueKeyCodec, SignedKeyCodec
from .errors import KeyServerError, StorageFailure
from .registry import KeyRegistry, SignedKeyRegistry
from .schemas import ExtendRequest, IssueRequest, VerifyRequest
from .settings import Settings
from .stores import MemoryStore, open_store
from .sweeper import KeySweeper

logger = logging.getLogger(__name__)

KEY_NOTE = 'Keep this key private. It is tied to your uid/place.'
NO_CACHE = 'no-store, no-cache, must-revalidate, proxy-revalidate'


def build_registry(settings):
    """Build the registry described by ``settings``"""
    common = dict(
        allow_list=settings.allow_keys,
        default_ttl=settings.default_ttl,
        extend_step=settings.extend_step,
        max_extend=settings.max_extend,
        max_extends_per_day=settings.max_extends_per_day,
        max_ttl=settings.max_ttl,
    )
    if settings.key_mode == 'signed':
        codec = SignedKeyCodec(settings.key_secret, prefix=settings.key_prefix)
        return SignedKeyRegistry(codec, **common)

    registry = KeyRegistry(
        store=open_store(settings.store, settings.store_path),
        codec=OpaqueKeyCodec(prefix=settings.key_prefix, length=settings.key_length),
        expiry_policy=settings.expiry_policy,
        max_uses=settings.max_uses,
        sweep_retention=settings.sweep_retention,
        **common,
    )
    if settings.reusable_keys:
        registry.seed_reusable(settings.reusable_keys)
    return registry


def create_app(settings=None, registry=None):
    settings = settings or Settings.from_env()
    registry = registry if registry is not None else build_registry(settings)
    audit_store = getattr(registry, 'store', None) or MemoryStore()

    app = Flask(__name__)
    CORS(app, send_wildcard=True)
    app.config['KEY_SETTINGS'] = settings
    app.config['KEY_REGISTRY'] = registry

    def audit(key, action, details):
        log_audit(audit_store, key, action, details, request.remote_addr,
                  webhook_url=settings.audit_webhook_url)

    @app.after_request
    def no_cache(response):
        response.headers['Cache-Control'] = NO_CACHE
        return response

    @app.errorhandler(KeyServerError)
    def handle_key_error(e):
        if isinstance(e, StorageFailure):
            logger.exception('Storage failure on %s', request.path)
        return jsonify({'ok': False, 'reason': e.reason}), e.status

    @app.route('/', methods=['GET'])
    def index():
        """Liveness text for hosting platforms"""
        return Response('UFO HUB X Key Server: OK', mimetype='text/plain')

    @app.route('/getkey', methods=['GET'])
    def get_key():
        """Issue a key for uid+place, or hand back the live one"""
        req = IssueRequest.parse(request.args, request.headers, request.remote_addr, settings)
        record, reused = registry.issue(req.identity, req.ttl)

        audit(record.key, 'reused' if reused else 'issued',
              {'identity': str(req.identity), 'expires_at': record.expires_at})

        return jsonify({'ok': True, 'key': record.key,
                        'expires_at': record.expires_at, 'note': KEY_NOTE})

    @app.route('/verify', methods=['GET'])
    def verify_key():
        """Verify a key for uid+place; JSON with format=json, else VALID/INVALID"""
        req = VerifyRequest.parse(request.args, request.headers, request.remote_addr, settings)
        result = registry.verify(req.key, req.identity)

        if result.valid:
            audit(req.key, 'verify_success', {'identity': str(req.identity), 'reason': result.reason})
        else:
            audit(req.key or None, 'verify_failed', {'identity': str(req.identity), 'reason': result.reason})

        if req.wants_json:
            return jsonify({'ok': True, 'valid': result.valid,
                            'expires_at': result.expires_at, 'reason': result.reason})
        return Response('VALID' if result.valid else 'INVALID', mimetype='text/plain')

    @app.route('/extend', methods=['GET'])
    def extend_key():
        """Top up the expiry of a live key"""
        req = ExtendRequest.parse(request.args, request.headers, request.remote_addr, settings)
        try:
            result = registry.extend(req.key, req.identity, req.sec)
        except StorageFailure:
            raise
        except KeyServerError as e:
            audit(req.key, 'extend_failed', {'identity': str(req.identity), 'reason': e.reason})
            raise

        audit(result.key, 'extended', {'identity': str(req.identity), 'expires_at': result.expires_at})
        return jsonify({'ok': True, 'key': result.key, 'expires_at': result.expires_at})

    @app.route('/api/stats', methods=['GET'])
    def get_stats():
        """Get key statistics"""
        auth_key = request.headers.get('X-API-Key')
        if not settings.admin_token or auth_key != settings.admin_token:
            return jsonify({'success': False, 'message': 'Unauthorized'}), 401

        return jsonify({'success': True, 'stats': registry.stats()})

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        try:
            registry.stats()
            return jsonify({'status': 'healthy', 'timestamp': datetime.now().isoformat()})
        except KeyServerError as e:
            logger.error('Health check failed: %s', e)
            return jsonify({'status': 'unhealthy', 'reason': e.reason}), 500

    return app


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    )

    app = create_app(settings)
    registry = app.config['KEY_REGISTRY']

    sweeper = None
    if settings.sweep_interval > 0:
        sweeper = KeySweeper(registry, interval=settings.sweep_interval)
        sweeper.start()

    logger.info('UFO HUB X Key Server listening on %s:%s (mode=%s, store=%s)',
                settings.host, settings.port, settings.key_mode, settings.store)
    try:
        app.run(host=settings.host, port=settings.port, debug=settings.debug, use_reloader=False)
    finally:
        if sweeper is not None:
            sweeper.stop(timeout=5)
        close = getattr(getattr(registry, 'store', None), 'close', None)
        if close is not None:
            close()


if __name__ == '__main__':
    main()
