"""Flask API: refresh triggers, the cached product read API and snapshot reads"""
import hmac
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, List, Optional

import psycopg2
from flask import Flask, current_app, jsonify, request
from flask_cors import CORS

from src.collectors.pipeline import RefreshPipeline
from src.collectors.products import ALL_PRODUCTS_KEY, network_snapshot_key
from src.collectors.tokens import TOKENS_KEY
from src.errors import RefreshInProgress

logger = logging.getLogger(__name__)


def _secret_matches(provided: Optional[str], expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)


def group_by_network(products: List[Dict]) -> Dict:
    """Cached product rows as {timestamp, networks}, keeping the rate order of ``products``"""
    networks: Dict[str, List[Dict]] = {}
    for product in products:
        networks.setdefault(product.get('network') or '', []).append(product)
    return {'timestamp': datetime.now(timezone.utc).isoformat(), 'networks': networks}


def filter_products(data: Optional[Dict], network: Optional[str] = None,
                    token: Optional[str] = None) -> Dict:
    """
    Filter products grouped by network by network and token text.

    Networks left without products are removed from the result.
    """
    if not data or not data.get('networks'):
        return {'timestamp': (data or {}).get('timestamp'), 'networks': {}}

    networks = dict(data['networks'])
    if network:
        normalized = network.upper()
        networks = {normalized: networks.get(normalized, [])}

    if token:
        needle = token.lower()

        def matches(product):
            underlying = product.get('underlyingToken') or [{}]
            first = underlying[0] if isinstance(underlying[0], dict) else {}
            haystack = (
                first.get('tokenSymbol') or product.get('tokenSymbol') or '',
                product.get('name') or '',
                product.get('investmentName') or '',
            )
            return any(needle in value.lower() for value in haystack)

        networks = {net: [p for p in products if matches(p)] for net, products in networks.items()}

    return {
        'timestamp': data.get('timestamp'),
        'networks': {net: products for net, products in networks.items() if products},
    }


def filter_tokens(data: Optional[Dict], network: Optional[str] = None) -> Dict:
    """Filter the token list snapshot to deployments on one network"""
    if not data or not data.get('tokens'):
        return {'timestamp': (data or {}).get('timestamp'), 'tokens': []}
    if not network:
        return {'timestamp': data.get('timestamp'), 'tokens': data['tokens']}

    normalized = network.upper()
    tokens = []
    for token in data['tokens']:
        infos = [
            info for info in token.get('tokenInfos') or []
            if (info.get('network') or '').upper() == normalized
        ]
        if infos:
            tokens.append({'symbol': token.get('symbol'), 'tokenInfos': infos})
    return {'timestamp': data.get('timestamp'), 'tokens': tokens}


def _run_refresh(resource: str, refresh):
    auth = request.headers.get('Authorization', '')
    token = auth[len('Bearer '):] if auth.startswith('Bearer ') else None
    if not _secret_matches(token, current_app.config['CRON_SECRET']):
        return jsonify({'error': 'Unauthorized'}), 401

    try:
        logger.info("Starting %s update...", resource)
        result = refresh()
        logger.info("%s update completed: %s", resource, result)
        return jsonify({'success': True, 'data': result})
    except RefreshInProgress as e:
        logger.warning("Refresh rejected: %s", e)
        return jsonify({'success': False, 'error': str(e)}), 409
    except Exception as e:
        details = traceback.format_exc()
        logger.error("Error in /api/cron/%s: %s", resource, e, exc_info=True)
        return jsonify({
            'success': False,
            'error': str(e) or e.__class__.__name__,
            'details': details,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), 500


def create_app(pipeline: Optional[RefreshPipeline] = None) -> Flask:
    """Build the Flask application around one RefreshPipeline"""
    app = Flask(__name__)
    CORS(app)

    pipeline = pipeline or RefreshPipeline()
    app.extensions['refresh_pipeline'] = pipeline
    credentials = pipeline.settings.credentials
    app.config['CRON_SECRET'] = credentials.cron_secret
    app.config['IDEAS_API_KEY'] = credentials.ideas_api_key

    # ============================================
    # Refresh triggers
    # ============================================

    @app.route('/api/cron/products')
    def cron_products():
        return _run_refresh('products', pipeline.refresh_products)

    @app.route('/api/cron/protocols')
    def cron_protocols():
        return _run_refresh('protocols', pipeline.refresh_protocols)

    @app.route('/api/cron/tokens')
    def cron_tokens():
        return _run_refresh('tokens', pipeline.refresh_tokens)

    # ============================================
    # Read API
    # ============================================

    @app.route('/api/ideasapi/<key>')
    def ideas(key):
        """Cached products across networks, highest rate first

        Query params:
            network: Restrict to one network (case-insensitive)
            token: Substring match on token symbol or investment name
        """
        if not _secret_matches(key, current_app.config['IDEAS_API_KEY']):
            return jsonify({'error': 'Invalid API key'}), 401
        try:
            data = group_by_network(pipeline.queries.find_products())
        except psycopg2.Error as e:
            logger.error("Error fetching products: %s", e)
            return jsonify({'error': 'Internal server error'}), 500
        return jsonify(filter_products(
            data,
            network=request.args.get('network') or None,
            token=request.args.get('token') or None,
        ))

    @app.route('/api/ideasapi/tokens/<key>')
    def ideas_tokens(key):
        if not _secret_matches(key, current_app.config['IDEAS_API_KEY']):
            return jsonify({'error': 'Invalid API key'}), 401
        data = pipeline.store.load(TOKENS_KEY)
        return jsonify(filter_tokens(data, network=request.args.get('network') or None))

    @app.route('/api/products')
    def products():
        network = request.args.get('network', default=None, type=str)
        key = network_snapshot_key(network.upper()) if network else ALL_PRODUCTS_KEY
        try:
            data = pipeline.store.load(key)
        except ValueError:
            return jsonify({'error': 'Invalid network'}), 400
        if data is None:
            return jsonify({'error': 'No products snapshot yet'}), 404
        return jsonify(data)

    return app


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    create_app().run(host='0.0.0.0', port=5000)
