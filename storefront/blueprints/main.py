"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from storefront.database import get_session

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.
    
    Returns:
        200: Healthy (DB connected)
        500: Unhealthy (DB error)
    """
    try:
        session = get_session()
        row = session.execute(text("SELECT 1 as health_check")).fetchone()
        
        if row and row[0] == 1:
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'message': 'Database connection successful'
            }), 200
        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'message': 'Unexpected query result'
        }), 500
    
    except Exception as e:
        get_session().rollback()
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
            'message': 'Failed to connect to database'
        }), 500


@main_bp.route('/health/cache')
def health_cache():
    """
    Cache health check endpoint.
    
    Never returns 500: the cache is optional, so a missing Redis only
    reports "degraded" while the app keeps serving from the database.
    """
    from storefront.services.cache_service import get_cache
    
    try:
        cache = get_cache()
    except RuntimeError:
        cache = None
    
    if cache is None or not cache.is_available():
        return jsonify({
            'status': 'degraded',
            'cache': 'disconnected',
            'message': 'Cache unavailable, serving without cache'
        }), 200
    
    cache.set('system', 'health_check', {'test': 'ok'}, ttl=10)
    result = cache.get('system', 'health_check')
    if result and result.get('test') == 'ok':
        return jsonify({
            'status': 'ok',
            'cache': 'connected',
            'message': 'Cache is working correctly'
        }), 200
    
    return jsonify({
        'status': 'degraded',
        'cache': 'error',
        'message': 'Cache read/write test failed'
    }), 200
