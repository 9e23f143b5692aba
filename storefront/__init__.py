"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from storefront.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    
    # Sentry error tracking, production only
    sentry_dsn = app.config.get('SENTRY_DSN')
    if sentry_dsn and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )
    
    # Redis cache for catalog reads
    from storefront.services.cache_service import init_cache
    init_cache(app)
    
    # Prometheus request instrumentation
    from storefront.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)
    
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)
    
    init_db(app)
    
    from storefront.middleware import load_current_user
    
    @app.before_request
    def before_request_handler():
        """Load the authenticated user for each request."""
        load_current_user()
    
    # Error Handlers
    from storefront.exceptions import StorefrontError
    
    @app.errorhandler(StorefrontError)
    def handle_storefront_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__} [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"{type(error).__name__} [{error.status_code}] {request.path}: {error.message}")
        body = error.to_dict()
        body['path'] = request.path
        return jsonify(body), error.status_code
    
    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'status': error.code,
            'error': error.name,
            'message': error.description,
            'path': request.path,
        }), error.code
    
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({
            'status': 500,
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'path': request.path,
        }), 500
    
    # Register blueprints
    from storefront.blueprints.main import main_bp
    from storefront.blueprints.metrics import metrics_bp
    from storefront.blueprints.auth import auth_bp
    from storefront.blueprints.catalog import catalog_bp
    from storefront.blueprints.cart import cart_bp
    from storefront.blueprints.orders import orders_bp
    from storefront.blueprints.payments import payments_bp
    
    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    
    from storefront.cli_commands import init_cli_commands
    init_cli_commands(app)
    
    return app
