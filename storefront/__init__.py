"""Flask application factory."""
import logging
import os
import traceback

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from storefront.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize CSRF protection
    csrf = CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'A sessão expirou. Recarregue a página.'}), 400

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache (shipping quotes)
    from storefront.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from storefront.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # External collaborators; tests swap these for fakes
    from storefront.services.mercadopago_service import MercadoPagoService
    from storefront.services.shipping_service import MelhorEnvioClient
    app.extensions['payment_gateway'] = MercadoPagoService.from_config(app.config)
    app.extensions['shipping_client'] = MelhorEnvioClient.from_config(app.config)

    # Load buyer/operator context before each request
    from storefront.middleware import load_user_context

    @app.before_request
    def before_request_handler():
        load_user_context()

    # Error Handlers
    from storefront.exceptions import StoreError

    @app.errorhandler(StoreError)
    def handle_store_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"StoreError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"StoreError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'status': 'error', 'message': error.name}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from storefront.blueprints.cart import cart_bp
    from storefront.blueprints.shipping import shipping_bp
    from storefront.blueprints.checkout import checkout_bp
    from storefront.blueprints.orders import orders_bp
    from storefront.blueprints.admin_orders import admin_orders_bp
    from storefront.blueprints.metrics import metrics_bp
    from storefront.blueprints.webhooks import webhooks_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(shipping_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(metrics_bp)

    # Webhooks must be exempt from CSRF
    csrf.exempt(webhooks_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from storefront.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
