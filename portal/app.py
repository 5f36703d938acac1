import logging

from flask import Flask, jsonify

from portal.config import PortalConfig
from portal.db import init_db
from portal.exceptions import ServiceException
from portal.logging_setup import configure_logging
from portal.routes.k8s import k8s_bp
from portal.routes.notification import notification_bp
from portal.routes.quota import quota_bp
from portal.routes.vm import vm_bp
from portal.services.registry import build_services

logger = logging.getLogger(__name__)


def create_app(config: PortalConfig = None, redis_client=None, grid=None, notification_queue=None) -> Flask:
    """
    Build the portal API.
    The Redis client, grid client and notification queue default to the ones
    described by the config.
    """
    configure_logging()
    config = config or PortalConfig.from_env()

    app = Flask(__name__)
    app.config['JWT_SECRET_KEY'] = config.jwt_secret_key
    init_db(app, config.database_path)

    registry = build_services(app, config, redis_client, grid, notification_queue)
    registry.streams.ensure_groups()

    # Register blueprints
    app.register_blueprint(vm_bp, url_prefix='/vms')
    app.register_blueprint(k8s_bp, url_prefix='/k8s')
    app.register_blueprint(notification_bp, url_prefix='/notifications')
    app.register_blueprint(quota_bp, url_prefix='/quota')

    # Global error handler for ServiceException
    @app.errorhandler(ServiceException)
    def handle_service_exception(error):
        if error.status_code >= 500:
            logger.error("%s: %s", error.error_code, error)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(500)
    def handle_internal_error(error):
        return jsonify({'message': 'Internal server error'}), 500

    return app
