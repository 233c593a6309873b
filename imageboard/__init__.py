import os
import atexit
import logging
from flask import Flask, request
from appdirs import user_cache_dir, user_data_dir

from .extensions import db
from .metrics import (
    ActivityCounters,
    Aggregator,
    ApplicationMetrics,
    PeerRegistry,
    ProcessMetrics,
)

logger = logging.getLogger(__name__)

APP_NAME = "ImageBoard"
APP_AUTHOR = "User"


def _engine_getter(app):
    # The peer server answers on its own thread, outside any request context.
    def get_engine():
        with app.app_context():
            return db.engine

    return get_engine


def create_app(config_overrides=None):
    """Creates and configures the Flask application.

    Args:
        config_overrides: Optional dictionary of config values to override.
                         Typically used for testing.

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration from config.py (environment-based)
    from config import get_config

    config_class = get_config()
    app.config.from_object(config_class)

    # Apply test-specific or instance-specific overrides
    if config_overrides:
        app.config.from_mapping(config_overrides)

    # Database configuration - set default path if not configured
    if app.config.get("SQLALCHEMY_DATABASE_URI") is None:
        data_dir = user_data_dir(APP_NAME, APP_AUTHOR)
        os.makedirs(data_dir, exist_ok=True)
        db_path = os.path.join(data_dir, "imageboard.db")
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{db_path}"

    db.init_app(app)

    # Metrics are owned by the app rather than a module-level singleton
    worker_id = app.config.get("WORKER_ID")
    socket_dir = app.config.get("METRICS_SOCKET_DIR") or os.path.join(
        user_cache_dir(APP_NAME, APP_AUTHOR), "metrics"
    )
    app.activity_counters = ActivityCounters()
    app.process_metrics = ProcessMetrics(
        worker_id=worker_id,
        counters=app.activity_counters,
        engine_getter=_engine_getter(app),
    )
    app.application_metrics = ApplicationMetrics()
    app.metrics_peers = PeerRegistry(
        socket_dir,
        worker_id=worker_id,
        prefix=app.config.get("METRICS_SOCKET_PREFIX", "process-metrics-"),
        timeout=app.config.get("METRICS_FETCH_TIMEOUT_SECONDS", 1.0),
    )
    app.metrics_aggregator = Aggregator(
        app.metrics_peers,
        app.process_metrics,
        fetch_timeout=app.config.get("METRICS_FETCH_TIMEOUT_SECONDS", 1.0),
        deadline=app.config.get("METRICS_SCRAPE_DEADLINE_SECONDS", 3.0),
    )

    if (
        app.config.get("METRICS_ENABLED", True)
        and app.config.get("METRICS_SERVE_PEERS", True)
        and worker_id is not None
    ):
        app.metrics_peers.serve(app.process_metrics)
        atexit.register(app.metrics_peers.shutdown)
    else:
        logger.debug("Not serving process metrics to peers")

    @app.after_request
    def count_request(response):
        app.activity_counters.increment(
            "http_requests_total", method=request.method, status=response.status_code
        )
        return response

    @app.teardown_request
    def count_exception(error):
        if error is not None:
            app.activity_counters.increment("http_exceptions_total")

    from .blueprints.metrics import metrics as metrics_blueprint

    app.register_blueprint(metrics_blueprint)

    with app.app_context():
        db.create_all()

    return app
