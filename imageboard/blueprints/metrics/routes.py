import logging
import math

from flask import current_app, request

from . import metrics
from ...metrics import StoreQueryFailure, render_text
from ...utils.responses import error_response, success_response, text_response

logger = logging.getLogger(__name__)


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def _json_value(value):
    """Spell non-finite floats the way the text exposition does; JSON has no literal for them."""
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "+Inf" if value > 0 else "-Inf"
    return value


@metrics.route("/metrics")
def process_metrics():
    """Application-wide store metrics combined with this worker's process snapshot."""
    if not current_app.config.get("METRICS_ENABLED", True):
        return text_response("# Metrics disabled\n", 404)

    application = current_app.application_metrics.collect()
    combined = application.merge(current_app.process_metrics.snapshot())
    return text_response(render_text(combined))


@metrics.route("/metrics/instance")
def instance_metrics():
    """Process metrics from every worker of this instance, combined."""
    if not current_app.config.get("METRICS_ENABLED", True):
        return text_response("# Metrics disabled\n", 404)

    return text_response(render_text(current_app.metrics_aggregator.collect_instance_wide()))


@metrics.route("/api/metrics/summary")
def metrics_summary():
    """Return the instance-wide metric set as JSON."""
    if not current_app.config.get("METRICS_ENABLED", True):
        return error_response("Metrics disabled", 404)

    payload = current_app.metrics_aggregator.collect_instance_wide().to_dict()
    for entry in payload["metrics"]:
        for point in entry["series"]:
            point["value"] = _json_value(point["value"])
    return success_response(data=payload)


@metrics.errorhandler(StoreQueryFailure)
def store_query_failure(error):
    logger.error(f"Metrics scrape failed: {error}")
    if _wants_json():
        return error_response(str(error), 503)
    return text_response(f"# {error}\n", 503)
