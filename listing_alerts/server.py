"""
Job Trigger Server for Listing Alerts.

A small Flask server that:
1. Runs the alert job on demand (daily cron hits /jobs/daily)
2. Runs a preview scrape for ad-hoc criteria (/scrape)
3. Reports liveness (/health)

Both job endpoints require `Authorization: Bearer <CRON_SECRET>`.
"""

import hmac
import logging
from typing import Callable, Optional

from flask import Flask, current_app, jsonify, request

from .config import AppConfig, get_app_config
from .exceptions import ListingAlertsError, ValidationError
from .models import AlertCriteria, JobSummary, SourceName
from .pipeline import AlertRunner, build_runner, preview_scrape, run_job

logger = logging.getLogger(__name__)

FALSE_VALUES = {"0", "false", "no", "off"}

# camelCase request keys -> AlertCriteria fields
CRITERIA_FIELDS = {
    "transactionType": "transaction_type",
    "city": "city",
    "neighborhood": "neighborhood",
    "maxPrice": "max_price",
    "minSquareMeters": "min_square_meters",
    "maxSquareMeters": "max_square_meters",
    "minBedrooms": "min_bedrooms",
    "minParking": "min_parking",
    "propertyTypes": "property_types",
    "keywordsInclude": "keywords_include",
    "keywordsExclude": "keywords_exclude",
}


def create_app(
    app_config: Optional[AppConfig] = None,
    runner_factory: Callable[[], AlertRunner] = build_runner,
    preview: Callable[..., dict] = preview_scrape,
) -> Flask:
    """
    Build the Flask app.

    Args:
        app_config: Defaults to the environment configuration
        runner_factory: Builds the AlertRunner for each job request
        preview: Preview scrape function used by /scrape
    """
    app = Flask(__name__)
    app.config["APP_CONFIG"] = app_config
    app.config["RUNNER_FACTORY"] = runner_factory
    app.config["PREVIEW"] = preview

    app.add_url_rule("/jobs/daily", view_func=daily_job, methods=["GET", "POST"])
    app.add_url_rule("/scrape", view_func=scrape_preview, methods=["POST"])
    app.add_url_rule("/health", view_func=health_check)
    return app


def _authorized() -> bool:
    config = current_app.config["APP_CONFIG"] or get_app_config()
    if not config.cron_secret:
        logger.error("CRON_SECRET is not configured; rejecting job request")
        return False
    expected = f"Bearer {config.cron_secret}"
    return hmac.compare_digest(request.headers.get("Authorization", ""), expected)


def daily_job():
    """
    Run active alerts.

    Query params:
        alertId: Run only this alert (404 if it is not active)
        sendEmail: "false" for a dry run
    """
    if not _authorized():
        return jsonify({"error": "Unauthorized"}), 401

    alert_id = request.args.get("alertId") or None
    send_notifications = request.args.get("sendEmail", "true").lower() not in FALSE_VALUES

    try:
        runner = current_app.config["RUNNER_FACTORY"]()
    except Exception as e:
        logger.error(f"Could not start job: {e}")
        summary = JobSummary(errors=[f"Could not start job: {e}"])
        return jsonify(summary.to_dict()), 500

    alerts = None
    if alert_id:
        try:
            alerts = runner.alerts.list_active(alert_id)
        except ListingAlertsError as e:
            logger.error(f"Could not load alert {alert_id}: {e}")
            return jsonify({"error": str(e)}), 500
        if not alerts:
            return jsonify({"error": "Alert not found or not active"}), 404

    logger.info(f"Job triggered (alertId={alert_id}, sendEmail={send_notifications})")
    summary = run_job(
        runner,
        alert_id=alert_id,
        send_notifications=send_notifications,
        alerts=alerts,
    )
    return jsonify(summary.to_dict())


def scrape_preview():
    """Scrape ad-hoc criteria without storing or emailing anything."""
    if not _authorized():
        return jsonify({"error": "Unauthorized"}), 401

    body = request.get_json(silent=True) or {}
    data = {field: body[key] for key, field in CRITERIA_FIELDS.items() if key in body}

    try:
        sources = [SourceName(str(s).upper()) for s in body.get("sources") or []]
    except ValueError as e:
        return jsonify({"error": f"Unknown source: {e}"}), 400

    try:
        criteria = AlertCriteria.from_dict(data)
        result = current_app.config["PREVIEW"](criteria, sources=sources or None)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(result)


def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Run the Flask server."""
    app.run(host=host, port=port, debug=debug)


def main():
    """CLI entry point for the job trigger server."""
    import argparse

    parser = argparse.ArgumentParser(description="Listing Alerts Job Trigger Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5000, help="Port to bind to")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    logger.info(f"Starting job trigger server on {args.host}:{args.port}")
    run_server(args.host, args.port, args.debug)


if __name__ == "__main__":
    main()
