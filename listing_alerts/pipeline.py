"""
Main Pipeline module for Listing Alerts.

Runs every active alert through the same flow:
1. Scrape → Query each enabled portal, one after another
2. Normalize → Re-check listings against the alert's criteria
3. Dedupe → Keep only listings never shown to this alert
4. Notify → Send the digest (or the "nothing new" message)
5. Record → Write delivery ledger entries, the audit row and the last-run timestamp

Failures are contained at the narrowest scope: a bad card is dropped,
a failing portal is skipped, and a failing alert is reported in the job
summary while the remaining alerts still run.
"""

import logging
import time
from typing import Callable, Optional

from .config import ScraperConfig, get_scraper_config
from .criteria_matching import filter_listings
from .dedup import Deduplicator
from .exceptions import ListingAlertsError, PersistenceError, ValidationError
from .fetch import FetchClient, TransportPreferences, random_delay
from .interfaces import AlertRepository, AuditLog, DeliveryLedger, ListingStore, Notifier
from .models import (
    Alert,
    AlertCriteria,
    AlertRunReport,
    JobSummary,
    NormalizedListing,
    RunState,
    ScraperOutcome,
    SourceName,
    TransactionType,
    utc_now,
)
from .sources import SourceAdapter, build_adapter_registry

logger = logging.getLogger(__name__)


# =============================================================================
# SCRAPING
# =============================================================================

def run_sources(
    criteria: AlertCriteria,
    adapters: dict[SourceName, SourceAdapter],
    enabled_sources: list[SourceName],
    client: FetchClient,
    preferences: Optional[TransportPreferences] = None,
    config: Optional[ScraperConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[ScraperOutcome]:
    """
    Scrape the enabled sources sequentially.

    A source that raises or is missing from the registry yields a failed
    outcome; the remaining sources still run.

    Args:
        criteria: Search parameters
        adapters: Registry of source -> adapter
        enabled_sources: Sources to query, in order
        client: Shared fetch client
        preferences: Per-job transport preferences
        config: Supplies the inter-source delay window
        sleep: Injected for tests

    Returns:
        One ScraperOutcome per enabled source
    """
    config = config or get_scraper_config()
    preferences = preferences if preferences is not None else TransportPreferences()
    outcomes = []

    for index, source in enumerate(enabled_sources):
        started = time.monotonic()
        adapter = adapters.get(source)

        if adapter is None:
            logger.error(f"[{source.value}] No adapter registered")
            outcomes.append(ScraperOutcome(source=source, success=False, error="No adapter registered"))
            continue

        try:
            logger.info(f"Scraping {source.value}...")
            listings = adapter.scrape(criteria, client, preferences.for_source(source))
            outcome = ScraperOutcome(
                source=source,
                success=True,
                listings=listings,
                duration=time.monotonic() - started,
            )
            logger.info(f"Got {len(listings)} listings from {source.value}")
        except Exception as e:
            logger.error(f"{source.value} scrape failed: {e}")
            outcome = ScraperOutcome(
                source=source,
                success=False,
                error=str(e),
                duration=time.monotonic() - started,
            )
        outcomes.append(outcome)

        if index < len(enabled_sources) - 1:
            random_delay(config.min_delay, config.max_delay, sleep=sleep)

    total = sum(len(o.listings) for o in outcomes)
    logger.info(f"Total scraped: {total} listings from {len(outcomes)} sources")
    return outcomes


def preview_scrape(
    criteria: AlertCriteria,
    sources: Optional[list[SourceName]] = None,
    adapters: Optional[dict[SourceName, SourceAdapter]] = None,
    client: Optional[FetchClient] = None,
    config: Optional[ScraperConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    Scrape without touching storage or email.

    Returns:
        {"sources": {SOURCE: outcome dict}, "listings": [...], "total": n}
    """
    config = config or get_scraper_config()
    criteria.validate()
    adapters = adapters if adapters is not None else build_adapter_registry(config, sleep=sleep)
    client = client or FetchClient(config, sleep=sleep)

    outcomes = run_sources(
        criteria,
        adapters,
        sources or config.enabled_sources,
        client,
        config=config,
        sleep=sleep,
    )
    listings = [listing for outcome in outcomes for listing in outcome.listings]
    return {
        "sources": {o.source.value: o.to_dict() for o in outcomes},
        "listings": [listing.to_summary() for listing in listings],
        "total": len(listings),
    }


# =============================================================================
# ALERT RUNNER
# =============================================================================

class AlertRunner:
    """
    Runs one alert through scrape → filter → dedupe → notify → record.

    All collaborators are injected, so the same runner serves the daily
    job, on-demand runs and tests.
    """

    def __init__(
        self,
        adapters: dict[SourceName, SourceAdapter],
        client: FetchClient,
        store: ListingStore,
        ledger: DeliveryLedger,
        alerts: AlertRepository,
        notifier: Notifier,
        audit_log: Optional[AuditLog] = None,
        config: Optional[ScraperConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapters = adapters
        self.client = client
        self.ledger = ledger
        self.alerts = alerts
        self.notifier = notifier
        self.audit_log = audit_log
        self.config = config or get_scraper_config()
        self.deduplicator = Deduplicator(store, ledger)
        self._sleep = sleep

    def run(
        self,
        alert: Alert,
        enabled_sources: Optional[list[SourceName]] = None,
        send_notifications: bool = True,
        preferences: Optional[TransportPreferences] = None,
    ) -> AlertRunReport:
        """
        Run a single alert.

        Validation and persistence failures end the run in FAILED with
        the error recorded on the report. Notification and audit failures are
        logged and the run still completes.
        """
        report = AlertRunReport(alert_id=alert.alert_id)
        enabled_sources = enabled_sources if enabled_sources is not None else self.config.enabled_sources

        try:
            alert.criteria.validate()

            report.state = RunState.SCRAPING
            report.outcomes = run_sources(
                alert.criteria,
                self.adapters,
                enabled_sources,
                self.client,
                preferences,
                self.config,
                self._sleep,
            )

            report.state = RunState.NORMALIZING
            scraped = [listing for outcome in report.outcomes for listing in outcome.listings]
            report.total_scraped = len(scraped)
            matched = filter_listings(scraped, alert.criteria)
            report.total_matched = len(matched)

            report.state = RunState.DEDUPING
            dedup = self.deduplicator.dedupe(alert.alert_id, matched)
            report.new_listings = dedup.new_listings

            report.state = RunState.NOTIFYING
            if send_notifications:
                report.notified = self._notify(alert, report)
            else:
                logger.info(f"Alert {alert.alert_id}: notifications disabled, skipping email")

            report.state = RunState.RECORDING
            for listing in report.new_listings:
                self.ledger.upsert(alert.alert_id, dedup.listing_ids[listing.canonical_url])
            self._log_audit(alert, dedup.listings, dedup.new_urls, report)

            self.alerts.mark_run(alert.alert_id, utc_now())
            report.state = RunState.COMPLETE

        except (ValidationError, PersistenceError) as e:
            logger.error(f"Alert {alert.alert_id} failed in {report.state.value}: {e}")
            report.error = str(e)
            report.state = RunState.FAILED

        logger.info(
            f"Alert {alert.alert_id}: {report.state.value} - {report.total_scraped} scraped, "
            f"{report.total_matched} matched, {len(report.new_listings)} new"
        )
        return report

    def _notify(self, alert: Alert, report: AlertRunReport) -> bool:
        city = alert.criteria.city
        try:
            if report.new_listings:
                return self.notifier.send_digest(
                    alert.email,
                    report.new_listings,
                    report.total_scraped,
                    report.sources_searched,
                    city,
                )
            if alert.send_no_results:
                return self.notifier.send_no_results(alert.email, report.sources_searched, city)
            logger.info(f"Alert {alert.alert_id}: no new listings, no-results email disabled")
            return False
        except Exception as e:
            logger.error(f"Alert {alert.alert_id}: notification failed: {e}")
            return False

    def _log_audit(
        self,
        alert: Alert,
        listings: list[NormalizedListing],
        new_urls: set[str],
        report: AlertRunReport,
    ) -> None:
        if self.audit_log is None:
            return
        emitted = new_urls if report.notified and report.new_listings else set()
        try:
            self.audit_log.log_run(alert.alert_id, alert.email, listings, new_urls, emitted)
        except Exception as e:
            logger.warning(f"Alert {alert.alert_id}: audit log failed: {e}")


# =============================================================================
# JOB
# =============================================================================

def run_job(
    runner: AlertRunner,
    alert_id: Optional[str] = None,
    send_notifications: bool = True,
    enabled_sources: Optional[list[SourceName]] = None,
    alerts: Optional[list[Alert]] = None,
) -> JobSummary:
    """
    Run every active alert (or just `alert_id`).

    Never raises: each alert runs inside its own failure boundary and
    failures come back as "Alert <id>: <message>" strings.

    Args:
        runner: Configured AlertRunner
        alert_id: Restrict the job to one alert
        send_notifications: False for a dry run (ledger is still written)
        enabled_sources: Sources to query; defaults to the runner's config
        alerts: Pre-fetched alerts (skips the repository lookup)

    Returns:
        JobSummary
    """
    started = time.monotonic()
    summary = JobSummary()
    preferences = TransportPreferences()

    if alerts is None:
        try:
            alerts = runner.alerts.list_active(alert_id)
        except ListingAlertsError as e:
            logger.error(f"Could not load alerts: {e}")
            summary.errors.append(f"Could not load alerts: {e}")
            summary.duration = time.monotonic() - started
            return summary

    logger.info(f"Processing {len(alerts)} alerts")

    for alert in alerts:
        try:
            report = runner.run(
                alert,
                enabled_sources=enabled_sources,
                send_notifications=send_notifications,
                preferences=preferences,
            )
        except Exception as e:
            logger.error(f"Alert {alert.alert_id} crashed: {e}")
            summary.errors.append(f"Alert {alert.alert_id}: {e}")
            continue

        summary.alerts_processed += 1
        if report.notified:
            summary.emails_sent += 1
        if report.error:
            summary.errors.append(f"Alert {alert.alert_id}: {report.error}")

    summary.duration = time.monotonic() - started
    logger.info(
        f"Job complete in {summary.duration:.1f}s: {summary.alerts_processed} alerts, "
        f"{summary.emails_sent} emails, {len(summary.errors)} errors"
    )
    if preferences.as_dict():
        logger.info(f"Transport preferences this job: {preferences.as_dict()}")
    return summary


def build_runner(config: Optional[ScraperConfig] = None) -> AlertRunner:
    """Wire the production collaborators (Supabase, email, live portals)."""
    from .db import get_db
    from .notifications import EmailNotifier

    config = config or get_scraper_config()
    db = get_db()
    return AlertRunner(
        adapters=build_adapter_registry(config),
        client=FetchClient(config),
        store=db,
        ledger=db,
        alerts=db,
        notifier=EmailNotifier(),
        audit_log=db,
        config=config,
    )


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """CLI entry point for running the pipeline."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description="Listing Alerts Pipeline")
    parser.add_argument(
        "--run",
        action="store_true",
        help="Run all active alerts once"
    )
    parser.add_argument(
        "--alert-id",
        help="Only run this alert"
    )
    parser.add_argument(
        "--no-email",
        action="store_true",
        help="Dry run: skip notifications (delivery ledger is still written)"
    )
    parser.add_argument(
        "--scrape",
        metavar="CITY",
        help="Preview a scrape for CITY without storing or emailing"
    )
    parser.add_argument(
        "--buy",
        action="store_true",
        help="With --scrape: search listings for sale instead of rent"
    )
    parser.add_argument(
        "--max-price",
        type=int,
        help="With --scrape: price ceiling"
    )
    parser.add_argument(
        "--stop",
        metavar="ALERT_ID",
        help="Stop an alert so it no longer runs"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.run:
        summary = run_job(
            build_runner(),
            alert_id=args.alert_id,
            send_notifications=not args.no_email,
        )
        print(f"Job complete: {summary.to_dict()}")
    elif args.scrape:
        criteria = AlertCriteria(
            transaction_type=TransactionType.BUY if args.buy else TransactionType.RENT,
            city=args.scrape.strip().title(),
            max_price=args.max_price,
        )
        result = preview_scrape(criteria)
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    elif args.stop:
        from .db import get_db
        from .models import AlertStatus

        get_db().set_alert_status(args.stop, AlertStatus.STOPPED)
        print(f"Stopped alert {args.stop}")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
