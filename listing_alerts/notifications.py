"""
Email notifications for Listing Alerts.

Renders the daily digest (new listings for one alert) and the
"no new listings" message, and sends them via SMTP or SendGrid.
Senders report failure by returning False; nothing here raises into
the pipeline.
"""

import html
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from zoneinfo import ZoneInfo

from .config import AppConfig, EmailConfig, get_app_config, get_email_config
from .exceptions import NotificationError
from .models import SOURCE_DISPLAY_NAMES, NormalizedListing, SourceName
from .normalization import format_price

logger = logging.getLogger(__name__)


# =============================================================================
# EMAIL TEMPLATES
# =============================================================================

DIGEST_EMAIL_SUBJECT = "{prefix} {city} - {date}"
NO_RESULTS_EMAIL_SUBJECT = "No new listings in {city} - {date}"

EMAIL_STYLE = """
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; background: #f5f5f5; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 24px; background: white; border-radius: 8px; }}
        .header {{ text-align: center; border-bottom: 2px solid #3b82f6; padding-bottom: 16px; }}
        .header h1 {{ color: #1e40af; font-size: 24px; margin: 0 0 8px 0; }}
        .summary {{ background: #eff6ff; border-radius: 8px; padding: 16px; margin: 24px 0; text-align: center; }}
        .count {{ font-size: 32px; font-weight: bold; color: #2563eb; }}
        .listing-card {{ border: 1px solid #e5e7eb; border-radius: 8px; padding: 16px; margin: 16px 0; }}
        .listing-card img {{ max-width: 100%; border-radius: 4px; }}
        .listing-title a {{ color: #1e40af; font-weight: bold; text-decoration: none; }}
        .listing-price {{ font-size: 20px; font-weight: bold; color: #059669; }}
        .listing-detail {{ margin-right: 12px; color: #4b5563; font-size: 14px; }}
        .listing-source {{ color: #9ca3af; font-size: 12px; }}
        .footer {{ text-align: center; padding-top: 16px; color: #9ca3af; font-size: 11px; }}
"""

DIGEST_EMAIL_HTML = """
<!DOCTYPE html>
<html lang="es">
<head>
    <meta charset="UTF-8">
    <style>{style}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Daily Apartment Listings</h1>
            <div>{city} - {date}</div>
        </div>
        <div class="summary">
            <div class="count">{new_count}</div>
            <div>new listings found</div>
            <small>Searched {total_scraped} total from: {sources}</small>
        </div>
        {cards}
        <div class="footer">
            <p>You're receiving this because you set up an apartment alert.</p>
            <p>Manage your alert: <a href="{manage_url}">{manage_url}</a></p>
            <p>Links go directly to the original portal. Apartment Finder Alerts - Peru</p>
        </div>
    </div>
</body>
</html>
"""

LISTING_CARD_HTML = """
        <div class="listing-card">
            {image}
            <div class="listing-title"><a href="{url}" target="_blank">{title}</a></div>
            <div class="listing-price">{price}</div>
            <div>{details}</div>
            <div class="listing-source">via {source}</div>
        </div>
"""

NO_RESULTS_EMAIL_HTML = """
<!DOCTYPE html>
<html lang="es">
<head>
    <meta charset="UTF-8">
    <style>{style}</style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>No New Listings Today</h1></div>
        <p>We searched {sources} but didn't find any new apartments in {city} matching your criteria.</p>
        <p>{date}</p>
        <div class="footer">
            <p>Your search will continue tomorrow.</p>
            <p>Manage your alert: <a href="{manage_url}">{manage_url}</a></p>
        </div>
    </div>
</body>
</html>
"""

DIGEST_EMAIL_TEXT = """
DAILY APARTMENT LISTINGS - {city} - {date}

{new_count} new listings found (searched {total_scraped} total from: {sources})

{listings}
---
Manage your alert: {manage_url}
Apartment Finder Alerts - Peru
"""

NO_RESULTS_EMAIL_TEXT = """
NO NEW LISTINGS TODAY - {city} - {date}

We searched {sources} but didn't find any new apartments matching your criteria.
Your search will continue tomorrow.

---
Manage your alert: {manage_url}
"""


def sources_text(sources: list[SourceName]) -> str:
    """Friendly, comma-separated portal names ("no sources" when empty)."""
    if not sources:
        return "no sources"
    return ", ".join(SOURCE_DISPLAY_NAMES.get(s, s.value) for s in sources)


def listing_details(listing: NormalizedListing) -> list[str]:
    details = []
    if listing.square_meters:
        details.append(f"{listing.square_meters:g} m²")
    if listing.bedrooms:
        details.append(f"{listing.bedrooms} dorm.")
    if listing.bathrooms:
        details.append(f"{listing.bathrooms} baños")
    if listing.parking:
        details.append(f"{listing.parking} estac.")
    if listing.neighborhood:
        details.append(listing.neighborhood)
    return details


def render_listing_card(listing: NormalizedListing) -> str:
    image = ""
    if listing.image_url:
        image = f'<img src="{html.escape(listing.image_url)}" alt="">'
    details = "".join(
        f'<span class="listing-detail">{html.escape(d)}</span>' for d in listing_details(listing)
    )
    return LISTING_CARD_HTML.format(
        image=image,
        url=html.escape(listing.canonical_url),
        title=html.escape(listing.title),
        price=format_price(listing.price, listing.currency),
        details=details,
        source=SOURCE_DISPLAY_NAMES.get(listing.source, listing.source.value),
    )


def render_listing_text(listing: NormalizedListing) -> str:
    lines = [
        listing.title,
        f"  {format_price(listing.price, listing.currency)}",
    ]
    details = listing_details(listing)
    if details:
        lines.append("  " + " | ".join(details))
    lines.append(f"  {listing.canonical_url}")
    return "\n".join(lines)


# =============================================================================
# EMAIL NOTIFIER
# =============================================================================

class EmailNotifier:
    """
    Sends digest and no-results emails.

    Usage:
        notifier = EmailNotifier()
        notifier.send_digest("me@example.com", new_listings, 42, [SourceName.URBANIA])
    """

    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        app_config: Optional[AppConfig] = None,
    ):
        self.email_config = email_config or get_email_config()
        self.app_config = app_config or get_app_config()

    def _today(self) -> str:
        return datetime.now(ZoneInfo(self.app_config.timezone)).strftime("%A, %B %d, %Y")

    def _manage_url(self) -> str:
        return f"{self.app_config.app_base_url.rstrip('/')}/manage"

    def render_digest(
        self,
        new_listings: list[NormalizedListing],
        total_scraped: int,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> tuple[str, str, str]:
        """
        Build the digest email.

        Returns:
            (subject, plain text body, HTML body)
        """
        template_vars = {
            "city": html.escape(city),
            "date": self._today(),
            "new_count": len(new_listings),
            "total_scraped": total_scraped,
            "sources": sources_text(sources_searched),
            "manage_url": self._manage_url(),
        }
        subject = DIGEST_EMAIL_SUBJECT.format(prefix=self.email_config.subject_prefix, **template_vars)
        text_content = DIGEST_EMAIL_TEXT.format(
            listings="\n\n".join(render_listing_text(l) for l in new_listings),
            **template_vars,
        )
        html_content = DIGEST_EMAIL_HTML.format(
            style=EMAIL_STYLE.format(),
            cards="".join(render_listing_card(l) for l in new_listings),
            **template_vars,
        )
        return subject, text_content, html_content

    def render_no_results(
        self,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> tuple[str, str, str]:
        template_vars = {
            "city": html.escape(city),
            "date": self._today(),
            "sources": sources_text(sources_searched),
            "manage_url": self._manage_url(),
        }
        subject = NO_RESULTS_EMAIL_SUBJECT.format(**template_vars)
        text_content = NO_RESULTS_EMAIL_TEXT.format(**template_vars)
        html_content = NO_RESULTS_EMAIL_HTML.format(style=EMAIL_STYLE.format(), **template_vars)
        return subject, text_content, html_content

    def send_digest(
        self,
        recipient: str,
        new_listings: list[NormalizedListing],
        total_scraped: int,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> bool:
        """
        Send the daily digest.

        Returns:
            True if the provider accepted the message
        """
        subject, text_content, html_content = self.render_digest(
            new_listings, total_scraped, sources_searched, city
        )
        sent = self._deliver(recipient, subject, text_content, html_content)
        if sent:
            logger.info(f"Sent digest with {len(new_listings)} listings to {recipient}")
        return sent

    def send_no_results(
        self,
        recipient: str,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> bool:
        """Send the "nothing new today" message."""
        subject, text_content, html_content = self.render_no_results(sources_searched, city)
        sent = self._deliver(recipient, subject, text_content, html_content)
        if sent:
            logger.info(f"Sent no-results email to {recipient}")
        return sent

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _deliver(self, recipient: str, subject: str, text_content: str, html_content: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.email_config.from_name} <{self.email_config.from_email}>"
        msg["To"] = recipient

        # Attach text and HTML versions
        msg.attach(MIMEText(text_content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        try:
            if self.email_config.uses_sendgrid:
                self._send_via_sendgrid(recipient, subject, text_content, html_content)
            else:
                self._send_via_smtp(msg)
            return True
        except Exception as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return False

    def _send_via_smtp(self, msg: MIMEMultipart) -> None:
        """Send email via SMTP."""
        with smtplib.SMTP(self.email_config.smtp_host, self.email_config.smtp_port) as server:
            server.starttls()
            if self.email_config.smtp_user and self.email_config.smtp_password:
                server.login(self.email_config.smtp_user, self.email_config.smtp_password)
            server.send_message(msg)

    def _send_via_sendgrid(
        self,
        recipient: str,
        subject: str,
        text_content: str,
        html_content: str,
    ) -> None:
        """Send email via SendGrid API."""
        import sendgrid
        from sendgrid.helpers.mail import Email, Mail, To

        sg = sendgrid.SendGridAPIClient(api_key=self.email_config.sendgrid_api_key)
        message = Mail(
            from_email=Email(self.email_config.from_email, self.email_config.from_name),
            to_emails=To(recipient),
            subject=subject,
            plain_text_content=text_content,
            html_content=html_content,
        )

        response = sg.send(message)
        if response.status_code not in (200, 201, 202):
            raise NotificationError(f"SendGrid error: {response.status_code}")
