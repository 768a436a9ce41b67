import asyncio
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from referral_waitlist.platform.config import settings
from referral_waitlist.platform.logger import get_logger
from referral_waitlist.platform.services.email import EmailDeliveryError, send_email

logger = get_logger(__name__)

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parent / "template")),
    autoescape=select_autoescape(["html"]),
)


def render_incident(title: str, detail: str, context: Optional[dict[str, Any]] = None) -> str:
    template = _env.get_template("incident_alert.html")
    return template.render(
        title=title, detail=detail, context=context or {}, environment=settings.ENVIRONMENT
    )


async def report_incident(title: str, detail: str, context: Optional[dict[str, Any]] = None) -> None:
    """
    Out-of-band report for failures nobody is waiting on: logged at ERROR and
    mailed to the admin inbox. Delivery problems are logged, never raised.
    """
    logger.error(f"{title}: {detail} {context or ''}")

    body = render_incident(title, detail, context)
    try:
        await asyncio.to_thread(send_email, settings.MAIL_ADMIN_EMAIL, f"[{settings.APP_NAME}] {title}", body)
    except EmailDeliveryError as e:
        logger.error(f"Could not deliver incident alert '{title}': {e}")
