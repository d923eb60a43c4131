"""E-mail and invoice PDF delivery through HTTP relays.

Both calls retry transient failures (transport errors, HTTP 5xx and 429) a
fixed number of times with a fixed pause between attempts. Client errors are
permanent and are not retried. Neither method raises on delivery failure.
"""
import asyncio
import base64
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from fulfillment.application.ports import Attachment
from fulfillment.application.templates import render_invoice_html
from fulfillment.core_settings import Settings, get_settings
from fulfillment.domain.models import Invoice
from shared.core.logging_config import get_logger

logger = get_logger(__name__)


def is_transient(response: httpx.Response) -> bool:
    return response.status_code >= 500 or response.status_code == 429


class EmailNotifier:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.sleep = sleep

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> bool:
        payload = {
            "from": self.settings.EMAIL_FROM,
            "to": to,
            "subject": subject,
            "text": body,
            "attachments": [
                {
                    "filename": a.filename,
                    "content_type": a.content_type,
                    "content": base64.b64encode(a.content).decode("ascii"),
                }
                for a in attachments or []
            ],
        }
        response = await self._post(self.settings.EMAIL_API_URL, payload, f"e-mail '{subject}' to {to}")
        if response is None:
            return False
        logger.info(f"E-mail '{subject}' sent to {to}")
        return True

    async def render_invoice_pdf(self, invoice: Invoice) -> Optional[bytes]:
        if not self.settings.PDF_RENDERER_URL:
            logger.debug("No PDF renderer configured; invoice sent without attachment")
            return None
        payload = {"filename": f"{invoice.invoice_number}.pdf", "html": render_invoice_html(invoice)}
        response = await self._post(
            self.settings.PDF_RENDERER_URL, payload, f"PDF for invoice {invoice.invoice_number}"
        )
        return response.content if response is not None else None

    async def _post(self, url: str, payload: dict, purpose: str) -> Optional[httpx.Response]:
        headers = {}
        if self.settings.EMAIL_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.EMAIL_API_KEY}"

        attempts = max(1, self.settings.NOTIFY_MAX_ATTEMPTS)
        async with httpx.AsyncClient(
            timeout=self.settings.NOTIFY_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.post(url, json=payload, headers=headers)
                except httpx.TransportError as exc:
                    logger.warning(
                        f"Delivering {purpose} failed (attempt {attempt}/{attempts}): {exc.__class__.__name__}"
                    )
                else:
                    if response.is_success:
                        return response
                    if not is_transient(response):
                        logger.error(f"Delivering {purpose} rejected with HTTP {response.status_code}")
                        return None
                    logger.warning(
                        f"Delivering {purpose} got HTTP {response.status_code} (attempt {attempt}/{attempts})"
                    )
                if attempt < attempts:
                    await self.sleep(self.settings.NOTIFY_BACKOFF_SECONDS)

        logger.error(f"Giving up on {purpose} after {attempts} attempts")
        return None
