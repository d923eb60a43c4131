import base64
import json
from decimal import Decimal

import httpx
import pytest

from fulfillment.application.ports import Attachment
from fulfillment.domain.models import ClientSnapshot, Invoice, InvoiceItem
from fulfillment.infrastructure.notifier import EmailNotifier


class Relay:
    """Scripted mail relay: replies with the queued responses in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_notifier(settings, relay, sleeps=None):
    async def fake_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    settings = settings.model_copy(update={"NOTIFY_BACKOFF_SECONDS": 2.0, "EMAIL_API_KEY": "secret"})
    return EmailNotifier(settings, transport=httpx.MockTransport(relay), sleep=fake_sleep)


@pytest.mark.asyncio
async def test_send_email_posts_payload(settings):
    relay = Relay(httpx.Response(202, json={"id": "m1"}))
    notifier = make_notifier(settings, relay)

    sent = await notifier.send_email(
        "ada@example.com", "Hello", "Body", [Attachment(filename="a.pdf", content=b"PDF")]
    )

    assert sent is True
    [request] = relay.requests
    assert str(request.url) == "http://mailer.test/send"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["to"] == "ada@example.com"
    assert body["from"] == "orders@example.com"
    assert base64.b64decode(body["attachments"][0]["content"]) == b"PDF"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_fixed_backoff(settings):
    relay = Relay(
        httpx.ConnectError("refused"),
        httpx.Response(503),
        httpx.Response(200),
    )
    sleeps = []
    notifier = make_notifier(settings, relay, sleeps)

    assert await notifier.send_email("ada@example.com", "Hi", "Body") is True
    assert len(relay.requests) == 3
    assert sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(settings):
    relay = Relay(httpx.Response(500), httpx.Response(429), httpx.Response(502))
    sleeps = []
    notifier = make_notifier(settings, relay, sleeps)

    assert await notifier.send_email("ada@example.com", "Hi", "Body") is False
    assert len(relay.requests) == 3
    assert sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(settings):
    relay = Relay(httpx.Response(422, json={"error": "bad address"}))
    notifier = make_notifier(settings, relay)

    assert await notifier.send_email("not-an-address", "Hi", "Body") is False
    assert len(relay.requests) == 1


@pytest.fixture
def invoice():
    return Invoice(
        invoice_number="INV-25-03-0001",
        client_info=ClientSnapshot(id="c1", name="Ada Obi", address="Lagos"),
        items=[InvoiceItem(name="Pads", quantity=2, unit_price=Decimal("10"), total_price=Decimal("20"))],
        subtotal=Decimal("20"),
        total_amount=Decimal("20"),
    )


@pytest.mark.asyncio
async def test_render_invoice_pdf(settings, invoice):
    relay = Relay(httpx.Response(200, content=b"%PDF-1.7"))
    notifier = make_notifier(settings, relay)

    assert await notifier.render_invoice_pdf(invoice) == b"%PDF-1.7"
    payload = json.loads(relay.requests[0].content)
    assert payload["filename"] == "INV-25-03-0001.pdf"
    assert "Ada Obi" in payload["html"]
    assert "20.00" in payload["html"]


@pytest.mark.asyncio
async def test_render_without_renderer(settings, invoice):
    relay = Relay()
    notifier = make_notifier(settings.model_copy(update={"PDF_RENDERER_URL": None}), relay)
    assert await notifier.render_invoice_pdf(invoice) is None
    assert relay.requests == []
