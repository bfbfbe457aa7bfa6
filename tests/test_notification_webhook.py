"""
Webhook notifier against a local aiohttp server.
"""

import pytest
from aiohttp import test_utils, web

from rxpipeline.adapters.external.notification_service_webhook import WebhookNotificationService
from rxpipeline.core.config import NotificationSettings
from rxpipeline.core.exceptions import NotificationError

PID = "RX-" + "c" * 32


async def start_server(status: int):
    received = []

    async def hook(request):
        received.append(await request.json())
        return web.json_response({"ok": status < 300}, status=status)

    app = web.Application()
    app.router.add_post("/hook", hook)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server, received


@pytest.mark.asyncio
async def test_posts_status_update():
    server, received = await start_server(200)
    try:
        service = WebhookNotificationService(NotificationSettings(webhook_url=str(server.make_url("/hook"))))
        await service.notify(PID, "owner-1", "extraction_failed", reason="Text extraction failed.")
    finally:
        await server.close()

    [payload] = received
    assert payload["event"] == "prescription_status_changed"
    assert payload["prescription_id"] == PID
    assert payload["owner_id"] == "owner-1"
    assert payload["status"] == "extraction_failed"
    assert payload["reason"] == "Text extraction failed."
    assert "sent_at" in payload


@pytest.mark.asyncio
async def test_error_status_is_retryable():
    server, _ = await start_server(503)
    try:
        service = WebhookNotificationService(NotificationSettings(webhook_url=str(server.make_url("/hook"))))
        with pytest.raises(NotificationError) as exc_info:
            await service.notify(PID, "owner-1", "analysis_done")
    finally:
        await server.close()

    assert exc_info.value.details["status"] == 503
    assert not exc_info.value.permanent


@pytest.mark.asyncio
async def test_unreachable_endpoint_raises_notification_error():
    service = WebhookNotificationService(
        NotificationSettings(webhook_url="http://127.0.0.1:9/hook", timeout_seconds=2)
    )
    with pytest.raises(NotificationError):
        await service.notify(PID, "owner-1", "analysis_done")


@pytest.mark.asyncio
async def test_without_url_only_logs(caplog):
    service = WebhookNotificationService(NotificationSettings(webhook_url=""))

    with caplog.at_level("INFO"):
        await service.notify(PID, "owner-1", "analysis_done")

    assert PID in caplog.text
