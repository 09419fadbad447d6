"""
Demo: webhook relay with endpoint rotation and backpressure feedback.

Starts a local mock webhook server with two hooks. The first hook is
"revoked" halfway through the demo (returns 404); the configuration source
is updated to the second hook, and the relay picks it up on the next
delivery attempt.

Requires:
- aiohttp installed (pip install aiohttp) for the mock server
"""

import asyncio

from aiohttp import web
from loguru import logger

from webhook_relay import (
    FeedbackEvent,
    InMemoryConfigSource,
    PipelineController,
    schema_from_mapping,
)

BASE = "http://localhost:8766/services"
received = []
revoked = set()


async def webhook_handler(request):
    """Mock incoming-webhook endpoint: 404 for revoked hooks, 200 otherwise."""
    hook = request.match_info["hook"]
    if hook in revoked:
        return web.Response(text="no_service", status=404)

    data = await request.json()
    received.append((hook, data))
    logger.info(f"📨 [{hook}] {data.get('username', '-')}: {data['text']}")
    return web.Response(text="ok", status=200)


async def run_mock_server():
    app = web.Application()
    app.router.add_post("/services/{hook}", webhook_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", 8766)
    await site.start()

    logger.info(f"🌐 Mock webhook server started at {BASE}/<hook>")
    return runner


async def on_feedback(event: FeedbackEvent):
    level_emoji = {"ok": "✅", "soft": "⚠️ ", "hard": "🔴"}
    logger.info(
        f"{level_emoji.get(event.level.value, '❓')} Backpressure {event.level.value.upper()} "
        f"queue={event.queue_size}/{event.capacity} ({event.utilization:.0%}) "
        f"head_attempts={event.head_attempts}"
    )


async def on_drop(item, reason):
    logger.warning(f"🗑️  Record #{item.sequence} dropped ({reason})")


async def main():
    logger.info("🚀 Webhook relay demo")
    logger.info("=" * 70)

    server = await run_mock_server()
    config = InMemoryConfigSource(
        {"alerts": {"webhook_url": f"{BASE}/first", "username": "relay-demo"}}
    )

    try:
        relay = PipelineController(
            schema_from_mapping({"text": "string", "severity": "int"}),
            config_source=config,
            config_name="alerts",
            capacity=10,
            high_watermark=6,
            low_watermark=2,
            interval_sec=0.5,
            on_drop=on_drop,
            pipeline_id="demo",
        )
        relay.feedback.subscribe(on_feedback)
        async with relay:
            logger.info("Phase 1: Enqueue 8 records (faster than the relay drains)")
            for i in range(8):
                await relay.on_record({"text": f"alert #{i}", "severity": i % 3})

            await asyncio.sleep(1.2)

            logger.info("")
            logger.info("Phase 2: Revoke the first hook and rotate configuration")
            revoked.add("first")
            config.update("alerts", webhook_url=f"{BASE}/second")

            await relay.stop(drain=True, timeout=10.0)
            health = relay.health()

        logger.info("")
        logger.info("=" * 70)
        logger.info(
            f"✅ Demo complete: delivered={health.delivered} dropped={health.dropped} "
            f"endpoint_refreshes={relay.resolver.refresh_count}"
        )
        by_hook = {}
        for hook, _ in received:
            by_hook[hook] = by_hook.get(hook, 0) + 1
        for hook, count in by_hook.items():
            logger.info(f"   {hook}: {count} message(s)")

    finally:
        await server.cleanup()
        logger.info("🛑 Mock server stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⚠️  Interrupted")
