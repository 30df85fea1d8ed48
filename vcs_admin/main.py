"""VCS Admin Console — synchronized server state and command surface for the admin view."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import get_remote_url, load_remote_config, settings
from .console import PUSH_TOPICS, AdminConsole, UnknownDomainError, UnknownTopicError
from .models import PushEvent
from .notifications import NotificationQueue
from .push_bus_redis import RedisPushBus
from .push_hub import PushHub, as_sse
from .remote_client import RemoteError, RemoteFacade

logger = logging.getLogger(__name__)

# Shared state populated at startup
_console: AdminConsole | None = None
_push_bus: RedisPushBus | None = None


def get_console() -> AdminConsole:
    if _console is None:
        raise RuntimeError("Admin console is not initialized")
    return _console


def set_console(console: AdminConsole | None) -> None:
    global _console
    _console = console


def create_console(remote_config: dict) -> AdminConsole:
    remote = RemoteFacade(
        get_remote_url(remote_config),
        timeout=settings.remote_timeout_seconds,
        max_retries=settings.remote_max_retries,
    )
    return AdminConsole(
        remote=remote,
        hub=PushHub(),
        notifications=NotificationQueue(ttl_seconds=settings.notification_ttl_seconds),
        remote_config=remote_config,
        notification_tick_seconds=settings.notification_tick_seconds,
        subscriber_queue_size=settings.events_subscriber_queue_size,
    )


async def _shutdown(console: AdminConsole) -> None:
    """Tear down in reverse start order; safe on a partially started console."""
    global _push_bus
    try:
        await console.stop()
    finally:
        try:
            if _push_bus is not None:
                await _push_bus.stop()
                _push_bus = None
        finally:
            console.hub.stop()
            await console.remote.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, start the remote facade, push bus and domain syncs."""
    global _console, _push_bus

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    remote_config = load_remote_config()
    console = create_console(remote_config)
    logger.info("Remote VCS server at %s", console.remote.base_url)

    await console.remote.start()
    console.hub.start(asyncio.get_running_loop())
    try:
        bus_mode = settings.push_bus_mode.strip().lower()
        if bus_mode == "redis":
            redis_url = settings.push_redis_url.strip()
            if not redis_url:
                raise RuntimeError("VCS_ADMIN_PUSH_REDIS_URL is required when VCS_ADMIN_PUSH_BUS_MODE=redis")
            _push_bus = RedisPushBus(
                hub=console.hub,
                topics=PUSH_TOPICS,
                redis_url=redis_url,
                channel=settings.push_redis_channel.strip() or "vcs:admin:events",
                instance_id=settings.instance_id,
                connect_timeout_seconds=settings.push_redis_connect_timeout_seconds,
            )
            console.hub.set_distributor(_push_bus.relay)
            await _push_bus.start()
            logger.info("Push bus enabled: redis channel=%s", settings.push_redis_channel)
        elif bus_mode not in {"", "local"}:
            logger.warning("Unknown push bus mode '%s'; falling back to local-only mode", bus_mode)

        await console.start()
    except BaseException:
        logger.error("VCS Admin Console failed to start")
        await _shutdown(console)
        raise

    _console = console
    logger.info("VCS Admin Console started")
    try:
        yield
    finally:
        _console = None
        await _shutdown(console)
        logger.info("VCS Admin Console stopped")


app = FastAPI(title="VCS Admin Console", version="0.1.0", lifespan=lifespan)


# --- Error handling ---


@app.exception_handler(RemoteError)
async def remote_exception_handler(request: Request, exc: RemoteError):
    return JSONResponse(status_code=502, content={"error": "VCS server error", "detail": str(exc)})


@app.exception_handler(UnknownDomainError)
async def unknown_domain_handler(request: Request, exc: UnknownDomainError):
    return JSONResponse(status_code=404, content={"error": "Unknown domain", "detail": exc.args[0]})


@app.exception_handler(UnknownTopicError)
async def unknown_topic_handler(request: Request, exc: UnknownTopicError):
    return JSONResponse(status_code=422, content={"error": "Unknown push topic", "detail": exc.args[0]})


# --- Health endpoint ---


@app.get("/health")
async def health():
    """Remote reachability plus per-domain sync state."""
    console = get_console()
    remote = await console.remote.health_check()
    stats = console.stats()
    all_loaded = all(domain["has_value"] for domain in stats["domains"].values())
    return {
        "status": "healthy" if remote["status"] == "healthy" and all_loaded else "degraded",
        "remote": remote,
        "domains": stats["domains"],
        "pending_notifications": stats["pending_notifications"],
        "push_bus": _push_bus.stats() if _push_bus is not None else None,
    }


# --- Synchronized state ---


@app.get("/state/{domain}")
async def get_state(domain: str):
    console = get_console()
    sync = console.get_sync(domain)
    if not sync.cache.has_value:
        raise HTTPException(status_code=503, detail=f"No {domain} snapshot received yet")
    return {
        "domain": domain,
        "seq": sync.cache.last_applied_seq,
        "value": console.snapshot(domain),
    }


@app.post("/state/{domain}/refresh")
async def refresh_state(domain: str):
    """On-demand pull; the result is merged like any periodic poll."""
    console = get_console()
    accepted = await console.refresh(domain)
    return {"domain": domain, "accepted": accepted, "value": console.snapshot(domain)}


# --- Notifications ---


@app.get("/notifications")
async def list_notifications():
    """Pending alerts, most recent first."""
    console = get_console()
    return {"notifications": [entry.as_dict() for entry in console.notifications.pending()]}


@app.delete("/notifications/{notification_id}")
async def dismiss_notification(notification_id: str):
    console = get_console()
    return {"id": notification_id, "dismissed": console.notifications.dismiss(notification_id)}


# --- Live events ---


@app.post("/events/push")
async def ingest_push_event(event: PushEvent):
    """Ingress for server push events; merged like any pushed update."""
    console = get_console()
    subscribers = console.ingest_push(event.topic, event.data)
    return {"topic": event.topic, "subscribers": subscribers}


@app.get("/events", include_in_schema=False)
async def console_events(request: Request):
    console = get_console()
    keepalive_seconds = max(5.0, float(settings.events_keepalive_seconds))
    subscriber = console.subscribe()

    async def event_stream():
        try:
            yield as_sse("meta", {"instance": settings.instance_id, "bus_mode": settings.push_bus_mode})
            for domain, sync in console.syncs.items():
                if sync.cache.has_value:
                    yield as_sse("state", {"domain": domain, "value": console.snapshot(domain)})
            for entry in console.notifications.pending():
                yield as_sse("notification", entry.as_dict())
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(subscriber.get(), timeout=keepalive_seconds)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                # Events are shared between subscribers; do not mutate them.
                payload = {key: value for key, value in event.items() if key != "event"}
                yield as_sse(event.get("event", "message"), payload)
        finally:
            console.unsubscribe(subscriber)

    headers = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)


# --- Mount routers ---

from .router_commands import router as commands_router  # noqa: E402

app.include_router(commands_router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
