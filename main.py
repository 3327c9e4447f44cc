"""Main entrypoint for the Trello Slack bot FastAPI application.

Exposes the Slack Events API endpoint, the Trello webhook endpoint and a
health check. The delivery queue and the cron scheduler live for the
lifetime of the app.
"""

from contextlib import asynccontextmanager
import json

from dotenv import load_dotenv
from fastapi import BackgroundTasks
from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.responses import JSONResponse
from fastapi.responses import PlainTextResponse
from slack_sdk.signature import SignatureVerifier

from trellobot.config import get_settings
from trellobot.core.delivery import get_delivery_queue
from trellobot.core.notifications import handle_trello_webhook
from trellobot.core.router import handle_slack_event
from trellobot.services.scheduler import build_scheduler
from trellobot.utils.logger import configure_logging
from trellobot.utils.logger import generate_request_id
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info
from trellobot.utils.logger import log_warn


load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing credentials raise here and abort startup.
    settings = get_settings()
    configure_logging(settings.log_level)

    queue = get_delivery_queue()
    queue.start()

    scheduler = build_scheduler(settings)
    scheduler.start()
    log_info("Trello Slack bot started", port=settings.port, debug=settings.debug)

    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        await queue.stop()


app = FastAPI(title="Trello Slack Bot", version="0.1.0", lifespan=lifespan)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict:
    return {"status": "ok"}


@app.post("/slack/events")
async def slack_events(request: Request, background_tasks: BackgroundTasks):
    """Slack Events API endpoint.

    Slack expects an answer within three seconds, so the event itself is
    handled after the response is sent.
    """

    body = await request.body()
    request_id = generate_request_id()
    request.state.request_id = request_id

    signing_secret = get_settings().slack_signing_secret
    if signing_secret:
        verifier = SignatureVerifier(signing_secret)
        if not verifier.is_valid_request(body, dict(request.headers)):
            log_warn("Rejected Slack request with invalid signature", request_id=request_id)
            return PlainTextResponse("invalid signature", status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        log_warn("Slack request body is not JSON", request_id=request_id)
        return PlainTextResponse("ok")

    if not isinstance(payload, dict):
        return PlainTextResponse("ok")

    if payload.get("type") == "url_verification":
        return JSONResponse({"challenge": payload.get("challenge")})

    background_tasks.add_task(handle_slack_event, payload, request_id)
    return PlainTextResponse("ok")


@app.get("/trello/webhook")
async def trello_webhook_check() -> PlainTextResponse:
    """Trello sends a HEAD/GET here when a webhook is registered."""

    return PlainTextResponse("ok")


@app.head("/trello/webhook")
async def trello_webhook_head() -> PlainTextResponse:
    return PlainTextResponse("ok")


@app.post("/trello/webhook")
async def trello_webhook(request: Request, background_tasks: BackgroundTasks) -> PlainTextResponse:
    """Receive Trello webhook actions. Always answers ``ok``."""

    request_id = generate_request_id()
    request.state.request_id = request_id

    try:
        payload = await request.json()
    except ValueError:
        log_warn("Trello webhook body is not JSON", request_id=request_id)
        return PlainTextResponse("ok")

    background_tasks.add_task(_forward_trello_action, payload, request_id)
    return PlainTextResponse("ok")


async def _forward_trello_action(payload: dict, request_id: str) -> None:
    try:
        await handle_trello_webhook(payload, request_id=request_id)
    except Exception as exc:  # noqa: BLE001
        log_error("Error while handling Trello webhook", request_id=request_id, error=repr(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for uncaught exceptions."""

    request_id = getattr(request.state, "request_id", None)
    log_error("Unhandled exception", request_id=request_id, error=str(exc))

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port)
