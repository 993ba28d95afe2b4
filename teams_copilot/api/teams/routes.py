"""
Bot Framework endpoints for the Teams Copilot Bot.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from botbuilder.schema import Activity

from teams_copilot.api.teams.bot_services import BotServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["teams"])


def get_bot_services(request: Request) -> BotServices:
    return request.app.state.bot_services


@router.post("/messages")
async def messages(request: Request):
    """
    Bot Framework webhook endpoint.

    The adapter authenticates the request from the Authorization header and
    runs the turn; invoke activities get the bot's invoke response back.
    """
    services = get_bot_services(request)
    body = await request.json()
    activity = Activity().deserialize(body)
    auth_header = request.headers.get("Authorization", "")

    logger.info(f"Received activity: {activity.type}")

    try:
        invoke_response = await services.adapter.process_activity(activity, auth_header, services.bot.on_turn)
    except PermissionError as e:
        logger.warning(f"Rejected unauthorized activity: {e}")
        return JSONResponse(content={"error": "Unauthorized"}, status_code=401)

    if invoke_response:
        return JSONResponse(content=invoke_response.body, status_code=invoke_response.status)
    return Response(status_code=201)


@router.post("/notify")
async def notify(request: Request):
    """Send a proactive message to every conversation the bot has seen."""
    services = get_bot_services(request)
    delivered = await services.messenger.notify_all()
    return JSONResponse(content={"status": "ok", "delivered": delivered})
