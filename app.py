# -- app.py --
"""
Main entry point for the Teams bot gateway (Bot Framework Version).
"""
import asyncio
import os
import sys
import logging
from typing import Tuple

# Imports for Bot Framework and Web Server
from aiohttp import web
from botbuilder.core import BotFrameworkAdapterSettings, Storage
from botbuilder.core.integration import aiohttp_error_middleware
from botbuilder.schema import Activity, ActivityTypes

# Early import for dotenv functionality
from dotenv import load_dotenv, find_dotenv

from bot_core.adapter_with_error_handler import AdapterWithErrorHandler
from bot_core.dialog_bot import DialogBot
from bot_core.dialog_engine import EchoDialog
from bot_core.errors import MalformedActivity
from bot_core.state import StateScopes
from bot_core.storage import MemoryStore
from bot_core.supervision import install_unobserved_failure_handler, spawn_supervised
from bot_core.turn_context import validate_activity
from config import Config, get_config
from health_checks import overall_status, run_health_checks
from utils.log_sanitizer import mask_secret, sanitize_for_logging
from utils.logging_config import clear_turn_ids, setup_logging

APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", Config)
ADAPTER_KEY = web.AppKey("adapter", AdapterWithErrorHandler)
BOT_KEY = web.AppKey("bot", DialogBot)
STORAGE_KEY = web.AppKey("storage", Storage)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "X-Requested-With, Content-Type, Accept, Origin, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}

OAUTH_CALLBACK_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Authentication complete</title>
</head>
<body>
  <h1>Authentication complete</h1>
  <p>You can close this window and return to the conversation.</p>
  <script>setTimeout(function () { window.close(); }, 3000);</script>
</body>
</html>
"""
OAUTH_CALLBACK_BODY = OAUTH_CALLBACK_HTML.encode("utf-8")


def load_environment():
    logger.info("=== LOADING ENVIRONMENT VARIABLES ===")
    possible_paths = [
        os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'),
        os.path.join(os.getcwd(), '.env'),
        find_dotenv(usecwd=True)
    ]
    env_loaded = False; env_path_found = "None"
    for dotenv_path in possible_paths:
        if dotenv_path and os.path.exists(dotenv_path):
            env_path_found = dotenv_path
            logger.info(f"Found .env file at: {env_path_found}")
            load_dotenv(dotenv_path, override=True); env_loaded = True; break
    if env_loaded:
        logger.info(f"SUCCESS: Loaded .env file from: {env_path_found}")
        critical_vars = ['MicrosoftAppId', 'MicrosoftAppPassword', 'MicrosoftAppTenantId', 'connectionName', 'OAUTH_CONNECTION_NAME']
        logger.info("Environment variable status (partial values for security):")
        for var in critical_vars:
            val = os.environ.get(var)
            if val: logger.info(f"  {var}: {mask_secret(val)}")
            else: logger.info(f"  {var}: NOT FOUND")
    else: logger.warning("No .env file found. Using system environment variables.")
    logger.info("=== ENVIRONMENT LOADED SUCCESSFULLY ===")
    return env_loaded


def build_gateway(config: Config) -> Tuple[Storage, DialogBot, AdapterWithErrorHandler]:
    """Constructs the process-wide store, bot handle and adapter."""
    storage = MemoryStore()
    scopes = StateScopes(storage, default_channel_id=config.settings.default_channel_id)
    bot = DialogBot(scopes, EchoDialog(config.CONNECTION_NAME))
    bot_framework_settings = BotFrameworkAdapterSettings(
        app_id=config.MICROSOFT_APP_ID or "",
        app_password=config.MICROSOFT_APP_PASSWORD or "",
        channel_auth_tenant=config.MICROSOFT_APP_TENANT_ID if config.MICROSOFT_APP_TYPE == "SingleTenant" else None,
    )
    adapter = AdapterWithErrorHandler(bot_framework_settings, scopes, bot, config=config)
    logger.info("DialogBot and adapter initialized successfully.")
    return storage, bot, adapter


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as http_error:
        http_error.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


async def messages(req: web.Request) -> web.Response:
    if "application/json" not in req.headers.get("Content-Type", ""):
        logger.warning("Request received with non-JSON content type.")
        return web.Response(status=415)

    try:
        body = await req.json()
    except ValueError as json_e:
        logger.error(f"Failed to parse request body as JSON: {json_e}")
        return web.Response(status=400, text="Invalid JSON body")
    if not isinstance(body, dict):
        return web.Response(status=400, text="Activity must be a JSON object")

    activity = Activity().deserialize(body)
    auth_header = req.headers.get("Authorization", "")

    user_id = activity.from_property.id if activity.from_property else "N/A"
    conversation_id = activity.conversation.id if activity.conversation else "N/A"
    logger.info(
        f"Received activity: Type='{activity.type}', Name='{activity.name}', From='{user_id}', ConvID='{conversation_id}'"
    )
    if activity.type == ActivityTypes.message and activity.text:
        logger.debug(f"  Message Text: '{activity.text[:100]}{'...' if len(activity.text) > 100 else ''}'")
    if activity.value is not None:
        logger.debug(f"  Activity Value: {sanitize_for_logging(activity.value)}")

    adapter = req.app[ADAPTER_KEY]
    bot = req.app[BOT_KEY]
    try:
        # The adapter reports a missing type as a TypeError, so reject malformed input up front.
        validate_activity(activity)
        response = await adapter.process_activity(activity, auth_header, bot.on_turn)
        if response:
            logger.debug(f"Sending invoke response with status: {response.status}")
            if response.body is None:
                return web.Response(status=response.status)
            return web.json_response(response.body, status=response.status)
        return web.Response(status=200)
    except MalformedActivity as malformed:
        logger.warning(f"Rejected malformed activity: {malformed}")
        return web.Response(status=400, text=str(malformed))
    except PermissionError:
        logger.warning(f"Unauthorized request for conversation '{conversation_id}'.")
        raise
    except Exception as exception:
        logger.error(f"Error processing activity in messages handler: {exception}", exc_info=True)
        return web.Response(status=500, text="Internal Server Error")
    finally:
        clear_turn_ids()


async def oauth_callback(req: web.Request) -> web.Response:
    # Same bytes for every request; query parameters are ignored.
    return web.Response(
        status=200,
        body=OAUTH_CALLBACK_BODY,
        headers={
            "Content-Type": "text/html",
            "Content-Length": str(len(OAUTH_CALLBACK_BODY)),
        },
    )


async def healthz(req: web.Request) -> web.Response:
    logger.info("Health check endpoint requested.")
    health_results = await run_health_checks(req.app[CONFIG_KEY], req.app[STORAGE_KEY])
    status, http_status_code = overall_status(health_results)
    logger.info(f"Health check completed. Overall status: {status}")
    return web.json_response(
        {"overall_status": status, "components": health_results, "version": APP_VERSION},
        status=http_status_code
    )


async def _startup_health_report(app: web.Application):
    health_results = await run_health_checks(app[CONFIG_KEY], app[STORAGE_KEY])
    status, _ = overall_status(health_results)
    logger.info(f"Startup health check: {status}")


async def startup_health_check(app: web.Application):
    task = spawn_supervised(_startup_health_report(app), name="startup-health-check")
    yield
    if not task.done():
        task.cancel()
        await asyncio.wait([task])


async def on_startup(app: web.Application):
    install_unobserved_failure_handler(asyncio.get_running_loop())


async def on_bot_shutdown(app: web.Application):
    logger.info("Bot application shutting down. Cleaning up resources...")
    storage = app[STORAGE_KEY]
    if isinstance(storage, MemoryStore):
        logger.info(f"Discarding {len(storage)} in-memory state entries.")
        await storage.clear()


def create_app(config: Config, adapter: AdapterWithErrorHandler, bot: DialogBot, storage: Storage) -> web.Application:
    server_app = web.Application(middlewares=[cors_middleware, aiohttp_error_middleware])
    server_app[CONFIG_KEY] = config
    server_app[ADAPTER_KEY] = adapter
    server_app[BOT_KEY] = bot
    server_app[STORAGE_KEY] = storage

    settings = config.settings
    server_app.router.add_post(settings.bot_api_messages_endpoint, messages)
    server_app.router.add_get(settings.oauth_callback_endpoint, oauth_callback)
    server_app.router.add_get(settings.bot_api_healthcheck_endpoint, healthz)

    public_dir = os.path.abspath(config.PUBLIC_DIR)
    if os.path.isdir(public_dir):
        server_app.router.add_static("/public", public_dir)
        logger.info(f"Serving static files from {public_dir} at /public")
    else:
        logger.info(f"Static directory '{public_dir}' not found. /public is not served.")

    server_app.on_startup.append(on_startup)
    server_app.cleanup_ctx.append(startup_health_check)
    server_app.on_cleanup.append(on_bot_shutdown)
    return server_app


def main():
    setup_logging()
    load_environment()

    try:
        app_config = get_config(force_reload=True)
    except (ValueError, RuntimeError) as config_e:  # pydantic ValidationError is a ValueError
        print(f"FATAL: Configuration error: {config_e}", file=sys.stderr)
        logger.critical(f"Configuration error: {config_e}")
        sys.exit(1)

    setup_logging(app_config.LOG_LEVEL)
    logger.info(f"Root logger level set to {app_config.LOG_LEVEL} from configuration.")

    storage, bot, adapter = build_gateway(app_config)
    server_app = create_app(app_config, adapter, bot, storage)

    host = app_config.settings.host
    port_to_use = app_config.PORT
    logger.info(f"Bot server starting on http://{host}:{port_to_use}")
    web.run_app(server_app, host=host, port=port_to_use)


if __name__ == "__main__":
    main()
