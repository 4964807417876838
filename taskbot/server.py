"""FastAPI webhook server for the Telegram bot."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from telegram import Update
from telegram.ext import Application

from .config import LOG_LEVEL, PUBLIC_URL, TELEGRAM_BOT_TOKEN, WEBHOOK_SECRET, require_bot_token
from .database import init_db
from .handlers import register_handlers, task_service
from .scheduler import start_scheduler

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=LOG_LEVEL,
)
logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

application = None
scheduler = None


def get_application() -> Application:
    """Get or create the Telegram application instance."""
    global application, scheduler
    if application is None:
        init_db()
        application = Application.builder().token(require_bot_token()).build()
        register_handlers(application)
        scheduler = start_scheduler(application, task_service)
    return application


@asynccontextmanager
async def lifespan(_: FastAPI):
    app_instance = get_application()
    await app_instance.initialize()
    if PUBLIC_URL:
        webhook_url = f"{PUBLIC_URL}/webhook/{TELEGRAM_BOT_TOKEN}"
        await app_instance.bot.set_webhook(url=webhook_url, secret_token=WEBHOOK_SECRET or None)
        logger.info(f"Webhook set to: {PUBLIC_URL}/webhook/***")
    else:
        logger.warning("PUBLIC_URL not set, webhook not configured")
    try:
        yield
    finally:
        await app_instance.bot.delete_webhook()
        await app_instance.shutdown()
        if scheduler:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Telegram Task Bot", lifespan=lifespan)


@app.get("/")
async def health_check():
    return {"status": "Bot is running", "webhook_configured": bool(PUBLIC_URL)}


@app.post(f"/webhook/{TELEGRAM_BOT_TOKEN}")
async def telegram_webhook(request: Request):
    """Feed one Telegram update to the bot application."""
    if WEBHOOK_SECRET and request.headers.get(SECRET_HEADER) != WEBHOOK_SECRET:
        logger.warning("Rejected webhook call with a wrong secret token")
        return Response(status_code=403)
    try:
        app_instance = get_application()
        update = Update.de_json(await request.json(), app_instance.bot)
        await app_instance.process_update(update)
        return Response(status_code=200)
    except Exception:
        logger.exception("Error processing update")
        return Response(status_code=500)
