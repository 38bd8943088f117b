import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from aiohttp import web

from tutorbot.bot.dispatch import DispatchRouter
from tutorbot.bot.handlers.updates import router as updates_router
from tutorbot.bot.middlewares import CorrelationIdMiddleware, RateLimitMiddleware, UserLockMiddleware
from tutorbot.bot.notifier import BotNotifier
from tutorbot.core.config import Settings
from tutorbot.web.health import setup_health

log = logging.getLogger(__name__)


def build_dispatcher(settings: Settings, bot: Bot) -> Dispatcher:
    dp = Dispatcher()
    dp["dispatch"] = DispatchRouter(settings, BotNotifier(bot, timeout_seconds=settings.notify_timeout_seconds))

    user_lock = UserLockMiddleware()
    dp.message.middleware(CorrelationIdMiddleware())
    dp.callback_query.middleware(CorrelationIdMiddleware())
    dp.callback_query.middleware(RateLimitMiddleware(min_interval_sec=0.4))
    dp.message.middleware(user_lock)
    dp.callback_query.middleware(user_lock)

    dp.include_router(updates_router)
    return dp


def build_web_app(settings: Settings, bot: Bot, dp: Dispatcher) -> web.Application:
    app = web.Application()
    SimpleRequestHandler(dispatcher=dp, bot=bot, secret_token=settings.webhook_secret).register(
        app, path=settings.webhook_path
    )
    setup_health(app)
    setup_application(app, dp, bot=bot)
    return app


async def run_bot(settings: Settings) -> None:
    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = build_dispatcher(settings, bot)

    if not settings.webhook_url:
        log.info("bot_start mode=polling")
        await bot.delete_webhook(drop_pending_updates=False)
        await dp.start_polling(bot)
        return

    webhook_url = settings.webhook_url.rstrip("/") + settings.webhook_path
    await bot.set_webhook(url=webhook_url, secret_token=settings.webhook_secret)
    log.info("bot_start mode=webhook path=%s port=%s", settings.webhook_path, settings.web_port)

    runner = web.AppRunner(build_web_app(settings, bot, dp))
    await runner.setup()
    site = web.TCPSite(runner, settings.web_host, settings.web_port)
    await site.start()
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
