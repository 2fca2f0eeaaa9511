import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from .config import Settings
from .exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    TaskNotFoundError,
)
from .notifications import NotificationDispatcher, TelegramNotifier
from .service import LedgerEngine

logger = logging.getLogger(__name__)

MENU_TEXT = (
    "🏠 Main Menu:\n"
    "/tasks - Available tasks\n"
    "/wallet - Check wallet\n"
    "/refer - Invite & earn\n"
    "/withdraw <amount> - Request withdraw"
)


def get_engine(context: ContextTypes.DEFAULT_TYPE) -> LedgerEngine:
    return context.bot_data["engine"]


def get_settings(context: ContextTypes.DEFAULT_TYPE) -> Settings:
    return context.bot_data["settings"]


def parse_referrer(args) -> Optional[int]:
    if args and args[0].isdecimal():
        return int(args[0])
    return None


def display_name_for(update: Update) -> str:
    user = update.effective_user
    return user.username or user.first_name or str(update.effective_chat.id)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id
    username = display_name_for(update)
    get_engine(context).onboard(chat_id, username, parse_referrer(context.args))
    await update.message.reply_text(f"👋 Hi {username}! Use /menu to see options.")


async def menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(MENU_TEXT)


async def tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = "🎯 Available Tasks:\n\n"
    for task in get_engine(context).list_tasks():
        message += f"🧩 {task.id}. {task.title} — Reward: {task.reward} coins\n"
    message += "\nAfter completing, send /done <task_id>"
    await update.message.reply_text(message)


async def done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id
    if not context.args or not context.args[0].isdecimal():
        await update.message.reply_text("Usage: /done <task_id>")
        return

    idempotency_key = f"done:{chat_id}:{update.message.message_id}"
    try:
        result = get_engine(context).complete_task(chat_id, int(context.args[0]), idempotency_key)
    except TaskNotFoundError:
        await update.message.reply_text("❌ Invalid task ID")
        return
    except AccountNotFoundError:
        await update.message.reply_text("❌ User not found")
        return

    if result.duplicate:
        return
    await update.message.reply_text(f"✅ You earned {result.task.reward} coins!")


async def wallet(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        balance = get_engine(context).get_balance(update.effective_chat.id)
    except AccountNotFoundError:
        await update.message.reply_text("❌ User not found")
        return

    text = f"💼 Your Balance: {balance.balance} coins"
    if balance.reserved:
        text += f"\n⏳ Pending withdrawals: {balance.reserved} coins"
    await update.message.reply_text(text)


async def withdraw(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id
    try:
        amount = Decimal(context.args[0]) if context.args else None
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        await update.message.reply_text("Usage: /withdraw <amount>")
        return

    try:
        get_engine(context).request_withdrawal(chat_id, amount)
    except AccountNotFoundError:
        await update.message.reply_text("❌ User not found")
        return
    except InsufficientBalanceError:
        await update.message.reply_text("⚠️ Not enough balance!")
        return
    except InvalidInputError:
        await update.message.reply_text("⚠️ Amount must be greater than zero")
        return
    await update.message.reply_text("✅ Withdraw request sent!")


async def refer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id
    refer_link = f"https://t.me/{get_settings(context).bot_username}?start={chat_id}"
    await update.message.reply_text(f"👥 Invite & Earn! Share this link:\n{refer_link}")


async def stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_chat.id != get_settings(context).admin_id:
        return
    engine = get_engine(context)
    await update.message.reply_text(
        f"📊 Users: {len(engine.list_accounts())}\nWithdraws: {len(engine.list_withdrawals())}"
    )


async def _post_init(application: Application) -> None:
    notifier = application.bot_data.get("notifier")
    if notifier is not None:
        notifier.attach(asyncio.get_running_loop())
    logger.info("Telegram bot initialised")


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("menu", menu))
    application.add_handler(CommandHandler("tasks", tasks))
    application.add_handler(CommandHandler("done", done))
    application.add_handler(CommandHandler("wallet", wallet))
    application.add_handler(CommandHandler("withdraw", withdraw))
    application.add_handler(CommandHandler("refer", refer))
    application.add_handler(CommandHandler("stats", stats))


def build_application(
    settings: Settings, engine: LedgerEngine, dispatcher: Optional[NotificationDispatcher] = None
) -> Application:
    application = Application.builder().token(settings.telegram_token).post_init(_post_init).build()
    application.bot_data["engine"] = engine
    application.bot_data["settings"] = settings

    if dispatcher is not None:
        notifier = TelegramNotifier(application.bot, settings.admin_id)
        application.bot_data["notifier"] = notifier
        dispatcher.add_sink(notifier)

    register_handlers(application)
    return application
