"""Telegram bot using python-telegram-bot, relaying chats to the completion backend."""

from __future__ import annotations

import asyncio
import functools
import time

from telegram import ForceReply, ReplyKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from chatrelay.chat_log import ChatLogStore
from chatrelay.dispatcher import (
    CHANGE_ROLE_LABEL,
    VIEW_CONTEXT_LABEL,
    InboundEvent,
    PhotoVariant,
    ReplyMarkup,
    TurnDispatcher,
)
from chatrelay.llm import complete as llm_complete
from chatrelay.media_group import MediaAggregator
from chatrelay.memory.episodic_memory import EpisodicMemoryStore
from chatrelay.profile import Profile, read_secret
from chatrelay.session_store import SessionStore

HELP_TEXT = (
    "Send a message or an album of photos and I will pass it to the model.\n"
    "/context - show the current chat context\n"
    "/role - change the assistant's role\n"
    "/help - this message"
)


class TelegramBotConfigError(Exception):
    """Raised when the bot cannot start because credentials are missing."""


def main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[VIEW_CONTEXT_LABEL, CHANGE_ROLE_LABEL]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


def event_from_update(update: Update) -> InboundEvent | None:
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return None
    photo = tuple(PhotoVariant(file_id=size.file_id, file_size=size.file_size) for size in message.photo or ())
    return InboundEvent(
        chat_id=chat.id,
        text=message.text,
        caption=message.caption,
        photo=photo,
        media_group_id=message.media_group_id,
    )


class TelegramTransport:
    """ChatTransport backed by a python-telegram-bot ``Bot``."""

    def __init__(self, app: Application) -> None:
        self._app = app

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: ReplyMarkup | None = None,
    ) -> None:
        markup = None
        if reply_markup == ReplyMarkup.MAIN_KEYBOARD:
            markup = main_keyboard()
        elif reply_markup == ReplyMarkup.FORCE_REPLY:
            markup = ForceReply()
        await self._app.bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode, reply_markup=markup)

    async def fetch_image(self, file_id: str) -> bytes:
        file = await self._app.bot.get_file(file_id)
        data = await file.download_as_bytearray()
        return bytes(data)


class TelegramBot:
    def __init__(
        self,
        profile: Profile,
        episodic_memory: EpisodicMemoryStore,
        default_persona: str,
    ) -> None:
        self._profile = profile
        self._episodic = episodic_memory
        self._default_persona = default_persona
        self._token: str | None = None
        self._started_at = 0.0
        self._llm_api_key: str | None = None
        self._llm_base_url: str = profile.llm_base_url
        self._llm_model: str = profile.llm_default_model
        self._llm_timeout_seconds: int = profile.llm_timeout_seconds
        self._app: Application | None = None
        self._dispatcher: TurnDispatcher | None = None
        self._housekeeping_task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self._token is not None

    def _load_token(self) -> str | None:
        return read_secret(self._profile.paths.secrets_dir, "telegram_bot_token.txt", "TELEGRAM_BOT_TOKEN")

    def _load_llm_config(self) -> None:
        secrets = self._profile.paths.secrets_dir
        self._llm_api_key = read_secret(secrets, "llm_api_key.txt", "LLM_API_KEY")
        base_url = read_secret(secrets, "llm_base_url.txt", "LLM_BASE_URL")
        if base_url:
            self._llm_base_url = base_url
        model = read_secret(secrets, "llm_model.txt", "LLM_MODEL")
        if model:
            self._llm_model = model
        timeout_raw = read_secret(secrets, "llm_timeout_seconds.txt", "LLM_TIMEOUT_SECONDS")
        if timeout_raw and timeout_raw.isdigit():
            self._llm_timeout_seconds = max(5, min(300, int(timeout_raw)))

    def build_dispatcher(self, app: Application) -> TurnDispatcher:
        assert self._llm_api_key is not None
        sessions = SessionStore(
            self._default_persona,
            max_turns=self._profile.history_max_turns,
            idle_seconds=self._profile.session_idle_seconds,
        )
        aggregator = MediaAggregator(
            debounce_seconds=self._profile.media_group_debounce_seconds,
            stale_seconds=self._profile.media_group_stale_seconds,
        )
        completer = functools.partial(
            llm_complete,
            api_key=self._llm_api_key,
            base_url=self._llm_base_url,
            model=self._llm_model,
            timeout=self._llm_timeout_seconds,
        )
        return TurnDispatcher(
            sessions=sessions,
            aggregator=aggregator,
            transport=TelegramTransport(app),
            complete=completer,
            events=self._episodic,
            chat_log=ChatLogStore(self._profile.paths.logs_dir),
            timeout_seconds=self._llm_timeout_seconds,
        )

    def start(self) -> None:
        """Build the application and poll until interrupted. Raises TelegramBotConfigError."""
        token = self._load_token()
        if token is None:
            raise TelegramBotConfigError(
                "Bot token not found! Put it in telegram_bot_token.txt or set TELEGRAM_BOT_TOKEN"
            )
        self._load_llm_config()
        if self._llm_api_key is None:
            raise TelegramBotConfigError("LLM API key not found! Put it in llm_api_key.txt or set LLM_API_KEY")
        self._token = token
        self._started_at = time.time()

        self._app = (
            Application.builder()
            .token(token)
            .concurrent_updates(True)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )
        self._dispatcher = self.build_dispatcher(self._app)
        self._setup_handlers()

        self._episodic.record(
            "telegram_bot_started",
            {
                "profile": self._profile.name,
                "llm_model": self._llm_model,
                "llm_base_url": self._llm_base_url,
            },
            decision="allow",
        )
        # run_polling owns the event loop and installs signal handlers.
        self._app.run_polling(drop_pending_updates=False, allowed_updates=Update.ALL_TYPES)

    async def _post_init(self, app: Application) -> None:
        assert self._dispatcher is not None
        self._housekeeping_task = asyncio.create_task(
            self._dispatcher.run_housekeeping(self._profile.housekeeping_interval_seconds)
        )

    async def _post_shutdown(self, app: Application) -> None:
        task = self._housekeeping_task
        self._housekeeping_task = None
        if task is None:
            return
        if task.done():
            exc = task.exception() if not task.cancelled() else None
            if exc is not None:
                self._episodic.record(
                    "housekeeping_stopped",
                    {"error_class": type(exc).__name__, "error": str(exc)},
                    decision="deny",
                )
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def stop(self) -> None:
        self._app = None
        self._dispatcher = None
        if self._token:
            self._episodic.record(
                "telegram_bot_stopped",
                {"profile": self._profile.name, "uptime": int(time.time() - self._started_at)},
                decision="allow",
            )
        self._token = None

    def _setup_handlers(self) -> None:
        assert self._app is not None
        self._app.add_handler(CommandHandler("start", self._cmd_start))
        self._app.add_handler(CommandHandler("help", self._cmd_help))
        self._app.add_handler(CommandHandler("context", self._cmd_context))
        self._app.add_handler(CommandHandler("role", self._cmd_role))
        # Unregistered commands reach the dispatcher too, which ignores them
        # unless the chat is awaiting a role description.
        self._app.add_handler(MessageHandler(filters.TEXT | filters.PHOTO, self._handle_message))
        self._app.add_error_handler(self._on_error)

    async def _take_as_role_input(self, update: Update) -> bool:
        """Route a command to the dispatcher when the chat is awaiting a role."""
        if update.effective_chat is None or self._dispatcher is None:
            return False
        if not self._dispatcher.awaiting_role(update.effective_chat.id):
            return False
        event = event_from_update(update)
        if event is not None:
            await self._dispatcher.handle(event)
        return True

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_chat is None or self._dispatcher is None:
            return
        if await self._take_as_role_input(update):
            return
        await self._dispatcher.start(update.effective_chat.id)

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is None:
            return
        if await self._take_as_role_input(update):
            return
        await update.effective_message.reply_text(HELP_TEXT, reply_markup=main_keyboard())

    async def _cmd_context(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_chat is None or self._dispatcher is None:
            return
        if await self._take_as_role_input(update):
            return
        await self._dispatcher.show_context(update.effective_chat.id)

    async def _cmd_role(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_chat is None or self._dispatcher is None:
            return
        if await self._take_as_role_input(update):
            return
        await self._dispatcher.change_role(update.effective_chat.id)

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        event = event_from_update(update)
        if event is None or self._dispatcher is None:
            return
        await self._dispatcher.handle(event)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat_id = None
        if isinstance(update, Update) and update.effective_chat is not None:
            chat_id = update.effective_chat.id
        self._episodic.record(
            "telegram_update_error",
            {"error_class": type(context.error).__name__, "error": str(context.error)},
            chat_id=chat_id,
            decision="deny",
        )
