"""Operator-facing Telegram bot: URL triggers and the price/arrival-date dialogue."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional
from urllib.parse import urlparse

from assembler import ListingAssembler
from config import BOT_WORKERS, TELEGRAM_POLL_TIMEOUT, VENDOR_HOSTS
from conversation import PROMPT_PRICE, ConversationStateMachine
from errors import IngestError, MediaAcquisitionError, TransportError
from notifier import TelegramClient

logger = logging.getLogger(__name__)

MSG_WELCOME_OPERATOR = (
    "👋 Добро пожаловать в админ-панель!\n\n"
    "🔗 Отправьте ссылку с jmmoto.ru, чтобы добавить новый мотоцикл в каталог"
)
MSG_WELCOME_USER = (
    "🏍️ Добро пожаловать в каталог мотоциклов!\n\n"
    "📱 Нажмите кнопку \"Каталог\" чтобы посмотреть доступные мотоциклы"
)
MSG_HINT_OPERATOR = "🔗 Отправьте ссылку с jmmoto.ru для добавления мотоцикла"
MSG_HINT_USER = "📱 Нажмите кнопку \"Каталог\" чтобы посмотреть доступные мотоциклы"
MSG_WRONG_SITE = "⚠️ Пожалуйста, отправьте ссылку с сайта jmmoto.ru"
MSG_PROCESSING = "🔄 Обрабатываю страницу и загружаю фотографии..."
MSG_BUSY = (
    "⏳ Сначала завершите добавление текущего мотоцикла "
    "или отправьте /cancel, чтобы оставить его черновиком."
)
MSG_CANCELLED = "🗑️ Добавление отменено. Мотоцикл остался черновиком."
MSG_NOTHING_TO_CANCEL = "Нет незавершённых действий."


def is_url(text: str) -> bool:
    parsed = urlparse(text)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class OperatorBot:
    """Routes inbound Telegram messages. Each update runs on a worker thread."""

    def __init__(self, client: TelegramClient, assembler: ListingAssembler,
                 conversations: ConversationStateMachine,
                 operator_ids: Iterable[int],
                 vendor_hosts: Iterable[str] = VENDOR_HOSTS,
                 workers: int = BOT_WORKERS,
                 poll_timeout: int = TELEGRAM_POLL_TIMEOUT):
        self.client = client
        self.assembler = assembler
        self.conversations = conversations
        self.operator_ids = frozenset(operator_ids)
        self.vendor_hosts = frozenset(h.lower() for h in vendor_hosts)
        self.workers = workers
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._offset: Optional[int] = None

    def is_operator(self, user_id: int) -> bool:
        return user_id in self.operator_ids

    def is_vendor_url(self, text: str) -> bool:
        return (urlparse(text).hostname or "").lower() in self.vendor_hosts

    def send(self, chat_id: int, text: str) -> Optional[int]:
        try:
            return self.client.send_text(chat_id, text)
        except TransportError as e:
            logger.error(f"Error sending message to {chat_id}: {e}")
            return None

    def edit(self, chat_id: int, message_id: Optional[int], text: str):
        if message_id is None:
            self.send(chat_id, text)
            return
        try:
            self.client.edit_text(chat_id, message_id, text)
        except TransportError as e:
            logger.error(f"Error editing message {message_id} in {chat_id}: {e}")

    # ── Routing ──────────────────────────────────────────────────

    def handle_update(self, update: dict):
        message = update.get("message") or {}
        text = message.get("text")
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if not text or "id" not in sender or "id" not in chat:
            return

        user_id = sender["id"]
        chat_id = chat["id"]
        command = text.strip()
        operator = self.is_operator(user_id)

        if command == "/start":
            self.send(chat_id, MSG_WELCOME_OPERATOR if operator else MSG_WELCOME_USER)
            return

        if command == "/cancel":
            record = self.conversations.abandon(user_id)
            self.send(chat_id, MSG_CANCELLED if record else MSG_NOTHING_TO_CANCEL)
            return

        if operator and is_url(command) and self.conversations.pending(user_id):
            self.send(chat_id, MSG_BUSY)
            return

        reply = self.conversations.handle(user_id, text)
        if reply.consumed:
            self.send(chat_id, reply.text)
            return

        if operator and is_url(command):
            if self.is_vendor_url(command):
                self.handle_url(chat_id, user_id, command)
            else:
                self.send(chat_id, MSG_WRONG_SITE)
            return

        self.send(chat_id, MSG_HINT_OPERATOR if operator else MSG_HINT_USER)

    def handle_url(self, chat_id: int, user_id: int, url: str):
        message_id = self.send(chat_id, MSG_PROCESSING)

        try:
            listing = self.assembler.create_from_url(user_id, url)
        except MediaAcquisitionError as e:
            logger.error(f"Error creating motorcycle from {url}: {e}")
            self.edit(chat_id, message_id,
                      f"❌ Не удалось загрузить фотографии: {e}\n"
                      f"Черновик {e.listing_id} сохранён без фото. Отправьте ссылку заново.")
            return
        except IngestError as e:
            logger.error(f"Error creating motorcycle from {url}: {e}")
            self.edit(chat_id, message_id, f"❌ Ошибка при обработке страницы: {e}")
            return

        previous = self.conversations.begin(user_id, listing.id)
        text = f"✅ Мотоцикл успешно добавлен:\n🏍️ {listing.title}\n\n{PROMPT_PRICE}"
        if previous is not None and previous.listing_id != listing.id:
            text = (f"⚠️ Предыдущий черновик {previous.listing_id} остался без ответа "
                    f"и сохранён как черновик.\n\n{text}")
        self.edit(chat_id, message_id, text)

    def _safe_handle(self, update: dict):
        try:
            self.handle_update(update)
        except Exception:
            logger.exception(f"Unhandled error for update {update.get('update_id')}")

    # ── Polling loop ─────────────────────────────────────────────

    def poll_once(self, executor: ThreadPoolExecutor) -> int:
        updates = self.client.get_updates(offset=self._offset, timeout=self.poll_timeout)
        for update in updates:
            self._offset = update["update_id"] + 1
            executor.submit(self._safe_handle, update)
        return len(updates)

    def run(self):
        """Poll until ``stop()``; in-flight updates finish before this returns."""
        logger.info(f"Bot polling started with {self.workers} workers")
        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="bot")
        try:
            while not self._stop.is_set():
                try:
                    self.poll_once(executor)
                except TransportError as e:
                    logger.warning(f"Polling failed: {e}")
                    self._stop.wait(5)
        finally:
            executor.shutdown(wait=True)
            logger.info("Bot polling stopped")

    def stop(self):
        self._stop.set()
