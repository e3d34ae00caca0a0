"""Per-operator conversation that collects price and arrival date for a fresh draft.

States: idle -> awaiting price -> awaiting arrival date -> idle. The pending record for
each operator lives only in memory and is lost on restart.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Hashable, Optional

from config import ARRIVAL_DATE_MAX_LENGTH, MAX_PRICE, PENDING_TTL
from db import ListingRepo
from errors import IngestError, InvalidTransitionError, NotFoundError, ValidationError
from models import Listing, STATUS_AVAILABLE

logger = logging.getLogger(__name__)

FIELD_PRICE = "price"
FIELD_ARRIVAL_DATE = "arrival_date"

# Digits with an optional fraction of up to two places, after separators are stripped
PRICE_RE = re.compile(r"^[0-9]+(?:\.[0-9]{1,2})?$")

PROMPT_PRICE = "💰 Введите цену в рублях (только число, например: 500000)"
PROMPT_ARRIVAL_DATE = (
    "📅 Когда прибудет мотоцикл? (введите дату в любом формате, "
    "например: \"15 февраля\" или \"через неделю\")"
)
MSG_BAD_PRICE_FORMAT = "❌ Неверный формат цены.\n💰 Введите число, например: 500000"
MSG_PRICE_NOT_POSITIVE = "❌ Цена должна быть больше нуля.\n💰 Введите корректную сумму"
MSG_PRICE_TOO_LARGE = "❌ Слишком большая сумма.\n💰 Проверьте цену и введите её ещё раз"
MSG_BAD_ARRIVAL_DATE = (
    "❌ Дата слишком длинная или пустая.\n"
    "📅 Введите дату прибытия (например: \"15 февраля\" или \"через неделю\")"
)
MSG_PRICE_SET = "✅ Цена установлена!\n\n" + PROMPT_ARRIVAL_DATE
MSG_UPDATE_FAILED = "❌ Ошибка при обновлении мотоцикла. Попробуйте отправить ответ ещё раз."
MSG_LISTING_GONE = "⚠️ Черновик больше не доступен. Отправьте ссылку заново."


@dataclass(frozen=True)
class PendingField:
    listing_id: str
    field: str
    armed_at: float


@dataclass
class Reply:
    """Outcome of one inbound message. ``consumed`` is False when the operator was idle."""
    consumed: bool
    text: str = ""
    pending: Optional[str] = None
    listing: Optional[Listing] = None
    invalid_input: bool = False


class PendingStore:
    """Lock-guarded map of operator id -> PendingField with atomic updates."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[Hashable, PendingField] = {}

    def get(self, operator) -> Optional[PendingField]:
        with self._lock:
            return self._records.get(operator)

    def put(self, operator, record: PendingField) -> Optional[PendingField]:
        """Store ``record`` and return whatever it replaced."""
        with self._lock:
            previous = self._records.get(operator)
            self._records[operator] = record
            return previous

    def pop(self, operator) -> Optional[PendingField]:
        with self._lock:
            return self._records.pop(operator, None)

    def compare_and_set(self, operator, expected: PendingField, record: PendingField) -> bool:
        with self._lock:
            if self._records.get(operator) != expected:
                return False
            self._records[operator] = record
            return True

    def compare_and_delete(self, operator, expected: PendingField) -> bool:
        with self._lock:
            if self._records.get(operator) != expected:
                return False
            del self._records[operator]
            return True

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def parse_price(text: str) -> Decimal:
    """Whole roubles or kopecks: "500000", "1 250 000", "499999,99"."""
    cleaned = (text or "").strip().replace("\u00a0", "").replace(" ", "").replace(",", ".")
    if not PRICE_RE.match(cleaned):
        raise ValidationError(MSG_BAD_PRICE_FORMAT)
    price = Decimal(cleaned)
    if price <= 0:
        raise ValidationError(MSG_PRICE_NOT_POSITIVE)
    if price > MAX_PRICE:
        raise ValidationError(MSG_PRICE_TOO_LARGE)
    return price


def validate_arrival_date(text: str, max_length: int = ARRIVAL_DATE_MAX_LENGTH) -> str:
    if not text or not text.strip() or len(text) > max_length:
        raise ValidationError(MSG_BAD_ARRIVAL_DATE)
    return text


def format_published(listing: Listing) -> str:
    arrival = listing.attributes.arrival_date or ""
    return (
        "🎉 Мотоцикл успешно добавлен в каталог!\n\n"
        f"🏍️ {listing.title}\n"
        f"💰 Цена: {listing.price:.0f} ₽\n"
        f"📅 Дата прибытия: {arrival}\n"
        f"📊 Статус: {listing.status}\n\n"
        "✨ Теперь он доступен в мини-приложении!"
    )


class ConversationStateMachine:
    def __init__(self, repo: ListingRepo,
                 max_date_length: int = ARRIVAL_DATE_MAX_LENGTH,
                 pending_ttl: float = PENDING_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.repo = repo
        self.max_date_length = max_date_length
        self.pending_ttl = pending_ttl
        self.clock = clock
        self.store = PendingStore()

    def begin(self, operator, listing_id: str) -> Optional[PendingField]:
        """Start asking for the price of ``listing_id``.

        Returns the pending record this replaces, if any. The replaced draft stays in
        the database untouched.
        """
        record = PendingField(listing_id=listing_id, field=FIELD_PRICE, armed_at=self.clock())
        previous = self.store.put(operator, record)
        if previous is not None and previous.listing_id != listing_id:
            logger.warning(
                f"Operator {operator} started {listing_id} while {previous.listing_id} "
                f"was awaiting {previous.field}; previous draft abandoned"
            )
        return previous

    def pending(self, operator) -> Optional[PendingField]:
        return self.store.get(operator)

    def abandon(self, operator) -> Optional[PendingField]:
        record = self.store.pop(operator)
        if record is not None:
            logger.info(f"Operator {operator} abandoned {record.listing_id} at {record.field}")
        return record

    def expire_idle(self, now: Optional[float] = None) -> list[tuple]:
        """Drop records armed longer than the TTL ago. Returns (operator, record) pairs."""
        if self.pending_ttl <= 0:
            return []
        now = self.clock() if now is None else now
        expired = []
        for operator, record in self.store.snapshot().items():
            if now - record.armed_at >= self.pending_ttl:
                if self.store.compare_and_delete(operator, record):
                    expired.append((operator, record))
                    logger.info(f"Conversation for {record.listing_id} expired (operator {operator})")
        return expired

    def handle(self, operator, text: str) -> Reply:
        record = self.store.get(operator)
        if record is None:
            return Reply(consumed=False)
        if record.field == FIELD_PRICE:
            return self._handle_price(operator, record, text)
        return self._handle_arrival_date(operator, record, text)

    def _handle_price(self, operator, record: PendingField, text: str) -> Reply:
        try:
            price = parse_price(text)
        except ValidationError as e:
            return Reply(consumed=True, text=str(e), pending=FIELD_PRICE, invalid_input=True)

        try:
            self.repo.patch(record.listing_id, {"price": price})
        except NotFoundError:
            self.store.compare_and_delete(operator, record)
            return Reply(consumed=True, text=MSG_LISTING_GONE)
        except IngestError as e:
            logger.error(f"Failed to set price for {record.listing_id}: {e}")
            return Reply(consumed=True, text=MSG_UPDATE_FAILED, pending=FIELD_PRICE)

        advanced = replace(record, field=FIELD_ARRIVAL_DATE, armed_at=self.clock())
        if not self.store.compare_and_set(operator, record, advanced):
            logger.info(f"Pending record for operator {operator} changed while setting price")
        logger.info(f"Price {price} set for {record.listing_id}")
        return Reply(consumed=True, text=MSG_PRICE_SET, pending=FIELD_ARRIVAL_DATE)

    def _handle_arrival_date(self, operator, record: PendingField, text: str) -> Reply:
        try:
            arrival_date = validate_arrival_date(text, self.max_date_length)
        except ValidationError as e:
            return Reply(consumed=True, text=str(e), pending=FIELD_ARRIVAL_DATE, invalid_input=True)

        try:
            self.repo.patch(record.listing_id, {
                "attributes": {"arrival_date": arrival_date},
                "status": STATUS_AVAILABLE,
            })
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning(f"Cannot publish {record.listing_id}: {e}")
            self.store.compare_and_delete(operator, record)
            return Reply(consumed=True, text=MSG_LISTING_GONE)
        except IngestError as e:
            logger.error(f"Failed to publish {record.listing_id}: {e}")
            return Reply(consumed=True, text=MSG_UPDATE_FAILED, pending=FIELD_ARRIVAL_DATE)

        self.store.compare_and_delete(operator, record)
        logger.info(f"Listing {record.listing_id} published by operator {operator}")

        try:
            listing = self.repo.get(record.listing_id)
        except IngestError as e:
            logger.error(f"Published {record.listing_id} but could not re-read it: {e}")
            return Reply(consumed=True, text="🎉 Мотоцикл успешно добавлен в каталог!")
        return Reply(consumed=True, text=format_published(listing), listing=listing)
