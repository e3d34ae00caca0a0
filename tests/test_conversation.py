import threading
from decimal import Decimal

import pytest

from conversation import (
    FIELD_ARRIVAL_DATE,
    FIELD_PRICE,
    MSG_BAD_ARRIVAL_DATE,
    MSG_BAD_PRICE_FORMAT,
    MSG_LISTING_GONE,
    MSG_PRICE_NOT_POSITIVE,
    MSG_PRICE_SET,
    MSG_PRICE_TOO_LARGE,
    ConversationStateMachine,
    parse_price,
    validate_arrival_date,
)
from errors import ValidationError
from models import STATUS_AVAILABLE, STATUS_DRAFT, NewListing

OPERATOR = 1001


@pytest.fixture
def draft_id(repo):
    return repo.create(NewListing(title="Honda CB500X 2021", source_url="https://jmmoto.ru/moto/1"))


def test_idle_operator_is_not_consumed(conversations):
    reply = conversations.handle(OPERATOR, "hello")
    assert reply.consumed is False


def test_price_then_arrival_date(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)

    reply = conversations.handle(OPERATOR, "500000")
    assert reply.text == MSG_PRICE_SET
    assert reply.pending == FIELD_ARRIVAL_DATE
    assert repo.get(draft_id).price == Decimal("500000")
    assert repo.get(draft_id).status == STATUS_DRAFT

    reply = conversations.handle(OPERATOR, "15 февраля")
    assert reply.pending is None
    assert "Honda CB500X 2021" in reply.text
    assert "15 февраля" in reply.text

    listing = repo.get(draft_id)
    assert listing.status == STATUS_AVAILABLE
    assert listing.attributes.arrival_date == "15 февраля"
    assert conversations.pending(OPERATOR) is None


def test_bad_price_keeps_waiting(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)

    reply = conversations.handle(OPERATOR, "abc")
    assert reply.invalid_input
    assert reply.text == MSG_BAD_PRICE_FORMAT
    assert conversations.pending(OPERATOR).field == FIELD_PRICE
    assert repo.get(draft_id).price == Decimal("0")

    reply = conversations.handle(OPERATOR, "0")
    assert reply.text == MSG_PRICE_NOT_POSITIVE
    assert repo.get(draft_id).price == Decimal("0")


def test_bad_arrival_date_keeps_waiting(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)
    conversations.handle(OPERATOR, "500000")

    for text in ("", "   ", "x" * 201):
        reply = conversations.handle(OPERATOR, text)
        assert reply.text == MSG_BAD_ARRIVAL_DATE
        assert conversations.pending(OPERATOR).field == FIELD_ARRIVAL_DATE

    assert repo.get(draft_id).status == STATUS_DRAFT

    reply = conversations.handle(OPERATOR, "x" * 200)
    assert repo.get(draft_id).status == STATUS_AVAILABLE


def test_parse_price():
    assert parse_price("500000") == Decimal("500000")
    assert parse_price(" 1 250 000 ") == Decimal("1250000")
    assert parse_price("1 250 000") == Decimal("1250000")
    assert parse_price("499999.99") == Decimal("499999.99")
    assert parse_price("499999,99") == Decimal("499999.99")
    for bad in ("", "abc", "NaN", "Infinity", "500 000 руб", "1e5", "+5", "-5", "5.", "1.234"):
        with pytest.raises(ValidationError):
            parse_price(bad)


def test_huge_price_is_rejected(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)

    for text in ("1e999999999", "1" * 40):
        reply = conversations.handle(OPERATOR, text)
        assert reply.invalid_input
        assert conversations.pending(OPERATOR).field == FIELD_PRICE

    assert conversations.handle(OPERATOR, "1" * 40).text == MSG_PRICE_TOO_LARGE
    assert repo.get(draft_id).price == Decimal("0")


def test_exponent_reply_is_not_committed(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)

    reply = conversations.handle(OPERATOR, "1e5")

    assert reply.text == MSG_BAD_PRICE_FORMAT
    assert repo.get(draft_id).price == Decimal("0")


def test_validate_arrival_date_stores_verbatim():
    assert validate_arrival_date("  через неделю ") == "  через неделю "


def test_begin_replaces_previous_record(conversations, repo, draft_id):
    other_id = repo.create(NewListing(title="Yamaha MT-07", source_url="https://jmmoto.ru/moto/2"))
    conversations.begin(OPERATOR, draft_id)

    previous = conversations.begin(OPERATOR, other_id)

    assert previous.listing_id == draft_id
    assert conversations.pending(OPERATOR).listing_id == other_id
    assert repo.get(draft_id).status == STATUS_DRAFT


def test_abandon_leaves_draft(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)

    assert conversations.abandon(OPERATOR).listing_id == draft_id
    assert conversations.abandon(OPERATOR) is None
    assert conversations.handle(OPERATOR, "500000").consumed is False
    assert repo.get(draft_id).price == Decimal("0")


def test_deleted_draft_drops_conversation(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)
    repo.delete(draft_id)

    reply = conversations.handle(OPERATOR, "500000")

    assert reply.text == MSG_LISTING_GONE
    assert conversations.pending(OPERATOR) is None


def test_expire_idle(repo, draft_id):
    clock = {"now": 100.0}
    machine = ConversationStateMachine(repo, pending_ttl=60, clock=lambda: clock["now"])
    machine.begin(OPERATOR, draft_id)
    machine.begin(OPERATOR + 1, draft_id)

    assert machine.expire_idle(now=150.0) == []

    clock["now"] = 150.0
    machine.handle(OPERATOR + 1, "500000")

    expired = machine.expire_idle(now=170.0)
    assert [operator for operator, _ in expired] == [OPERATOR]
    assert machine.pending(OPERATOR) is None
    assert machine.pending(OPERATOR + 1).field == FIELD_ARRIVAL_DATE


def test_expiry_disabled_by_default(conversations, draft_id):
    conversations.begin(OPERATOR, draft_id)
    assert conversations.expire_idle(now=1e12) == []


def test_operators_are_independent(conversations, repo):
    ids = [
        repo.create(NewListing(title=f"Bike {i}", source_url=f"https://jmmoto.ru/moto/{i}"))
        for i in range(8)
    ]
    for operator, listing_id in enumerate(ids):
        conversations.begin(operator, listing_id)

    def answer(operator):
        conversations.handle(operator, str(1000 * (operator + 1)))
        conversations.handle(operator, f"day {operator}")

    threads = [threading.Thread(target=answer, args=(op,)) for op in range(len(ids))]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for operator, listing_id in enumerate(ids):
        listing = repo.get(listing_id)
        assert listing.status == STATUS_AVAILABLE
        assert listing.price == Decimal(1000 * (operator + 1))
        assert listing.attributes.arrival_date == f"day {operator}"
    assert len(conversations.store) == 0


def test_same_operator_concurrent_replies(conversations, repo, draft_id):
    conversations.begin(OPERATOR, draft_id)
    barrier = threading.Barrier(4)
    replies = []
    errors = []

    def answer(text):
        barrier.wait()
        try:
            replies.append(conversations.handle(OPERATOR, text))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=answer, args=(str(price),))
               for price in (500000, 600000, 700000, 800000)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(replies) == 4
    assert len(conversations.store) <= 1

    prices = {Decimal(p) for p in (500000, 600000, 700000, 800000)}
    listing = repo.get(draft_id)
    assert listing.price in prices

    # A reply that lands after the price was taken counts as the arrival date
    record = conversations.pending(OPERATOR)
    if listing.status == STATUS_AVAILABLE:
        assert record is None
        assert Decimal(listing.attributes.arrival_date) in prices
    else:
        assert listing.status == STATUS_DRAFT
        assert record.listing_id == draft_id
        assert record.field == FIELD_ARRIVAL_DATE
