# tests/test_allocator.py
import asyncio
import itertools

import pytest

from tannery.allocator import ALPHABET, CODE_LENGTH, CODE_PATTERN, RequestNumberAllocator, generate_code
from tannery.errors import PersistenceError
from tannery.kinds.quote import QUOTE
from tannery.lifecycle import MAX_INSERT_ATTEMPTS, QuoteLifecycleEngine
from tannery.repositories.memory import InMemoryRepository


class YieldingRepository(InMemoryRepository):
    """Gives up the loop after every lookup so concurrent creates can both
    see a code as free before either inserts it."""

    async def find_one(self, filters):
        found = await super().find_one(filters)
        await asyncio.sleep(0)
        return found


def scripted(*codes):
    it = iter(codes)
    return lambda: next(it)


def test_generate_code_shape():
    for _ in range(200):
        code = generate_code()
        assert len(code) == CODE_LENGTH
        assert CODE_PATTERN.match(code)
        assert set(code) <= set(ALPHABET)


def test_allocator_skips_taken_codes():
    repo = InMemoryRepository()
    asyncio.run(repo.insert({"request_number": "AAAAAAAA"}))
    allocator = RequestNumberAllocator(repo, "quote", generator=scripted("AAAAAAAA", "AAAAAAAA", "BBBBBBBB"))

    assert asyncio.run(allocator.allocate()) == "BBBBBBBB"


def test_insert_conflict_triggers_reallocation(mailer, notifier, dispatcher, quote_payload):
    repo = YieldingRepository()
    allocator = RequestNumberAllocator(repo, "quote", generator=scripted("SAMECODE", "SAMECODE", "OTHER001"))
    engine = QuoteLifecycleEngine(QUOTE, repo, notifier, mailer, dispatcher, allocator=allocator)

    async def create_two():
        return await asyncio.gather(engine.create(quote_payload), engine.create(quote_payload))

    first, second = asyncio.run(create_two())

    assert {first["request_number"], second["request_number"]} == {"SAMECODE", "OTHER001"}
    assert len(mailer.sent) == 2


def test_insert_conflict_gives_up_after_bound(mailer, notifier, dispatcher, quote_payload):
    repo = InMemoryRepository()
    asyncio.run(repo.insert({"request_number": "STUCK000"}))

    class BlindRepository(InMemoryRepository):
        async def find_one(self, filters):
            return None

    blind = BlindRepository()
    blind._store = repo._store
    allocator = RequestNumberAllocator(blind, "quote", generator=itertools.repeat("STUCK000").__next__)
    engine = QuoteLifecycleEngine(QUOTE, blind, notifier, mailer, dispatcher, allocator=allocator)

    with pytest.raises(PersistenceError) as exc:
        asyncio.run(engine.create(quote_payload))

    assert exc.value.details["attempts"] == MAX_INSERT_ATTEMPTS
    assert notifier.created == []
    assert mailer.sent == []


def test_concurrent_creation_yields_unique_numbers(mailer, notifier, dispatcher, quote_payload):
    repo = YieldingRepository()
    engine = QuoteLifecycleEngine(QUOTE, repo, notifier, mailer, dispatcher)

    async def create_many():
        return await asyncio.gather(*[engine.create(quote_payload) for _ in range(50)])

    created = asyncio.run(create_many())
    numbers = [q["request_number"] for q in created]

    assert len(set(numbers)) == 50
    assert all(CODE_PATTERN.match(n) for n in numbers)
    assert asyncio.run(repo.count({})) == 50
