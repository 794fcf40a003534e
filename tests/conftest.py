import pytest
import pytest_asyncio

from reflectai.database import init_database
from reflectai.entries import EntryStore
from reflectai.errors import AnalysisError, StorageError
from reflectai.moods import MoodAggregator
from reflectai.service import JournalComponents
from reflectai.tree import MemoryTreeBackend, is_within
from reflectai.users import StaticUserIdProvider, UserRepository


class FakeCompletion:
    """Stands in for CompletionClient: returns queued responses and records every call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    async def complete(self, messages, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if not self.responses:
            raise AnalysisError("No more fake responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self):
        self.closed = True


class FailingBackend(MemoryTreeBackend):
    """Memory backend whose reads and writes fail under the given path prefixes."""

    def __init__(self, fail_reads=(), fail_writes=()):
        super().__init__()
        self.fail_reads = list(fail_reads)
        self.fail_writes = list(fail_writes)

    def _check(self, path, prefixes):
        for prefix in prefixes:
            if is_within(path, prefix) or is_within(prefix, path):
                raise StorageError(f"Simulated failure at {path}", cause=ConnectionError("offline"))

    async def _read_rows(self, path):
        self._check(path, self.fail_reads)
        return await super()._read_rows(path)

    async def _write(self, path, leaves):
        self._check(path, self.fail_writes)
        await super()._write(path, leaves)

    async def _remove(self, path):
        self._check(path, self.fail_writes)
        await super()._remove(path)


@pytest.fixture()
def backend():
    return MemoryTreeBackend()


@pytest_asyncio.fixture()
async def sql_backend():
    backend = await init_database("sqlite+aiosqlite://")
    yield backend
    await backend.close()


@pytest_asyncio.fixture()
async def aggregator(backend):
    aggregator = MoodAggregator(backend, UserRepository(backend))
    yield aggregator
    await aggregator.aclose()


@pytest.fixture()
def store(backend, aggregator):
    return EntryStore(backend, aggregator, StaticUserIdProvider("u1"))


@pytest.fixture()
def completion():
    return FakeCompletion()


@pytest_asyncio.fixture()
async def components(backend, completion):
    components = JournalComponents(backend, completion)
    yield components
    await components.aclose()
