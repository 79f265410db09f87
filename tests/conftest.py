"""Shared pytest fixtures."""

import pytest

from mailsweep.mail.types import Message
from mailsweep.storage.memory import InMemoryEmailMemory
from tests.factories import make_message


@pytest.fixture
def memory() -> InMemoryEmailMemory:
    return InMemoryEmailMemory()


@pytest.fixture
def sample_message() -> Message:
    return make_message()
