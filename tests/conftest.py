from __future__ import annotations

import pytest

from fakes import FakeAttachments, FakeMultiplexer
from termdock.config import RegistrySettings
from termdock.terminal import TerminalRegistry


@pytest.fixture
def attachments() -> FakeAttachments:
    return FakeAttachments()


@pytest.fixture
def multiplexer() -> FakeMultiplexer:
    return FakeMultiplexer()


@pytest.fixture
def registry(attachments: FakeAttachments, multiplexer: FakeMultiplexer) -> TerminalRegistry:
    return TerminalRegistry(attachments, multiplexer, settings=RegistrySettings(session_prefix="td"))
