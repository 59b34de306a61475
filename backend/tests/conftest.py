"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Scripted speech capability shared by the session and shell tests.
"""
import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from minddump.db import Base
from minddump.speech import (
    PermissionState,
    RecognitionHandle,
    ResultBatch,
    SpeechCapability,
    TranscriptFragment,
)


class FakeStream(RecognitionHandle):
    def __init__(self, config, listener):
        self.config = config
        self.listener = listener
        self.stopped = False
        self.aborted = False

    async def stop(self):
        self.stopped = True

    async def abort(self):
        self.aborted = True

    async def results(self, result_index, *fragments):
        batch = ResultBatch(
            result_index=result_index,
            results=[TranscriptFragment(text=text, is_final=is_final) for text, is_final in fragments],
        )
        await self.listener.on_result(batch)


class FakeCapability(SpeechCapability):
    def __init__(self, available=True, permission=PermissionState.GRANTED, grant=True):
        self.available = available
        self.permission = permission
        self.grant = grant
        self.permission_gate: asyncio.Event | None = None
        self.permission_requests = 0
        self.fail_start = False
        self.start_delay = 0.0
        self.streams: list[FakeStream] = []

    def is_available(self):
        return self.available

    async def permission_state(self):
        return self.permission

    async def request_permission(self):
        self.permission_requests += 1
        if self.permission_gate is not None:
            await self.permission_gate.wait()
        if self.grant:
            self.permission = PermissionState.GRANTED
        return self.grant

    async def start_stream(self, config, listener):
        if self.fail_start:
            raise RuntimeError("recognizer busy")
        stream = FakeStream(config, listener)
        self.streams.append(stream)
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        return stream


@pytest.fixture
def make_capability():
    return FakeCapability


@pytest_asyncio.fixture()
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
