"""
Tests for the push channel: frame decoding, completion signalling,
reconnection backoff and socket cleanup.
"""

import asyncio
import json

import aiohttp
import pytest

from comfyflow.src.client.push_channel import (
    SUBSCRIBE_FRAME,
    ChannelState,
    PushChannel,
    channel_url,
)
from fixtures.comfy_fixtures import (
    TINY_PNG_B64,
    FakeConnector,
    FakeMessage,
    FakeWebSocket,
    RecordingSleep,
    executing_frame,
    progress_frame,
)

SERVER = "http://comfy:8188"


def make_channel(workflow, connector=None, sleep=None, **hooks):
    events = {"progress": [], "preview": [], "complete": 0}

    def on_complete():
        events["complete"] += 1

    channel = PushChannel(
        SERVER,
        "abc",
        workflow,
        on_progress=hooks.get("on_progress", events["progress"].append),
        on_preview=hooks.get("on_preview", events["preview"].append),
        on_complete=on_complete,
        connector=connector or FakeConnector(),
        sleep=sleep or RecordingSleep(),
    )
    return channel, events


def test_channel_url_swaps_scheme():
    assert channel_url("http://comfy:8188", "abc") == "ws://comfy:8188/ws?clientId=abc"
    assert channel_url("https://comfy.example.com/", "j1") == "wss://comfy.example.com/ws?clientId=j1"


class TestFrameDecoding:
    @pytest.mark.asyncio
    async def test_progress_ratio_is_forwarded_unclamped(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(progress_frame(5, 20))
        await channel.handle_frame(progress_frame(30, 20))
        assert events["progress"] == [0.25, 1.5]

    @pytest.mark.asyncio
    async def test_progress_with_zero_max_is_ignored(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(progress_frame(1, 0))
        assert events["progress"] == []

    @pytest.mark.asyncio
    async def test_inline_preview_becomes_data_url(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        frame = executing_frame(node="12", output={"images": [{"image": TINY_PNG_B64}]})
        await channel.handle_frame(frame)
        assert events["preview"] == [f"data:image/png;base64,{TINY_PNG_B64}"]

    @pytest.mark.asyncio
    async def test_preview_for_non_preview_node_is_ignored(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        frame = executing_frame(node="6", output={"images": [{"image": TINY_PNG_B64}]})
        await channel.handle_frame(frame)
        assert events["preview"] == []
        assert events["complete"] == 0

    @pytest.mark.asyncio
    async def test_invalid_base64_is_ignored(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(executing_frame(node="12", image="not base64!!"))
        assert events["preview"] == []

    @pytest.mark.asyncio
    async def test_empty_node_signals_completion_once(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(executing_frame(node=None))
        await channel.handle_frame(json.dumps({"type": "executing", "data": {}}))
        assert events["complete"] == 1
        assert channel.completed

    @pytest.mark.asyncio
    async def test_frames_for_other_jobs_are_ignored(self, preview_workflow):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(executing_frame(node=None, prompt_id="someone-else"))
        await channel.handle_frame(progress_frame(1, 2, prompt_id="someone-else"))
        assert events["complete"] == 0
        assert events["progress"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"type": "status"}', b"\x00\x01"])
    async def test_malformed_or_unknown_frames_are_ignored(self, preview_workflow, raw):
        channel, events = make_channel(preview_workflow)
        await channel.handle_frame(raw)
        assert events == {"progress": [], "preview": [], "complete": 0}

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_channel(self, preview_workflow):
        def broken(ratio):
            raise RuntimeError("ui went away")

        channel, events = make_channel(preview_workflow, on_progress=broken)
        await channel.handle_frame(progress_frame(1, 2))
        await channel.handle_frame(executing_frame(node=None))
        assert events["complete"] == 1


class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_subscribes_then_completes_and_closes(self, preview_workflow):
        socket = FakeWebSocket([progress_frame(1, 4), executing_frame(node=None)])
        connector = FakeConnector(socket)
        channel, events = make_channel(preview_workflow, connector=connector)

        channel.connect()
        await channel.wait_closed()

        assert connector.urls == ["ws://comfy:8188/ws?clientId=abc"]
        assert socket.sent == [SUBSCRIBE_FRAME]
        assert events["progress"] == [0.25]
        assert events["complete"] == 1
        assert socket.closed
        assert channel.state is ChannelState.CLOSED_CLEAN

    @pytest.mark.asyncio
    async def test_clean_close_does_not_reconnect(self, preview_workflow):
        connector = FakeConnector(FakeWebSocket([progress_frame(1, 2)]))
        sleep = RecordingSleep()
        channel, _ = make_channel(preview_workflow, connector=connector, sleep=sleep)

        channel.connect()
        await channel.wait_closed()

        assert len(connector.urls) == 1
        assert sleep.delays == []
        assert channel.state is ChannelState.CLOSED_CLEAN

    @pytest.mark.asyncio
    async def test_gives_up_after_2_4_8_second_backoff(self, preview_workflow):
        errors = [aiohttp.ClientConnectionError("refused") for _ in range(4)]
        connector = FakeConnector(*errors)
        sleep = RecordingSleep()
        channel, events = make_channel(preview_workflow, connector=connector, sleep=sleep)

        channel.connect()
        await channel.wait_closed()

        assert sleep.delays == [2, 4, 8]
        assert len(connector.urls) == 4
        assert channel.state is ChannelState.GAVE_UP
        assert events["complete"] == 0

    @pytest.mark.asyncio
    async def test_unclean_close_reconnects(self, preview_workflow):
        dropped = FakeWebSocket([progress_frame(1, 2)], end_close_code=aiohttp.WSCloseCode.ABNORMAL_CLOSURE)
        resumed = FakeWebSocket([executing_frame(node=None)])
        connector = FakeConnector(dropped, resumed)
        sleep = RecordingSleep()
        channel, events = make_channel(preview_workflow, connector=connector, sleep=sleep)

        channel.connect()
        await channel.wait_closed()

        assert sleep.delays == [2]
        assert resumed.sent == [SUBSCRIBE_FRAME]
        assert events["complete"] == 1
        assert dropped.closed and resumed.closed

    @pytest.mark.asyncio
    async def test_error_frame_reconnects(self, preview_workflow):
        errored = FakeWebSocket([FakeMessage(aiohttp.WSMsgType.ERROR, RuntimeError("boom"), None)])
        connector = FakeConnector(errored, FakeWebSocket([executing_frame(node=None)]))
        sleep = RecordingSleep()
        channel, events = make_channel(preview_workflow, connector=connector, sleep=sleep)

        channel.connect()
        await channel.wait_closed()

        assert sleep.delays == [2]
        assert errored.closed
        assert events["complete"] == 1

    @pytest.mark.asyncio
    async def test_close_releases_open_socket(self, preview_workflow):
        never_ends = FakeWebSocket([progress_frame(i, 100) for i in range(10_000)])
        channel, _ = make_channel(preview_workflow, connector=FakeConnector(never_ends))

        channel.connect()
        for _ in range(5):
            await asyncio.sleep(0)
        await channel.close()

        assert never_ends.sent == [SUBSCRIBE_FRAME]
        assert never_ends.closed
