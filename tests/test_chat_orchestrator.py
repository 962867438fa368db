from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from stylist.chat import ChatOrchestrationError, ChatOrchestrator
from stylist.chat.multimodal import MultimodalPreprocessor
from stylist.chat.tooling import STYLIST_SYSTEM_PROMPT
from stylist.llm import UpstreamError
from stylist.schemas.chat import ChatRequest
from stylist.schemas.moodboard import Product
from stylist.services.product_search import ProductSearchError
from stylist.services.uploads import UploadStorage


def text_chunk(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}


def tool_chunk(*deltas: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
    return {
        "choices": [
            {"index": 0, "delta": {"tool_calls": list(deltas)}, "finish_reason": finish_reason}
        ]
    }


class FakeProxy:
    def __init__(self, hops: list[list[dict[str, Any]]], analysis: str = "Warm undertone.") -> None:
        self._hops = list(hops)
        self.stream_payloads: list[dict[str, Any]] = []
        self.complete = AsyncMock(
            return_value={"choices": [{"message": {"content": analysis}}]}
        )

    async def stream_chunks(self, payload: dict[str, Any]):
        self.stream_payloads.append(copy.deepcopy(payload))
        for chunk in self._hops.pop(0):
            yield chunk


def make_orchestrator(
    proxy: FakeProxy,
    tmp_path: Path,
    *,
    products: list[Product] | None = None,
    hop_limit: int = 8,
) -> tuple[ChatOrchestrator, AsyncMock]:
    search = AsyncMock()
    search.search = AsyncMock(return_value=products or [])
    orchestrator = ChatOrchestrator(
        proxy,  # type: ignore[arg-type]
        MultimodalPreprocessor(UploadStorage(tmp_path)),
        search,
        tool_hop_limit=hop_limit,
    )
    return orchestrator, search


async def run(orchestrator: ChatOrchestrator, body: dict[str, Any]) -> list[dict[str, str]]:
    history = await orchestrator.prepare_conversation(ChatRequest.model_validate(body))
    return [event async for event in orchestrator.stream_conversation(history)]


PRODUCT = Product(
    id="B01",
    name="Linen Shirt",
    image_url="https://cdn.example.com/shirt.jpg",
    buy_link="https://shop.example.com/B01",
    price="$29.99",
    is_prime=True,
)


@pytest.mark.asyncio
async def test_image_turn_runs_single_analysis_then_streams_text(tmp_path: Path) -> None:
    proxy = FakeProxy([[text_chunk("Great look!", "stop")]])
    orchestrator, _ = make_orchestrator(proxy, tmp_path)

    events = await run(
        orchestrator,
        {
            "messages": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "Hello!"},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": ""},
                        {"type": "image_url", "image_url": {"url": "https://cdn.example.com/me.jpg"}},
                    ],
                },
            ]
        },
    )

    assert proxy.complete.await_count == 1
    analysis_payload = proxy.complete.await_args.args[0]
    analysis_content = analysis_payload["messages"][0]["content"]
    assert analysis_content[1] == {
        "type": "image_url",
        "image_url": {"url": "https://cdn.example.com/me.jpg"},
    }
    assert "stylist" in analysis_content[0]["text"]

    [payload] = proxy.stream_payloads
    messages = payload["messages"]
    assert messages[0] == {"role": "system", "content": STYLIST_SYSTEM_PROMPT}
    assert messages[1:3] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello!"},
    ]
    assert messages[-1]["role"] == "user"
    assert "[Image Analysis: Warm undertone.]" in messages[-1]["content"]
    assert all(isinstance(message["content"], str) for message in messages)
    assert events[-1] == {"event": "message", "data": "[DONE]"}


@pytest.mark.asyncio
async def test_image_turn_keeps_user_text_before_analysis(tmp_path: Path) -> None:
    proxy = FakeProxy([[text_chunk("ok")]], analysis="Pear shape.")
    orchestrator, _ = make_orchestrator(proxy, tmp_path)

    await run(
        orchestrator,
        {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "What suits me?"},
                        {"type": "image_url", "image_url": "https://cdn.example.com/me.jpg"},
                    ],
                }
            ]
        },
    )

    last = proxy.stream_payloads[0]["messages"][-1]
    assert last["content"] == "What suits me?\n\n[Image Analysis: Pear shape.]"


@pytest.mark.asyncio
async def test_analysis_failure_aborts_request(tmp_path: Path) -> None:
    proxy = FakeProxy([])
    proxy.complete.side_effect = UpstreamError(500, "model down")
    orchestrator, _ = make_orchestrator(proxy, tmp_path)
    request = ChatRequest.model_validate(
        {
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "image_url", "image_url": {"url": "https://x/y.jpg"}}],
                }
            ]
        }
    )

    with pytest.raises(ChatOrchestrationError):
        await orchestrator.prepare_conversation(request)
    assert proxy.stream_payloads == []


@pytest.mark.asyncio
async def test_text_turn_skips_analysis_and_forwards_chunks_in_order(tmp_path: Path) -> None:
    chunks = [text_chunk("What "), text_chunk("occasion?", "stop")]
    proxy = FakeProxy([chunks])
    orchestrator, search = make_orchestrator(proxy, tmp_path)

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "I need an outfit"}]})

    proxy.complete.assert_not_awaited()
    search.search.assert_not_awaited()
    assert [json.loads(event["data"]) for event in events[:-1]] == chunks
    assert events[-1]["data"] == "[DONE]"
    payload = proxy.stream_payloads[0]
    assert payload["stream"] is True
    assert payload["tool_choice"] == "auto"
    assert payload["tools"][0]["function"]["name"] == "searchProducts"


@pytest.mark.asyncio
async def test_tool_calls_are_executed_and_fed_back_before_next_hop(tmp_path: Path) -> None:
    first_hop = [
        tool_chunk({"index": 0, "id": "call-1", "function": {"name": "searchProducts", "arguments": '{"query": "linen'}}),
        tool_chunk({"index": 0, "function": {"arguments": ' shirt", "itemType": "upper-body"}'}}, finish_reason="tool_calls"),
    ]
    second_hop = [text_chunk("Check these out!", "stop")]
    proxy = FakeProxy([first_hop, second_hop])
    orchestrator, search = make_orchestrator(proxy, tmp_path, products=[PRODUCT])

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "white linen shirt please"}]})

    search.search.assert_awaited_once_with("linen shirt upper-body")
    kinds = [(event["event"], json.loads(event["data"]).get("status") if event["event"] == "tool" else None) for event in events]
    assert kinds == [
        ("message", None),
        ("message", None),
        ("tool", "started"),
        ("tool", "finished"),
        ("message", None),
        ("message", None),
    ]
    finished = json.loads(events[3]["data"])
    assert finished["call_id"] == "call-1"
    assert finished["products"][0]["id"] == "B01"
    assert finished["products"][0]["imageUrl"] == PRODUCT.image_url

    follow_up = proxy.stream_payloads[1]["messages"]
    assistant, tool = follow_up[-2], follow_up[-1]
    assert assistant["tool_calls"][0]["function"] == {
        "name": "searchProducts",
        "arguments": '{"query": "linen shirt", "itemType": "upper-body"}',
    }
    assert tool["role"] == "tool"
    assert tool["tool_call_id"] == "call-1"
    assert json.loads(tool["content"])[0]["name"] == "Linen Shirt"


@pytest.mark.asyncio
async def test_empty_search_result_is_forwarded_not_an_error(tmp_path: Path) -> None:
    first_hop = [
        tool_chunk(
            {"index": 0, "id": "call-1", "function": {"name": "searchProducts", "arguments": '{"query": "purple tuxedo"}'}},
            finish_reason="tool_calls",
        )
    ]
    proxy = FakeProxy([first_hop, [text_chunk("Nothing matched, try another color?", "stop")]])
    orchestrator, _ = make_orchestrator(proxy, tmp_path, products=[])

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "purple tuxedo"}]})

    finished = json.loads(events[2]["data"])
    assert finished["status"] == "finished"
    assert finished["products"] == []
    assert proxy.stream_payloads[1]["messages"][-1]["content"] == "[]"


@pytest.mark.asyncio
async def test_search_failure_is_reported_to_model_as_tool_error(tmp_path: Path) -> None:
    first_hop = [
        tool_chunk(
            {"index": 0, "id": "call-1", "function": {"name": "searchProducts", "arguments": '{"query": "jeans"}'}},
            finish_reason="tool_calls",
        )
    ]
    proxy = FakeProxy([first_hop, [text_chunk("Search is down.", "stop")]])
    orchestrator, search = make_orchestrator(proxy, tmp_path)
    search.search.side_effect = ProductSearchError("catalog unavailable")

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "jeans"}]})

    error_event = json.loads(events[2]["data"])
    assert error_event["status"] == "error"
    assert error_event["result"] == "Tool error: catalog unavailable"
    assert proxy.stream_payloads[1]["messages"][-1]["tool_call_id"] == "call-1"
    assert events[-1]["data"] == "[DONE]"


@pytest.mark.asyncio
async def test_invalid_arguments_still_resolve_the_call(tmp_path: Path) -> None:
    first_hop = [
        tool_chunk(
            {"index": 0, "id": "call-1", "function": {"name": "searchProducts", "arguments": '{"itemType": "pants"}'}},
            finish_reason="tool_calls",
        )
    ]
    proxy = FakeProxy([first_hop, [text_chunk("Which pants?", "stop")]])
    orchestrator, search = make_orchestrator(proxy, tmp_path)

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "pants"}]})

    search.search.assert_not_awaited()
    assert json.loads(events[2]["data"])["status"] == "error"
    assert proxy.stream_payloads[1]["messages"][-1]["role"] == "tool"


@pytest.mark.asyncio
async def test_hop_limit_ends_with_a_tool_free_reply(tmp_path: Path) -> None:
    def hop(call_id: str) -> list[dict[str, Any]]:
        return [
            tool_chunk(
                {"index": 0, "id": call_id, "function": {"name": "searchProducts", "arguments": '{"query": "hat"}'}},
                finish_reason="tool_calls",
            )
        ]

    closing = text_chunk("I found a few hats above; want me to narrow it down?", finish_reason="stop")
    proxy = FakeProxy([hop("call-1"), hop("call-2"), [closing]])
    orchestrator, search = make_orchestrator(proxy, tmp_path, hop_limit=1)

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "hats"}]})

    assert search.search.await_count == 1
    assert len(proxy.stream_payloads) == 3
    assert "tools" in proxy.stream_payloads[1]
    final_payload = proxy.stream_payloads[2]
    assert "tools" not in final_payload
    assert "tool_choice" not in final_payload
    assert final_payload["messages"][-1] == {
        "role": "tool",
        "tool_call_id": "call-2",
        "content": "Tool execution stopped after hop limit",
    }

    limit_event = json.loads(events[-3]["data"])
    assert events[-3]["event"] == "tool"
    assert limit_event["status"] == "error"
    assert limit_event["call_id"] == "call-2"
    assert json.loads(events[-2]["data"]) == closing
    assert events[-1]["data"] == "[DONE]"


@pytest.mark.asyncio
async def test_tool_deltas_in_the_final_reply_are_ignored(tmp_path: Path) -> None:
    def hop(call_id: str) -> list[dict[str, Any]]:
        return [
            tool_chunk(
                {"index": 0, "id": call_id, "function": {"name": "searchProducts", "arguments": '{"query": "scarf"}'}},
                finish_reason="tool_calls",
            )
        ]

    proxy = FakeProxy([hop("call-1"), hop("call-2"), hop("call-3")])
    orchestrator, search = make_orchestrator(proxy, tmp_path, hop_limit=1)

    events = await run(orchestrator, {"messages": [{"role": "user", "content": "scarves"}]})

    assert search.search.await_count == 1
    assert len(proxy.stream_payloads) == 3
    assert events[-1]["data"] == "[DONE]"
    tool_statuses = [json.loads(e["data"])["status"] for e in events if e["event"] == "tool"]
    assert tool_statuses == ["started", "finished", "error"]
