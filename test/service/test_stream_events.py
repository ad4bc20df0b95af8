import json

from comparison.models import ProviderResponse, ResponseState
from service.streaming import StreamEventFactory


def parse(sse: str) -> dict:
    assert sse.startswith("data: ")
    assert sse.endswith("\n\n")
    return json.loads(sse[len("data: "):])


class TestStreamEvents:
    def test_comparison_start(self):
        event = StreamEventFactory.comparison_start(
            session_id="s1", turn_id="t1", providers=[{"provider": "openai", "display_name": "OpenAI GPT-4o"}]
        )
        data = parse(event.to_sse_data())
        assert data["type"] == "comparison_start"
        assert data["providers"][0]["provider"] == "openai"
        assert "timestamp" in data

    def test_provider_response(self):
        response = ProviderResponse(provider="gemini", display_name="Gemini", content="hi",
                                    state=ResponseState.SUCCESS, latency_ms=120)
        data = parse(StreamEventFactory.provider_response("t1", response).to_sse_data())
        assert data["type"] == "provider_response"
        assert data["response"]["state"] == "success"
        assert data["response"]["content"] == "hi"

    def test_comparison_complete(self):
        data = parse(StreamEventFactory.comparison_complete("t1", "complete", 2, 1, cancelled=True).to_sse_data())
        assert data["type"] == "comparison_complete"
        assert (data["successful"], data["failed"], data["cancelled"]) == (2, 1, True)

    def test_error(self):
        data = parse(StreamEventFactory.error("boom", error_code="comparison_failed", turn_id="t1").to_sse_data())
        assert data["error_message"] == "boom"
        assert data["error_code"] == "comparison_failed"

    def test_stream_end(self):
        assert StreamEventFactory.stream_end().to_sse_data() == "data: [DONE]\n\n"
