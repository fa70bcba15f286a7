import pytest

from valuation_agent.config import Config
from valuation_agent.agents.judge import (
    judge,
    build_messages,
    normalize_evaluation,
    _extract_json_object,
    FALLBACK_EVALUATION,
    NO_ANALYSIS,
    NO_SUGGESTIONS,
)


class FakeStreamResult:
    def __init__(self, chunks):
        self.chunks = chunks

    async def text_stream(self):
        for chunk in self.chunks:
            yield chunk


def fake_streamer(chunks, calls=None):
    def _streamer(messages, env):
        if calls is not None:
            calls.append(messages)
        return FakeStreamResult(chunks)
    return _streamer


@pytest.fixture
def env():
    e = Config()
    e.FILL_EMPTY_SUGGESTIONS = False
    return e


class TestMessageConstruction:
    """Test the prompts sent to the model"""

    def test_dom_messages(self):
        messages = build_messages("Center a div", '{"title": "x"}', kind="dom")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "HTML structure" in messages[0]["content"]
        assert "Only respond with valid JSON" in messages[0]["content"]
        assert messages[1]["content"] == 'Initial Requirements: Center a div\n\nWeb Page Structure: {"title": "x"}'

    def test_screenshot_messages_carry_image(self):
        messages = build_messages("Center a div", "data:image/jpeg;base64,aW1n", kind="screenshot")
        assert "screenshot" in messages[0]["content"]
        parts = messages[1]["content"]
        assert parts[0]["type"] == "text"
        assert "Center a div" in parts[0]["text"]
        assert parts[1] == {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,aW1n"}}


class TestJsonRecovery:
    """Test recovery of the JSON object from free-form model text"""

    def test_plain_object(self):
        assert _extract_json_object('{"matchScore": 10}') == {"matchScore": 10}

    def test_object_wrapped_in_prose(self):
        text = 'Sure! Here you go:\n```json\n{"matchScore": 75, "analysis": "ok"}\n```\nHope that helps.'
        assert _extract_json_object(text) == {"matchScore": 75, "analysis": "ok"}

    def test_no_braces(self):
        assert _extract_json_object("I cannot evaluate this.") is None

    def test_invalid_json(self):
        assert _extract_json_object('{"matchScore": 75,}') is None

    def test_empty_text(self):
        assert _extract_json_object("") is None
        assert _extract_json_object(None) is None


class TestNormalization:
    """Test field-level defaulting of parsed answers"""

    def test_missing_fields_default(self):
        result = normalize_evaluation({})
        assert result.match_score == 0
        assert result.analysis == NO_ANALYSIS
        assert result.suggestions == NO_SUGGESTIONS

    def test_score_clamped(self):
        assert normalize_evaluation({"matchScore": 140}).match_score == 100
        assert normalize_evaluation({"matchScore": -5}).match_score == 0

    def test_non_numeric_score(self):
        assert normalize_evaluation({"matchScore": "high"}).match_score == 0
        assert normalize_evaluation({"matchScore": True}).match_score == 0

    def test_numeric_string_score(self):
        assert normalize_evaluation({"matchScore": "85"}).match_score == 85

    def test_empty_suggestions_preserved_by_default(self):
        """An explicit empty list means the model had nothing to suggest"""
        result = normalize_evaluation({"matchScore": 95, "analysis": "done", "suggestions": []})
        assert result.suggestions == []

    def test_empty_suggestions_filled_when_configured(self):
        result = normalize_evaluation({"suggestions": []}, fill_empty_suggestions=True)
        assert result.suggestions == NO_SUGGESTIONS

    def test_string_suggestion_wrapped(self):
        assert normalize_evaluation({"suggestions": "Add padding"}).suggestions == ["Add padding"]

    def test_unparseable_uses_fallback(self):
        result = normalize_evaluation(None)
        assert result.match_score == 0
        assert result.analysis == FALLBACK_EVALUATION["analysis"]
        assert result.suggestions == FALLBACK_EVALUATION["suggestions"]


@pytest.mark.asyncio
class TestJudge:
    """Test the end-to-end judge call with a stubbed model stream"""

    async def test_streamed_chunks_are_joined(self, env):
        """The JSON may arrive split across many chunks"""
        chunks = ['{"match', 'Score": 88, "anal', 'ysis": "Centered', ' well", "suggestions": ["Add a border"]}']
        result = await judge("Center a div", "{}", env=env, streamer=fake_streamer(chunks))
        assert result.match_score == 88
        assert result.analysis == "Centered well"
        assert result.suggestions == ["Add a border"]

    async def test_bytes_and_none_chunks(self, env):
        chunks = [b'{"matchScore": ', None, b"42}"]
        result = await judge("req", "{}", env=env, streamer=fake_streamer(chunks))
        assert result.match_score == 42
        assert result.analysis == NO_ANALYSIS

    async def test_invalid_answer_falls_back(self, env):
        """Unparseable output never raises; it becomes the fallback evaluation"""
        result = await judge("req", "{}", env=env, streamer=fake_streamer(["not json at all"]))
        assert result.match_score == 0
        assert result.suggestions == FALLBACK_EVALUATION["suggestions"]

    async def test_screenshot_kind_sends_image(self, env):
        calls = []
        streamer = fake_streamer(['{"matchScore": 60, "analysis": "a", "suggestions": []}'], calls)
        await judge("req", "data:image/jpeg;base64,aW1n", kind="screenshot", env=env, streamer=streamer)
        user_content = calls[0][1]["content"]
        assert user_content[1]["image_url"]["url"] == "data:image/jpeg;base64,aW1n"

    async def test_fill_empty_suggestions_from_config(self, env):
        env.FILL_EMPTY_SUGGESTIONS = True
        streamer = fake_streamer(['{"matchScore": 90, "analysis": "a", "suggestions": []}'])
        result = await judge("req", "{}", env=env, streamer=streamer)
        assert result.suggestions == NO_SUGGESTIONS
