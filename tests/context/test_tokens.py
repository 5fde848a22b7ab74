# tests/context/test_tokens.py
"""
Tests for the token estimator.

Covers:
- CJK vs non-CJK cost split and the fixed overhead
- Image, tool-use and tool-result block costs
- Message-level estimation for string and block content
"""

import json
import math
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from llmcontext.context.tokens import (
    IMAGE_TOKEN_COST,
    TEXT_OVERHEAD_TOKENS,
    estimate_block_tokens,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_text_tokens,
)
from llmcontext.models import (
    ImageBlock,
    ImageSource,
    Message,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


class TestEstimateTextTokens:
    def test_empty_text_costs_nothing(self):
        assert estimate_text_tokens("") == 0

    def test_ascii_text(self):
        text = "hello world"  # 11 chars
        assert estimate_text_tokens(text) == math.ceil(11 / 2.5) + TEXT_OVERHEAD_TOKENS

    def test_cjk_text(self):
        text = "你好世界"
        assert estimate_text_tokens(text) == math.ceil(4 * 1.3) + TEXT_OVERHEAD_TOKENS

    def test_mixed_text(self):
        text = "部署 deploy"  # 2 CJK, 7 other
        assert estimate_text_tokens(text) == math.ceil(2 * 1.3) + math.ceil(7 / 2.5) + TEXT_OVERHEAD_TOKENS

    @pytest.mark.parametrize("text", ["ひらがな", "カタカナ", "한국어", "ＡＢＣ"])
    def test_other_cjk_ranges_count_as_cjk(self, text):
        assert estimate_text_tokens(text) == math.ceil(len(text) * 1.3) + TEXT_OVERHEAD_TOKENS

    def test_cjk_costs_more_than_latin_per_char(self):
        assert estimate_text_tokens("中" * 50) > estimate_text_tokens("a" * 50)


class TestEstimateBlockTokens:
    def test_image_is_fixed_cost(self):
        block = ImageBlock(source=ImageSource(type="base64", media_type="image/png", data="A" * 100_000))
        assert estimate_block_tokens(block) == IMAGE_TOKEN_COST

    def test_tool_use_is_stringified(self):
        block = ToolUseBlock(id="t1", name="search", input={"q": "deploy logs"})
        expected = estimate_text_tokens(json.dumps({"name": "search", "input": {"q": "deploy logs"}}))
        assert estimate_block_tokens(block) == expected

    def test_tool_result_string(self):
        block = ToolResultBlock(tool_use_id="t1", content="x" * 100)
        assert estimate_block_tokens(block) == estimate_text_tokens("x" * 100)

    def test_tool_result_nested_blocks_are_summed(self):
        block = ToolResultBlock(
            tool_use_id="t1",
            content=[{"type": "text", "text": "result text"}, {"type": "image", "source": {"type": "url", "url": "https://x"}}],
        )
        assert estimate_block_tokens(block) == estimate_text_tokens("result text") + IMAGE_TOKEN_COST

    def test_tool_result_json_payload(self):
        block = ToolResultBlock(tool_use_id="t1", content={"rows": [1, 2, 3]})
        assert estimate_block_tokens(block) == estimate_text_tokens(json.dumps({"rows": [1, 2, 3]}))

    def test_unknown_shape_never_raises(self):
        assert estimate_block_tokens({"type": "document", "payload": object()}) > 0


class TestEstimateMessageTokens:
    def test_string_content(self):
        message = Message(role=Role.USER, content="hello there")
        assert estimate_message_tokens(message) == estimate_text_tokens("hello there")

    def test_block_content(self):
        message = Message(role=Role.ASSISTANT, content=[TextBlock(text="a"), TextBlock(text="b")])
        assert estimate_message_tokens(message) == 2 * estimate_text_tokens("a")

    def test_many_messages(self):
        messages = [Message(role=Role.USER, content="one"), Message(role=Role.ASSISTANT, content="two")]
        assert estimate_messages_tokens(messages) == estimate_text_tokens("one") + estimate_text_tokens("two")
