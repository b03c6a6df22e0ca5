"""
Tests for rule and LLM extraction
"""

import json

from trendwire.extractor import (
    LLM_INPUT_LIMIT,
    collapse_whitespace,
    extract_content,
    extract_with_llm,
    extract_with_rules,
    looks_like_markup,
)
from trendwire.models import EXTRACTOR_LLM, EXTRACTOR_RULE


PAGE = """
<html>
  <head><title>New model</title><style>.x {color: red}</style></head>
  <body>
    <nav>Home | Products</nav>
    <script>track();</script>
    <h1>Smart Roof launched</h1>
    <p>Solar   tiles with
       battery storage.</p>
    <table><tr><th>Spec</th><th>Value</th></tr><tr><td>Output</td><td>5kW</td></tr></table>
    <img src="/img/roof.jpg" alt="Roof photo">
    <img alt="no source">
    <div class="advertisement">Buy now</div>
    <footer>Copyright</footer>
  </body>
</html>
"""


class TestRules:

    def test_plain_string_passes_through_collapsed(self):
        """Plain text with no markup is never an error"""
        result = extract_with_rules("  Price   revision\n\nannounced ")
        assert result.text == "Price revision announced"
        assert result.tables == []
        assert result.images == []
        assert result.extractor == EXTRACTOR_RULE

    def test_html_noise_is_removed(self):
        result = extract_with_rules(PAGE)
        assert "Smart Roof launched" in result.text
        assert "Solar tiles with battery storage." in result.text
        assert "track()" not in result.text
        assert "Home | Products" not in result.text
        assert "Buy now" not in result.text
        assert "Copyright" not in result.text

    def test_tables_and_images(self):
        result = extract_with_rules(PAGE)
        assert len(result.tables) == 1
        assert "<td>5kW</td>" in result.tables[0]
        assert result.images == [{"url": "/img/roof.jpg", "caption": "Roof photo"}]

    def test_markup_without_text_keeps_input(self):
        result = extract_with_rules("<div></div>")
        assert result.text == "<div></div>"

    def test_helpers(self):
        assert looks_like_markup("<p>x</p>")
        assert not looks_like_markup("3 < 5")
        assert collapse_whitespace(None) == ""


class TestLLMExtraction:

    def test_valid_answer_uses_llm(self, make_gateway):
        gateway = make_gateway({"extract": json.dumps({
            "text": "Smart  Roof launched",
            "tables": ["<tr><td>5kW</td></tr>"],
            "images": [{"url": "https://x/roof.jpg"}],
        })})
        result = extract_with_llm(PAGE, gateway)
        assert result.extractor == EXTRACTOR_LLM
        assert result.text == "Smart Roof launched"
        assert result.images == [{"url": "https://x/roof.jpg", "caption": ""}]

    def test_input_is_truncated(self, make_gateway):
        gateway = make_gateway()
        content = "a" * LLM_INPUT_LIMIT + "ZZZZZ"
        extract_with_llm(content, gateway)
        prompt = gateway.calls[0]["prompt"]
        assert "a" * LLM_INPUT_LIMIT in prompt
        assert "ZZZZZ" not in prompt

    def test_unparseable_answer_falls_back_to_rules(self, make_gateway):
        gateway = make_gateway({"extract": "I cannot do that"})
        result = extract_with_llm(PAGE, gateway)
        assert result.extractor == EXTRACTOR_RULE
        assert "Smart Roof launched" in result.text

    def test_empty_text_falls_back_to_rules(self, make_gateway):
        gateway = make_gateway({"extract": json.dumps({"text": "   "})})
        assert extract_with_llm("plain body", gateway).extractor == EXTRACTOR_RULE

    def test_gateway_error_falls_back_to_rules(self, make_gateway):
        def fail(prompt):
            raise RuntimeError("quota")

        result = extract_with_llm("plain body", make_gateway({"extract": fail}))
        assert result.extractor == EXTRACTOR_RULE
        assert result.text == "plain body"


class TestExtractContent:

    def test_rule_path_by_default(self, make_gateway):
        gateway = make_gateway()
        result = extract_content("<p>hello</p>", gateway=gateway)
        assert result.extractor == EXTRACTOR_RULE
        assert gateway.calls == []

    def test_llm_requested_without_gateway(self):
        assert extract_content("<p>hello</p>", use_llm=True).extractor == EXTRACTOR_RULE

    def test_llm_path(self, make_gateway):
        assert extract_content("<p>hello</p>", use_llm=True, gateway=make_gateway()).extractor == EXTRACTOR_LLM
