"""
Unit tests for token counting and JSON extraction from model responses.
"""
from adlingo.core import token_counter as token_counter_module
from adlingo.core.llm.utils.extraction import JsonExtractor
from adlingo.core.token_counter import TokenCounter


class TestTokenCounter:

    def test_falls_back_to_character_estimate(self, monkeypatch):
        def unavailable(name):
            raise OSError("download blocked")

        monkeypatch.setattr(token_counter_module.tiktoken, "get_encoding", unavailable)
        counter = TokenCounter()

        assert counter.count("x" * 40) == 11
        assert counter.method == "character_based"

    def test_encoder_loaded_once(self, monkeypatch):
        loads = []

        class Encoding:
            def encode(self, text, disallowed_special=()):
                return text.split()

        def get_encoding(name):
            loads.append(name)
            return Encoding()

        monkeypatch.setattr(token_counter_module.tiktoken, "get_encoding", get_encoding)
        counter = TokenCounter()

        assert counter.count("one two three") == 3
        assert counter.count("four five") == 2
        assert loads == ["cl100k_base"]

    def test_empty_text(self):
        assert TokenCounter().count("") == 0


class TestJsonExtractor:

    def test_plain_object(self):
        assert JsonExtractor().extract('{"t0": "Hej"}') == {"t0": "Hej"}

    def test_think_block_and_fence(self):
        response = '<think>translating...</think>\n```json\n{"b1": "Sov <strong>bättre</strong>"}\n```'

        assert JsonExtractor().extract(response) == {"b1": "Sov <strong>bättre</strong>"}

    def test_orphan_closing_think_tag(self):
        assert JsonExtractor().extract('truncated reasoning</think>{"a2": "Kudde"}') == {"a2": "Kudde"}

    def test_prose_around_object(self):
        assert JsonExtractor().extract('Here you go: {"t0": "Hej"} Enjoy!') == {"t0": "Hej"}

    def test_non_object_rejected(self):
        assert JsonExtractor().extract('["Hej"]') is None
        assert JsonExtractor().extract('no json at all') is None
