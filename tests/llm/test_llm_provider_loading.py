import os
import unittest

from aeye.core.errors import ValidationError
from aeye.llm._json_extract import extract_first_json_object, strip_code_fence
from aeye.llm.anthropic_messages import AnthropicMessagesProvider
from aeye.llm.openai_responses import OpenAIResponsesProvider
from aeye.llm.provider_loading import load_model_provider


class _EnvKey:
    def __init__(self, name: str, value):
        self.name = name
        self.value = value

    def __enter__(self):
        self.old = os.environ.get(self.name)
        if self.value is None:
            os.environ.pop(self.name, None)
        else:
            os.environ[self.name] = self.value
        return self

    def __exit__(self, *exc):
        if self.old is None:
            os.environ.pop(self.name, None)
        else:
            os.environ[self.name] = self.old


class TestProviderLoading(unittest.TestCase):
    def test_load_anthropic_provider_and_missing_key_error(self) -> None:
        with _EnvKey("ANTHROPIC_API_KEY", None):
            loaded = load_model_provider(provider="anthropic.messages", model="claude-sonnet-4-5")
            self.assertEqual(loaded.provider_id, "anthropic.messages")
            with self.assertRaises(ValidationError) as ctx:
                loaded.provider.complete(system_prompt="sys", input_text="hi")
            self.assertEqual(ctx.exception.code, "llm.missing_api_key")
            self.assertIn("ANTHROPIC_API_KEY", str(ctx.exception))

    def test_load_openai_provider_with_custom_key_env(self) -> None:
        with _EnvKey("MY_OPENAI_KEY", None):
            loaded = load_model_provider(provider="openai", model="gpt-4o-mini", api_key_env="MY_OPENAI_KEY")
            self.assertEqual(loaded.provider_id, "openai.responses")
            with self.assertRaises(ValidationError) as ctx:
                loaded.provider.complete(system_prompt="sys", input_text="hi")
            self.assertIn("MY_OPENAI_KEY", str(ctx.exception))

    def test_dynamic_provider(self) -> None:
        loaded = load_model_provider(provider="aeye.llm.testing:ModelAsTextProvider", model="echo")
        self.assertEqual(loaded.provider.complete(system_prompt="s", input_text="i"), "echo")

    def test_invalid_specs(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            load_model_provider(provider="not-a-provider", model="m")
        self.assertEqual(ctx.exception.code, "llm.provider_invalid")
        with self.assertRaises(ValidationError) as ctx:
            load_model_provider(provider="aeye.llm.nope:X", model="m")
        self.assertEqual(ctx.exception.code, "llm.provider_not_found")
        with self.assertRaises(ValidationError) as ctx:
            load_model_provider(provider="aeye.llm.testing:NoSuchProvider", model="m")
        self.assertEqual(ctx.exception.code, "llm.provider_not_found")
        with self.assertRaises(ValidationError) as ctx:
            load_model_provider(provider="aeye.llm.testing:NOTES_FILE", model="m")
        self.assertEqual(ctx.exception.code, "llm.provider_invalid")


class TestHttpProviders(unittest.TestCase):
    def test_anthropic_request_and_text_extraction(self) -> None:
        seen = {}

        def fake_post(url, *, headers, body, timeout_s):
            seen.update(url=url, headers=headers, body=body)
            return {"content": [{"type": "text", "text": "hello "}, {"type": "text", "text": "world"}]}

        with _EnvKey("ANTHROPIC_API_KEY", "k"):
            p = AnthropicMessagesProvider(model="claude-x", http_post=fake_post)
            self.assertEqual(p.complete(system_prompt="sys", input_text="hi"), "hello world")
        self.assertTrue(seen["url"].endswith("/v1/messages"))
        self.assertEqual(seen["headers"]["x-api-key"], "k")
        self.assertEqual(seen["body"]["system"], "sys")
        self.assertEqual(seen["body"]["messages"], [{"role": "user", "content": "hi"}])

    def test_openai_output_walk_and_model_info(self) -> None:
        def fake_post(url, *, headers, body, timeout_s):
            return {"output": [{"type": "message", "content": [{"type": "output_text", "text": "diff"}]}]}

        def fake_get(url, *, headers, timeout_s):
            return {"id": "gpt-x", "owned_by": "openai"}

        with _EnvKey("OPENAI_API_KEY", "k"):
            p = OpenAIResponsesProvider(model="gpt-x", http_post=fake_post, http_get=fake_get)
            self.assertEqual(p.complete(system_prompt="sys", input_text="hi"), "diff")
            self.assertEqual(p.model_info()["slug"], "gpt-x")


class TestJsonExtract(unittest.TestCase):
    def test_extracts_first_object(self) -> None:
        self.assertEqual(extract_first_json_object('Sure! {"a": 1} and {"b": 2}'), {"a": 1})
        self.assertIsNone(extract_first_json_object("no json here"))
        self.assertIsNone(extract_first_json_object(""))

    def test_strip_code_fence(self) -> None:
        self.assertEqual(strip_code_fence("```diff\n+++ b/x\n```"), "+++ b/x\n")
        self.assertEqual(strip_code_fence("+++ b/x\n"), "+++ b/x\n")


if __name__ == "__main__":
    unittest.main()
