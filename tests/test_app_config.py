import json
import os
import tempfile
import unittest
from unittest.mock import patch

from cashflow_assistant.agent_config import AgentLimits, CacheTtls
from cashflow_assistant.app_config import load_json_config, parse_app_config, parse_limits, resolve_runtime_env


class ParseConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})

        self.assertEqual("azure", app.provider_name)
        self.assertEqual("gpt-4o-mini", app.model)
        self.assertEqual(1000, app.max_tokens)
        self.assertEqual("cfa", app.key_prefix)
        self.assertIsNone(app.user_id)
        self.assertIsNone(app.log_consumers)
        self.assertEqual(AgentLimits(), app.limits)

    def test_overrides(self) -> None:
        app = parse_app_config({
            "Provider": " OpenAI ",
            "Model": "gpt-4.1",
            "Temperature": "0.1",
            "UserId": " 42 ",
            "AccountId": "",
            "LogLevel": "DEBUG",
        })
        self.assertEqual("openai", app.provider_name)
        self.assertEqual(0.1, app.temperature)
        self.assertEqual("42", app.user_id)
        self.assertIsNone(app.account_id)
        self.assertEqual("DEBUG", app.log_level)

    def test_limits(self) -> None:
        limits = parse_limits({
            "MaxRequestBytes": "30000",
            "MaxRetries": 5,
            "CacheFreshnessMinutes": 10,
            "CacheTtlSeconds": {"Context": 600},
        })
        self.assertEqual(30000, limits.max_request_bytes)
        self.assertEqual(5, limits.max_retries)
        self.assertEqual(10.0, limits.freshness_minutes)
        self.assertEqual(CacheTtls(context=600), limits.cache_ttls)
        self.assertEqual(AgentLimits().tool_timeout_seconds, limits.tool_timeout_seconds)


class RuntimeEnvTests(unittest.TestCase):
    def test_azure(self) -> None:
        env = {
            "AZURE_OPENAI_API_KEY": "k",
            "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
            "AZURE_OPENAI_DEPLOYMENT": "chat",
            "REDIS_URL": "redis://localhost:6379/0",
        }
        with patch.dict(os.environ, env, clear=True):
            runtime = resolve_runtime_env("azure")

        self.assertEqual("k", runtime.provider_api_key)
        self.assertEqual("AZURE_OPENAI_API_KEY", runtime.provider_env_var)
        self.assertEqual("chat", runtime.azure_deployment)
        self.assertEqual("redis://localhost:6379/0", runtime.redis_url)
        self.assertIsNone(runtime.database_url)

    def test_openai_without_key(self) -> None:
        with patch.dict(os.environ, {"CASHFLOW_API_BASE_URL": "https://api.example.test"}, clear=True):
            runtime = resolve_runtime_env("openai")

        self.assertEqual("", runtime.provider_api_key)
        self.assertEqual("OPENAI_API_KEY", runtime.provider_env_var)
        self.assertEqual("https://api.example.test", runtime.cashflow_api_base_url)


class LoadJsonConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        directory = tempfile.TemporaryDirectory()
        self.addCleanup(directory.cleanup)
        previous = os.getcwd()
        os.chdir(directory.name)
        self.addCleanup(os.chdir, previous)
        self.directory = directory.name

    def test_missing_file(self) -> None:
        self.assertEqual({}, load_json_config())

    def test_reads_config_json_from_cwd(self) -> None:
        with open(os.path.join(self.directory, "config.json"), "w") as f:
            json.dump({"Model": "gpt-4o"}, f)
        self.assertEqual({"Model": "gpt-4o"}, load_json_config())


if __name__ == "__main__":
    unittest.main()
