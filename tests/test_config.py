import unittest

from chatbridge.config import MIN_MODELS_REFRESH, CopilotConfig, env_var_docs, parse_duration
from chatbridge.errors import ConfigError


class ParseDurationTests(unittest.TestCase):
    def test_units(self) -> None:
        self.assertEqual(parse_duration("90"), 90)
        self.assertEqual(parse_duration("90s"), 90)
        self.assertEqual(parse_duration("15m"), 900)
        self.assertEqual(parse_duration(" 1h "), 3600)
        self.assertEqual(parse_duration("1.5m"), 90)

    def test_invalid(self) -> None:
        for value in ("", "soon", "-5m", "10d"):
            with self.subTest(value=value), self.assertRaises(ConfigError):
                parse_duration(value)


class CopilotConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        config = CopilotConfig.from_env({})
        self.assertEqual(config, CopilotConfig())
        self.assertEqual(config.chat_url, "https://api.githubcopilot.com/chat/completions")
        self.assertEqual(config.models_url, "https://api.githubcopilot.com/models")
        self.assertEqual(config.token_refresh_margin, 60)

    def test_env_overrides(self) -> None:
        config = CopilotConfig.from_env(
            {
                "CHATBRIDGE_COPILOT_MODELS_REFRESH": "10m",
                "CHATBRIDGE_COPILOT_API_BASE_URL": "https://copilot.internal/",
                "CHATBRIDGE_COPILOT_REQUEST_TIMEOUT": "120",
            }
        )
        self.assertEqual(config.models_refresh, 600)
        self.assertEqual(config.request_timeout, 120)
        self.assertEqual(config.chat_url, "https://copilot.internal/chat/completions")

    def test_invalid_env_keeps_default(self) -> None:
        with self.assertLogs("chatbridge.config", level="WARNING") as logs:
            config = CopilotConfig.from_env(
                {"CHATBRIDGE_COPILOT_MODELS_REFRESH": "often", "CHATBRIDGE_COPILOT_REQUEST_TIMEOUT": "0"}
            )
        self.assertEqual(config.models_refresh, CopilotConfig().models_refresh)
        self.assertEqual(config.request_timeout, CopilotConfig().request_timeout)
        self.assertEqual(len(logs.records), 2)

    def test_refresh_interval_floor(self) -> None:
        self.assertEqual(CopilotConfig(models_refresh=1).models_refresh, MIN_MODELS_REFRESH)

    def test_env_docs(self) -> None:
        names = {doc.name for doc in env_var_docs()}
        self.assertIn("CHATBRIDGE_COPILOT_MODELS_REFRESH", names)
        self.assertEqual(len(names), 4)


if __name__ == "__main__":
    unittest.main()
