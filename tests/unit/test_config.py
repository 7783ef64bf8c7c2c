"""
Tests for engine config, service settings and logging setup.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from src.common.config import OPENROUTER_BASE_URL, Config
from src.common.logger import JsonLineFormatter, get_logger, setup_logging
from workflow_service.config import ServiceSettings


class TestLLMRouting:

    def test_prefers_openrouter_when_key_present(self, monkeypatch):
        monkeypatch.setattr(Config, "USE_OPENROUTER", True)
        monkeypatch.setattr(Config, "OPENROUTER_API_KEY", "sk-or-1")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-1")

        assert Config.get_llm_api_key() == "sk-or-1"
        assert Config.get_llm_base_url() == OPENROUTER_BASE_URL

    def test_falls_back_to_openai(self, monkeypatch):
        monkeypatch.setattr(Config, "USE_OPENROUTER", True)
        monkeypatch.setattr(Config, "OPENROUTER_API_KEY", "")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-1")

        assert Config.get_llm_api_key() == "sk-1"
        assert Config.get_llm_base_url() is None

    def test_openrouter_disabled(self, monkeypatch):
        monkeypatch.setattr(Config, "USE_OPENROUTER", False)
        monkeypatch.setattr(Config, "OPENROUTER_API_KEY", "sk-or-1")
        monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-1")

        assert Config.get_llm_api_key() == "sk-1"


class TestDefaultProfile:

    def test_reads_profile_file(self, monkeypatch, tmp_path):
        profile = tmp_path / "cv.md"
        profile.write_text("# Jane Doe\nPython engineer", encoding="utf-8")
        monkeypatch.setattr(Config, "CANDIDATE_PROFILE_PATH", str(profile))

        assert Config.load_default_profile().startswith("# Jane Doe")

    def test_missing_file(self, monkeypatch, tmp_path):
        monkeypatch.setattr(Config, "CANDIDATE_PROFILE_PATH", str(tmp_path / "nope.md"))

        assert Config.load_default_profile() is None


class TestServiceSettings:

    def test_defaults(self):
        settings = ServiceSettings(environment="test", runner_api_secret=None)

        assert settings.auth_required is False
        assert settings.cors_origins_list == []
        assert settings.stuck_entry_timeout_seconds > settings.ai_timeout_seconds

    def test_environment_is_normalised(self):
        assert ServiceSettings(environment=" Production ").is_production

    def test_unknown_environment(self):
        with pytest.raises(ValidationError, match="environment must be one of"):
            ServiceSettings(environment="prod")

    def test_weak_secret_rejected(self):
        with pytest.raises(ValidationError, match="too weak"):
            ServiceSettings(runner_api_secret="aaaaaaaaaaaaaaaaaaaa")

    def test_secret_enables_auth(self):
        settings = ServiceSettings(environment="test", runner_api_secret="test-secret-key-1234")

        assert settings.auth_required is True

    def test_bad_mongo_uri(self):
        with pytest.raises(ValidationError, match="MONGODB_URI"):
            ServiceSettings(mongodb_uri="postgres://localhost")

    def test_stuck_timeout_must_exceed_ai_timeout(self):
        with pytest.raises(ValidationError, match="must exceed"):
            ServiceSettings(ai_timeout_seconds=600, stuck_entry_timeout_seconds=300)

    def test_cors_origins_parsed(self):
        settings = ServiceSettings(cors_origins="https://a.example, ,https://b.example")

        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_production_warnings(self):
        settings = ServiceSettings(
            environment="production",
            mongodb_uri="mongodb://localhost:27017",
            cors_origins="",
            should_apply_threshold=40,
            relevance_threshold=50,
        )

        warnings = settings.deployment_warnings()

        assert len(warnings) == 3
        assert any("localhost" in w for w in warnings)


class TestLogging:

    def test_run_and_step_prefix(self, caplog):
        log = get_logger("tests.workflow", run_id="3f2a9c1d-7b7b-4c4c")

        with caplog.at_level(logging.INFO, logger="tests.workflow"):
            log.with_layer("recommend").info("4/9 scored")
            log.info("run started")

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["[run:3f2a9c1d] [recommend] 4/9 scored", "[run:3f2a9c1d] run started"]

    def test_no_prefix_without_context(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tests.plain"):
            get_logger("tests.plain").warning("plain")

        assert caplog.records[-1].getMessage() == "plain"

    def test_json_formatter_escapes_message(self):
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, 'bad "quote" %s', ("here",), None)

        payload = json.loads(JsonLineFormatter().format(record))

        assert payload["message"] == 'bad "quote" here'
        assert payload["level"] == "ERROR"

    def test_setup_logging_replaces_handlers(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="nonsense", format="json")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonLineFormatter)
            assert root.level == logging.INFO
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
