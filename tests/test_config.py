"""
Tests for YAML configuration loading and component logging.
"""

import logging

from docstruct.config.system_loader import get_model_config, get_prompt_config, get_system_config
from docstruct.utils.logging_utils import component_log_path, get_component_logger


class TestConfig:

    def test_settings_defaults(self):
        settings = get_system_config()

        assert settings["toc"]["max_search_pages"] == 10
        assert settings["validator"]["max_title_length"] == 200
        assert settings["page_range"]["sample_size"] == 3
        assert settings["page_range"]["size_tolerance"] == 0.5
        assert settings["output"]["result_file"] == "structure_final.json"

    def test_prompt_templates(self):
        prompts = get_prompt_config()["page_range"]

        user = prompts["user"].format(count=2, page_list="4, 9")

        assert "2 document page images" in user
        assert "PDF pages: 4, 9." in user
        assert "Roman numerals" in prompts["system"]

    def test_model_env_overrides(self, monkeypatch):
        monkeypatch.setenv("DOCSTRUCT_PRIMARY_MODEL", "minicpm-v")
        monkeypatch.setenv("DOCSTRUCT_FALLBACK_MODEL", "llava:7b")
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434")

        vision = get_model_config()["vision"]

        assert vision["primary_model"] == "minicpm-v"
        assert vision["fallback_model"] == "llava:7b"
        assert vision["base_url"] == "http://gpu-box:11434"
        assert vision["max_retries"] == 3

    def test_model_defaults(self, monkeypatch):
        for key in ("DOCSTRUCT_PRIMARY_MODEL", "DOCSTRUCT_FALLBACK_MODEL", "OLLAMA_BASE_URL"):
            monkeypatch.delenv(key, raising=False)

        vision = get_model_config()["vision"]

        assert vision["primary_model"] == "qwen2.5vl:7b"
        assert vision["temperature"] == 0


class TestLogging:

    def test_component_logger_writes_file(self, tmp_path):
        log_file = tmp_path / "custom.log"

        logger = get_component_logger("DocstructTestLogger", component="toc", log_file=str(log_file))
        logger.info("hello from the test")
        for handler in logger.handlers:
            handler.flush()

        assert "hello from the test" in log_file.read_text(encoding="utf-8")
        assert not logger.propagate

    def test_logger_configured_once(self, tmp_path):
        first = get_component_logger("DocstructOnce", log_file=str(tmp_path / "a.log"))
        handler_count = len(first.handlers)

        second = get_component_logger("DocstructOnce", level=logging.DEBUG)

        assert second is first
        assert len(second.handlers) == handler_count
        assert second.level == logging.DEBUG

    def test_component_log_paths(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DOCSTRUCT_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("DOCSTRUCT_PAGES_LOG_FILE", str(tmp_path / "vision.log"))
        monkeypatch.delenv("DOCSTRUCT_LOG_FILE", raising=False)

        assert component_log_path("toc") == tmp_path / "toc.log"
        assert component_log_path("pages") == tmp_path / "vision.log"
        assert component_log_path(None) == tmp_path / "docstruct.log"
