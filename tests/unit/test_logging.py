#!/usr/bin/env python3
"""
Tests for the Loguru sink setup used by entry points.
"""

import pytest
from loguru import logger

from ollabranch import logging as ob_logging
from ollabranch.settings import settings


@pytest.fixture(autouse=True)
def fresh_sinks():
    ob_logging.reset_logger()
    yield
    ob_logging.reset_logger()


class TestSetupLogger:
    def test_file_sinks_split_traffic(self, tmp_path):
        ob_logging.setup_logger("DEBUG", log_dir=tmp_path)
        logger.debug("[CLIENT] >>> raw body")
        logger.debug("[SESSIONS] new branch")
        logger.info("[SESSIONS] Branched a -> b")
        logger.complete()

        traffic = (tmp_path / "traffic.log").read_text()
        app = (tmp_path / "app.log").read_text()
        assert "[CLIENT] >>> raw body" in traffic
        assert "[SESSIONS]" not in traffic
        assert "[SESSIONS] Branched a -> b" in app
        assert "raw body" not in app

    def test_idempotent(self, tmp_path):
        first = ob_logging.setup_logger(log_dir=tmp_path)
        assert ob_logging.setup_logger(log_dir=tmp_path / "other") == first
        assert not (tmp_path / "other").exists()
        assert len(first) == 3

    def test_stderr_only_when_files_disabled(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LOG_FILES", False)
        ids = ob_logging.setup_logger(log_dir=tmp_path / "logs")
        assert len(ids) == 1
        assert not (tmp_path / "logs").exists()
