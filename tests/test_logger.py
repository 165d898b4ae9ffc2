"""Tests for the log level lookup that runs before settings load."""

from __future__ import annotations

import logging

import pytest

from devyard.logger import _env_level


class TestEnvLevel:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        monkeypatch.delenv("DEVYARD_LOG_LEVEL", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)

    def test_defaults_to_info(self):
        assert _env_level() == logging.INFO

    def test_generic_variable(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        assert _env_level() == logging.WARNING

    def test_devyard_variable_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.setenv("DEVYARD_LOG_LEVEL", "debug")
        assert _env_level() == logging.DEBUG

    @pytest.mark.parametrize("name", ["chatty", "BASIC_FORMAT"])
    def test_unknown_names_fall_back_to_info(self, monkeypatch, name):
        monkeypatch.setenv("DEVYARD_LOG_LEVEL", name)
        assert _env_level() == logging.INFO
