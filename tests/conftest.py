"""Shared test fixtures for ctxcompact."""

import json

import pytest


@pytest.fixture
def write_log(tmp_path):
    """Write a JSON message log into the temp directory and return its path."""

    def _write(messages, name="log.json"):
        path = tmp_path / name
        path.write_text(json.dumps(messages), encoding="utf-8")
        return path

    return _write
