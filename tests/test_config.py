"""Tests for configuration defaults and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from personal_brain.config import BrainConfig, ChunkingConfig, load_config


def test_defaults():
    config = load_config({})
    assert config == BrainConfig()
    assert config.chunking.max_chunk_size == 1000
    assert config.chunking.overlap == 200
    assert config.memory.max_active_turns == 10
    assert config.embedding.model_name == "all-MiniLM-L6-v2"
    assert config.retry.max_attempts == 3


def test_environment_overrides():
    config = load_config(
        {
            "PERSONAL_BRAIN_COLLECTION": "notes",
            "PERSONAL_BRAIN_CHUNK_SIZE": "500",
            "PERSONAL_BRAIN_CHUNK_OVERLAP": "50",
            "PERSONAL_BRAIN_MAX_ACTIVE_TURNS": "4",
            "PERSONAL_BRAIN_PROVIDER_TIMEOUT": "2.5",
        }
    )
    assert config.storage.collection_name == "notes"
    assert config.chunking.max_chunk_size == 500
    assert config.chunking.overlap == 50
    assert config.memory.max_active_turns == 4
    assert config.retry.timeout == 2.5


def test_db_path_moves_conversations_along(tmp_path):
    config = load_config({"PERSONAL_BRAIN_DB_PATH": str(tmp_path)})
    assert config.storage.db_path == str(tmp_path)
    assert Path(config.storage.conversations_path) == tmp_path / "conversations"


def test_explicit_conversations_path_wins(tmp_path):
    config = load_config(
        {
            "PERSONAL_BRAIN_DB_PATH": str(tmp_path / "db"),
            "PERSONAL_BRAIN_CONVERSATIONS_PATH": str(tmp_path / "conv"),
        }
    )
    assert config.storage.conversations_path == str(tmp_path / "conv")


def test_empty_variable_is_ignored():
    assert load_config({"PERSONAL_BRAIN_CHUNK_SIZE": ""}).chunking.max_chunk_size == 1000


def test_malformed_value_raises():
    with pytest.raises(PydanticValidationError):
        load_config({"PERSONAL_BRAIN_MAX_ACTIVE_TURNS": "many"})


def test_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(PydanticValidationError):
        ChunkingConfig(max_chunk_size=100, overlap=100)
    with pytest.raises(PydanticValidationError):
        load_config({"PERSONAL_BRAIN_CHUNK_OVERLAP": "2000"})
