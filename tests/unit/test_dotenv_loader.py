"""
Tests for dotenv loading order and the prod no-op.
"""
import os

from hedgebot.config.dotenv_loader import load_dotenv_files


def test_local_overrides_env_but_env_keeps_process_values(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("HEDGEBOT_TEST_PRESET", "process")
    monkeypatch.delenv("HEDGEBOT_TEST_KEY", raising=False)
    (tmp_path / ".env").write_text("HEDGEBOT_TEST_KEY=from_env\nHEDGEBOT_TEST_PRESET=from_env\n")
    (tmp_path / ".env.local").write_text("HEDGEBOT_TEST_KEY=from_local\n")

    loaded = load_dotenv_files(root=tmp_path)

    assert [p.name for p in loaded] == [".env", ".env.local"]
    assert os.environ["HEDGEBOT_TEST_KEY"] == "from_local"
    assert os.environ["HEDGEBOT_TEST_PRESET"] == "process"


def test_prod_loads_nothing(tmp_path, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    monkeypatch.delenv("HEDGEBOT_TEST_PROD", raising=False)
    (tmp_path / ".env").write_text("HEDGEBOT_TEST_PROD=1\n")

    assert load_dotenv_files(root=tmp_path) == []
    assert "HEDGEBOT_TEST_PROD" not in os.environ


def test_missing_files_are_skipped(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)

    assert load_dotenv_files(root=tmp_path) == []
