"""Unit tests for layered credential lookup."""

from types import SimpleNamespace

from ai_dispatch.core.credentials import resolve_env_variable


class TestResolveEnvVariable:
    """Tests for the session -> process -> .env lookup order."""

    def test_session_mapping_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FAKE_API_KEY", "from-process")
        (tmp_path / ".env").write_text("FAKE_API_KEY=from-dotenv\n")

        value = resolve_env_variable(
            "FAKE_API_KEY", {"env": {"FAKE_API_KEY": "from-session"}}, tmp_path
        )

        assert value == "from-session"

    def test_session_object_with_env_attribute(self):
        session = SimpleNamespace(env={"FAKE_API_KEY": "from-session"})
        assert resolve_env_variable("FAKE_API_KEY", session) == "from-session"

    def test_process_environment_before_dotenv(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FAKE_API_KEY", "from-process")
        (tmp_path / ".env").write_text("FAKE_API_KEY=from-dotenv\n")

        assert resolve_env_variable("FAKE_API_KEY", None, tmp_path) == "from-process"

    def test_dotenv_fallback(self, tmp_path):
        (tmp_path / ".env").write_text('# keys\nFAKE_API_KEY="from-dotenv"\n')

        assert resolve_env_variable("FAKE_API_KEY", None, str(tmp_path)) == "from-dotenv"

    def test_empty_values_are_skipped(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FAKE_API_KEY", "")
        (tmp_path / ".env").write_text("FAKE_API_KEY=from-dotenv\n")

        value = resolve_env_variable("FAKE_API_KEY", {"env": {"FAKE_API_KEY": ""}}, tmp_path)

        assert value == "from-dotenv"

    def test_missing_everywhere(self, tmp_path):
        assert resolve_env_variable("FAKE_API_KEY", None, tmp_path) is None

    def test_no_project_root(self):
        assert resolve_env_variable("FAKE_API_KEY") is None

    def test_session_without_env(self):
        assert resolve_env_variable("FAKE_API_KEY", SimpleNamespace(user="x")) is None
