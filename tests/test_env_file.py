import os

from mindscape import load_env_file, read_env_file


def test_env_file_parsing(tmp_path):
    env = tmp_path / ".env"
    env.write_text(
        "# comment\n"
        "\n"
        "GOOGLE_AI_API_KEY=abc123\n"
        "export REDIS_URL = 'redis://localhost:6379/0'\n"
        'ALLOW_ORIGINS="https://a.test,https://b.test"\n'
        "not a line\n"
        "1BAD=x\n"
        "EMPTY=\n",
        encoding="utf-8",
    )
    assert read_env_file(env) == {
        "GOOGLE_AI_API_KEY": "abc123",
        "REDIS_URL": "redis://localhost:6379/0",
        "ALLOW_ORIGINS": "https://a.test,https://b.test",
        "EMPTY": "",
    }


def test_missing_env_file_is_empty(tmp_path):
    assert read_env_file(tmp_path / "nope.env") == {}


def test_existing_environment_wins(tmp_path, monkeypatch):
    env = tmp_path / ".env"
    env.write_text("MINDSCAPE_TEST_A=from-file\nMINDSCAPE_TEST_B=from-file\n", encoding="utf-8")
    monkeypatch.setenv("MINDSCAPE_TEST_A", "from-env")
    monkeypatch.setenv("MINDSCAPE_TEST_B", "placeholder")
    monkeypatch.delenv("MINDSCAPE_TEST_B")
    assert load_env_file(env) == 1
    assert os.environ["MINDSCAPE_TEST_A"] == "from-env"
    assert os.environ["MINDSCAPE_TEST_B"] == "from-file"
