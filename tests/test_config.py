import pytest

from livechat.config import AppConfig, load_config


def test_defaults():
    config = AppConfig()
    assert config.server.port == 3000
    assert config.chat.dedup_capacity == 1000
    assert config.chat.max_message_length == 500
    assert config.storage.backend == "sqlite"
    assert config.reconnect.max_delay == 30.0
    assert config.reconnect.max_attempts == 10


def test_load_with_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("LIVECHAT_TEST_KEYS", "alpha, beta")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "data_dir: /srv/chat\n"
        "server:\n"
        "  port: 8080\n"
        "  admin_api_keys: ${LIVECHAT_TEST_KEYS}\n"
        "storage:\n"
        "  backend: json\n"
        "  json_path: ${data_dir}/chats.json\n",
        encoding="utf-8",
    )

    config = load_config(config_file, tmp_path / "missing.env")

    assert config.server.port == 8080
    assert config.server.admin_api_keys == ["alpha", "beta"]
    assert config.storage.json_path == "/srv/chat/chats.json"


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("LIVECHAT_DOTENV_KEY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("LIVECHAT_DOTENV_KEY=from-dotenv\n", encoding="utf-8")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("server:\n  admin_api_keys: [\"${LIVECHAT_DOTENV_KEY}\"]\n", encoding="utf-8")

    config = load_config(config_file, env_file)

    assert config.server.admin_api_keys == ["from-dotenv"]
    monkeypatch.delenv("LIVECHAT_DOTENV_KEY", raising=False)


def test_empty_file_gives_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("", encoding="utf-8")
    assert load_config(config_file, tmp_path / ".env").server.port == 3000


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")


def test_invalid_backend_rejected(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("storage:\n  backend: redis\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(config_file, tmp_path / ".env")


def test_unset_key_variable_grants_no_access(tmp_path, monkeypatch):
    monkeypatch.delenv("LIVECHAT_UNSET_KEYS", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "server:\n"
        "  admin_api_keys: ${LIVECHAT_UNSET_KEYS}\n",
        encoding="utf-8",
    )

    config = load_config(config_file, tmp_path / ".env")

    assert config.server.admin_api_keys == []


def test_unresolved_keys_dropped_from_list(tmp_path, monkeypatch):
    monkeypatch.delenv("LIVECHAT_UNSET_KEYS", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "server:\n"
        "  admin_api_keys: [\"real-key\", \"${LIVECHAT_UNSET_KEYS}\", \" \"]\n",
        encoding="utf-8",
    )

    config = load_config(config_file, tmp_path / ".env")

    assert config.server.admin_api_keys == ["real-key"]
