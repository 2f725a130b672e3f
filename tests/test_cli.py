from click.testing import CliRunner

import failoverlab.cli as cli_module


def _fake_manager(captured, exit_code=0):
    class FakeManager:
        def __init__(self, settings=None, **kwargs):
            captured["settings"] = settings

        def run(self):
            return exit_code

    return FakeManager


def _clear_env(monkeypatch):
    for name in ("TEST_USERNAME", "TEST_PASSWORD", "TEST_DSN", "TEST_DB_CLUSTER_IDENTIFIER"):
        monkeypatch.delenv(name, raising=False)


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    config_file = tmp_path / ".failoverlab.yml"
    config_file.write_text(
        "region: eu-west-1\n" "instances: 3\n" "proxy_port: 9000\n" "subject_command: ./integration --gtest_filter=*\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager(captured))

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        [
            "--config",
            str(config_file),
            "--instances",
            "2",
            "--report-file",
            str(tmp_path / "report.json"),
        ],
    )

    assert result.exit_code == 0
    settings = captured["settings"]
    assert settings.region == "eu-west-1"
    assert settings.instance_count == 2
    assert settings.proxy_listen_port == 9000
    assert settings.subject_command == ("./integration", "--gtest_filter=*")
    assert settings.report_file == str(tmp_path / "report.json")


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    default_config = tmp_path / ".failoverlab.yml"
    default_config.write_text("instances: 4\n" "cluster_id: nightly\n", encoding="utf-8")

    captured = {}
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager(captured))
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, [])

    assert result.exit_code == 0
    assert captured["settings"].instance_count == 4
    assert captured["settings"].cluster_identifier == "nightly"


def test_cli_reads_database_settings_from_environment(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("TEST_USERNAME", "admin")
    monkeypatch.setenv("TEST_PASSWORD", "hunter2")
    monkeypatch.setenv("TEST_DB_CLUSTER_IDENTIFIER", "from-env")
    monkeypatch.chdir(tmp_path)

    captured = {}
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager(captured))

    result = CliRunner().invoke(cli_module.main, ["--reuse-cluster"])

    assert result.exit_code == 0
    settings = captured["settings"]
    assert settings.db_username == "admin"
    assert settings.db_password == "hunter2"
    assert settings.cluster_identifier == "from-env"
    assert settings.reuse_cluster is True


def test_cli_rejects_reuse_without_cluster_id(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager({}))

    result = CliRunner().invoke(cli_module.main, ["--reuse-cluster"])

    assert result.exit_code != 0
    assert "--reuse-cluster requires --cluster-id" in result.output


def test_cli_reports_unknown_config_keys(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    config_file = tmp_path / "bad.yml"
    config_file.write_text("instance: 3\n", encoding="utf-8")
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager({}))

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file)])

    assert result.exit_code != 0
    assert "Unknown configuration keys" in result.output


def test_cli_exit_code_follows_the_session(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "LifecycleManager", _fake_manager({}, exit_code=1))

    result = CliRunner().invoke(cli_module.main, [])

    assert result.exit_code == 1
