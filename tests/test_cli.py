import pytest

from todos import cli


def test_generate_password():
    password = cli.generate_password()
    assert len(password) == cli.GENERATED_PASSWORD_LENGTH
    assert password.isalnum()
    assert cli.generate_password() != password


def test_create_superuser(runtime):
    user_id = cli.create_superuser(
        "root", "Root@Example.com", "RootPassword123!", auth=runtime.auth
    )
    user = runtime.store.get_user(user_id)
    assert user.is_admin
    assert user.email == "root@example.com"
    assert runtime.auth.login("root", "RootPassword123!").user_id == user_id


def test_create_superuser_rejects_invalid_input(runtime):
    with pytest.raises(cli.CommandError, match="password"):
        cli.create_superuser("root", "root@example.com", "short", auth=runtime.auth)
    with pytest.raises(cli.CommandError, match="username"):
        cli.create_superuser("bad name!", "root@example.com", "RootPassword123!", auth=runtime.auth)


def test_create_superuser_duplicate(runtime):
    cli.create_superuser("root", "root@example.com", "RootPassword123!", auth=runtime.auth)
    with pytest.raises(cli.CommandError, match="already exists"):
        cli.create_superuser("root", "other@example.com", "RootPassword123!", auth=runtime.auth)


def test_create_superuser_requires_postgres():
    with pytest.raises(cli.CommandError, match="postgres"):
        cli.create_superuser("root", "root@example.com", "RootPassword123!")


def test_main_reports_command_errors(capsys, monkeypatch, tmp_path):
    monkeypatch.setenv("TODOS_CONFIG_DIR", str(tmp_path))
    assert cli.main(["status"]) == 1
    assert "could not find credentials" in capsys.readouterr().err


def test_configure_writes_credentials(monkeypatch, tmp_path):
    monkeypatch.setenv("TODOS_CONFIG_DIR", str(tmp_path))
    assert cli.main(["configure", "--endpoint", "http://todos.example.com:8080/", "-u", "jane"]) == 0

    creds = cli.Credentials.load()
    assert creds.endpoint == "http://todos.example.com:8080/"
    assert creds.username == "jane"


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert "todos 1.2" in capsys.readouterr().out
