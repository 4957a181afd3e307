"""Command line entry point: run the server, manage admins, and act as a client."""

from __future__ import annotations

import argparse
import getpass
import os
import secrets
import string
import sys
from typing import Optional, Sequence

import pydantic
import uvicorn

from todos import __version__
from todos.api.schemas import RegisterRequest
from todos.client.api import Client
from todos.client.credentials import Credentials, credentials_path
from todos.client.errors import ClientError
from todos.config import Dialect, get_settings, reset_settings_cache
from todos.logging import get_logger
from todos.service.auth import AuthService
from todos.service.errors import ServiceError
from todos.service.runtime import build_store, derived_key_params
from todos.service.tokens import TokenConfig, TokenService
from todos.storage.errors import ConstraintViolation

logger = get_logger(__name__)

GENERATED_PASSWORD_LENGTH = 16
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


class CommandError(Exception):
    """Raised by a subcommand to exit with a message and non-zero status."""


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def prompt(label: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    value = input(f"{label}{suffix}: ").strip()
    return value or default


def prompt_password(label: str = "password", confirm: bool = False) -> str:
    password = getpass.getpass(f"{label}: ")
    if not password:
        raise CommandError("a password is required")
    if confirm and getpass.getpass(f"confirm {label}: ") != password:
        raise CommandError("passwords do not match")
    return password


def _override_env(**values: Optional[object]) -> None:
    changed = False
    for name, value in values.items():
        if value is None:
            continue
        os.environ[name] = str(value).lower() if isinstance(value, bool) else str(value)
        changed = True
    if changed:
        reset_settings_cache()


# server commands
def cmd_serve(args: argparse.Namespace) -> int:
    _override_env(
        BIND=args.addr,
        PORT=args.port,
        USE_TLS=True if args.tls else None,
        DOMAIN=args.domain,
    )
    settings = get_settings()
    logger.info(
        "server_starting",
        addr=settings.addr,
        endpoint=settings.endpoint,
        mode=settings.mode.value,
        version=__version__,
    )
    uvicorn.run("todos.app:app", host=settings.bind, port=settings.port, log_config=None)
    return 0


def create_superuser(
    username: str,
    email: str,
    password: str,
    *,
    auth: Optional[AuthService] = None,
) -> int:
    """Register an administrator directly against the datastore.

    Returns the new user's id.
    """
    try:
        request = RegisterRequest(
            username=username, email=email, password=password, is_admin=True
        )
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        raise CommandError(f"{'.'.join(map(str, first['loc']))}: {first['msg']}") from exc

    if auth is None:
        settings = get_settings()
        if settings.db_dialect() != Dialect.POSTGRES:
            raise CommandError("a postgres DATABASE_URL is required to create a superuser")
        store = build_store(settings)
        tokens = TokenService(store, TokenConfig.from_settings(settings))
        auth = AuthService(store, tokens, params=derived_key_params(settings))

    try:
        user = auth.register(request.username, request.email, request.password, is_admin=True)
    except ConstraintViolation as exc:
        raise CommandError(exc.message) from exc
    except ServiceError as exc:
        raise CommandError(exc.message) from exc
    return user.id


def cmd_createsuperuser(args: argparse.Namespace) -> int:
    _override_env(DATABASE_URL=args.db)
    username = args.username or prompt("username")
    email = args.email or prompt("email")
    if args.generate:
        password = generate_password()
    else:
        password = prompt_password(confirm=True)

    user_id = create_superuser(username, email, password)
    logger.info("superuser_created", user_id=user_id)
    if args.generate:
        print(f"{username}:{password}")
    else:
        print(f"created admin {username} (id {user_id})")
    return 0


# client commands
def _load_client() -> Client:
    return Client(Credentials.load())


def cmd_configure(args: argparse.Namespace) -> int:
    try:
        creds = Credentials.load()
    except ClientError:
        # Start over from a missing or unreadable file
        creds = Credentials(path=credentials_path())

    creds.endpoint = args.endpoint or prompt("endpoint", creds.endpoint or "http://localhost:8080/")
    creds.username = args.username or prompt("username", creds.username)
    if args.save_password:
        creds.password = prompt_password()
    creds.validate()
    path = creds.dump()
    print(f"credentials written to {path}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    with _load_client() as client:
        rep = client.status()
    print(f"{rep['status']} (version {rep['version']}) at {rep['timestamp']}")
    return 0


def cmd_login(args: argparse.Namespace) -> int:
    with _load_client() as client:
        username = args.username or client.creds.username or prompt("username")
        password = client.creds.password if username == client.creds.username else ""
        if not password:
            password = prompt_password()
        client.login(username, password)
        print(f"logged in as {username}")
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    with _load_client() as client:
        client.logout(revoke_all=args.all)
    print("logged out")
    return 0


def cmd_overview(args: argparse.Namespace) -> int:
    with _load_client() as client:
        if not client.creds.is_logged_in() and not client.creds.is_refreshable():
            username = client.creds.username or prompt("username")
            client.login(username, client.creds.password or prompt_password())
        else:
            client.check_login()
        rep = client.overview()
    user = rep.get("user") or {}
    print(f"{user.get('username', '?')}: {rep['tasks']} tasks in {rep['checklists']} checklists")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todos",
        description="a simple todos server and CLI for personal task tracking",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.required = True

    serve = sub.add_parser("serve", help="run a todos server")
    serve.add_argument("-a", "--addr", help="specify an ip address to bind on")
    serve.add_argument("-p", "--port", type=int, help="specify the port to bind on")
    serve.add_argument(
        "-s", "--tls", action="store_true", help="serve behind tls (requires domain)"
    )
    serve.add_argument("-d", "--domain", help="specify the domain of the server")
    serve.set_defaults(func=cmd_serve)

    admin = sub.add_parser("createsuperuser", help="create an admin user to register other users")
    admin.add_argument("-u", "--username", help="specify username instead of prompting")
    admin.add_argument("-e", "--email", help="specify email instead of prompting")
    admin.add_argument(
        "-g", "--generate", action="store_true", help="generate password instead of prompting"
    )
    admin.add_argument(
        "-d", "--db", default=None, help="database connection uri (or set DATABASE_URL)"
    )
    admin.set_defaults(func=cmd_createsuperuser)

    configure = sub.add_parser("configure", help="store the server endpoint and login name")
    configure.add_argument("--endpoint", help="base url of the todos server")
    configure.add_argument("-u", "--username", help="username to login with")
    configure.add_argument(
        "--save-password", action="store_true", help="prompt for and store the password"
    )
    configure.set_defaults(func=cmd_configure)

    status = sub.add_parser("status", help="check the status of the todos server")
    status.set_defaults(func=cmd_status)

    login = sub.add_parser("login", help="login to the todos server")
    login.add_argument("-u", "--username", help="username to login with")
    login.set_defaults(func=cmd_login)

    logout = sub.add_parser("logout", help="logout of the todos server")
    logout.add_argument(
        "-a", "--all", action="store_true", help="revoke every token issued to this user"
    )
    logout.set_defaults(func=cmd_logout)

    overview = sub.add_parser("overview", help="show a summary of your tasks")
    overview.set_defaults(func=cmd_overview)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (CommandError, ClientError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
