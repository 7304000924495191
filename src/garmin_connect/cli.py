"""Command line interface for Garmin Connect.

Usage:
    garmin-connect login                 # prompts for email, password and MFA code
    garmin-connect login --mfa-code 123456
    garmin-connect status
    garmin-connect get /userprofile-service/socialProfile
    garmin-connect upload ride.fit
    garmin-connect fit-encode run.fit --sport running --start 2026-02-22T07:30:00 \\
        --duration-minutes 45 --distance-km 8.2
    garmin-connect fit-check run.fit
    garmin-connect logout
"""

import argparse
import getpass
import json
import logging
import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path

from garmin_connect.auth import Authenticator, create_client
from garmin_connect.config import Config, load_config, load_credentials
from garmin_connect.exceptions import (
    AuthenticationDeniedError,
    ConfigError,
    FitFormatError,
    GarminError,
    LoginCancelledError,
    MFARejectedError,
    ProtocolError,
    ReauthenticationRequiredError,
    SessionStoreError,
    TransportError,
)
from garmin_connect.fit import FitActivity, FitEncoder, check
from garmin_connect.mfa import ConsolePrompter, StaticPrompter
from garmin_connect.session import SessionStore, is_expired

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Most specific first
ERROR_HINTS = [
    (TransportError, 4, "Could not reach Garmin Connect: {error}\nThis is usually temporary. Try again in a few minutes."),
    (MFARejectedError, 2, "The MFA code was rejected: {error}\nRun login again and enter a fresh code."),
    (AuthenticationDeniedError, 2, "Authentication failed: {error}\nDouble-check your email and password."),
    (LoginCancelledError, 130, "Login cancelled: {error}"),
    (ProtocolError, 3, "Unexpected response from Garmin during {step}: {error}\n"
                       "Garmin may have changed its sign-in flow; this needs a client update."),
    (ReauthenticationRequiredError, 5, "{error}\nRun 'garmin-connect login' to sign in again."),
    (SessionStoreError, 5, "{error}"),
    (ConfigError, 1, "Configuration error: {error}"),
    (FitFormatError, 1, "Invalid FIT file: {error}"),
    (GarminError, 1, "Error: {error}"),
]


def setup_logging(config: Config):
    logging.basicConfig(
        level=logging.DEBUG if config.debug_logging else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def report_error(error: GarminError) -> int:
    for cls, code, template in ERROR_HINTS:
        if isinstance(error, cls):
            print(template.format(error=error, step=getattr(error, "step", "")), file=sys.stderr)
            return code
    return 1


def _store(config: Config) -> SessionStore:
    if config.session_path is None:
        raise ConfigError("No session path configured")
    return SessionStore(config.session_path)


def cmd_login(args, config: Config) -> int:
    email, password = load_credentials()
    email = args.email or email or input("Email: ").strip()
    password = password or getpass.getpass("Password: ")
    if not email or not password:
        print("Error: Email and password are required.", file=sys.stderr)
        return 1

    prompter = StaticPrompter(args.mfa_code) if args.mfa_code else ConsolePrompter(prompt="\nMFA code: ")
    authenticator = Authenticator(config, mfa_prompter=prompter)

    print(f"Logging in as {email}...")
    cancel = threading.Event()
    try:
        session = authenticator.login(email, password, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        print("\nLogin cancelled.", file=sys.stderr)
        return 130

    print("Authentication successful!")
    if authenticator.last_persist_error is not None:
        print(f"Warning: could not save session: {authenticator.last_persist_error}", file=sys.stderr)
    elif authenticator.store is not None:
        print(f"Session saved to: {authenticator.store.path}")
    print(f"Token valid until: {session.expires_at.isoformat()}")
    return 0


def cmd_logout(args, config: Config) -> int:
    store = _store(config)
    if store.delete():
        print(f"Removed session {store.path}")
    else:
        print("No saved session.")
    return 0


def cmd_status(args, config: Config) -> int:
    store = _store(config)
    session = store.load()
    state = "expired" if is_expired(session) else "valid"
    print(f"Session file: {store.path}")
    print(f"Bearer token {state}, expires at {session.expires_at.isoformat()}")
    return 0 if state == "valid" else 5


def _client(config: Config):
    email, password = load_credentials()
    return create_client(config, email=email, password=password, mfa_prompter=ConsolePrompter())


def cmd_get(args, config: Config) -> int:
    params = {}
    for item in args.param or []:
        key, sep, value = item.partition("=")
        if not sep:
            print(f"Error: --param expects key=value, got '{item}'", file=sys.stderr)
            return 1
        params[key] = value
    data = _client(config).get(args.path, params=params or None)
    print(json.dumps(data, indent=2))
    return 0


def cmd_upload(args, config: Config) -> int:
    path = Path(args.file).expanduser()
    result = _client(config).upload_activity(path.read_bytes(), filename=path.name)
    if result.failures:
        print(json.dumps(result.failures, indent=2), file=sys.stderr)
        return 1
    ids = ", ".join(str(i) for i in result.activity_ids) or "pending"
    print(f"Uploaded {path.name} (upload {result.upload_id}); activity: {ids}")
    return 0


def cmd_fit_encode(args, config: Config) -> int:
    if args.payload is None and args.sport is None:
        print("Error: pass --payload or the activity options (--sport, --start, ...)", file=sys.stderr)
        return 1

    with open(args.output, "wb") as sink:
        with FitEncoder(sink) as encoder:
            if args.payload is not None:
                with open(args.payload, "rb") as source:
                    while chunk := source.read(CHUNK_SIZE):
                        encoder.write(chunk)
            else:
                encoder.write_activity(FitActivity(
                    sport=args.sport,
                    start_time=datetime.fromisoformat(args.start) if args.start else datetime.now().astimezone(),
                    duration=timedelta(minutes=args.duration_minutes),
                    distance=args.distance_km * 1000,
                ))
            size = encoder.data_size
    print(f"Wrote {args.output} ({size} data bytes)")
    return 0


def cmd_fit_check(args, config: Config) -> int:
    header = check(Path(args.file).read_bytes())
    print(
        f"OK: protocol {header.protocol_major}.{header.protocol_version & 0x0F}, "
        f"profile {header.profile_version / 100:.2f}, {header.data_size} data bytes"
    )
    return 0


def cmd_serve(args, config: Config) -> int:
    from garmin_connect import main as serve

    serve()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="garmin-connect", description="Garmin Connect client")
    parser.add_argument("--env-file", help="Load settings from this .env file")
    parser.add_argument("--session", help="Session file path (default: ~/.garminconnect/session.json)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging, including response bodies")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Authenticate and save the session")
    p.add_argument("--email", help="Account email (default: GARMIN_EMAIL or prompt)")
    p.add_argument("--mfa-code", help="MFA code, for non-interactive use")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("logout", help="Delete the saved session")
    p.set_defaults(func=cmd_logout)

    p = sub.add_parser("status", help="Show the saved session's expiry")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("get", help="GET an API path and print the JSON")
    p.add_argument("path")
    p.add_argument("-p", "--param", action="append", help="Query parameter key=value (repeatable)")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("upload", help="Upload a FIT file")
    p.add_argument("file")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("fit-encode", help="Write a FIT file")
    p.add_argument("output")
    p.add_argument("--payload", help="File with raw FIT data records to wrap")
    p.add_argument("--sport", help="running, cycling, swimming, walking, hiking, generic")
    p.add_argument("--start", help="ISO-8601 start time (default: now)")
    p.add_argument("--duration-minutes", type=float, default=0.0)
    p.add_argument("--distance-km", type=float, default=0.0)
    p.set_defaults(func=cmd_fit_encode)

    p = sub.add_parser("fit-check", help="Validate a FIT file's header and checksums")
    p.add_argument("file")
    p.set_defaults(func=cmd_fit_check)

    p = sub.add_parser("serve", help="Run the MCP server on stdio")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.env_file)
        overrides = {}
        if args.session:
            overrides["session_path"] = Path(args.session).expanduser()
        if args.debug:
            overrides["debug_logging"] = True
        if overrides:
            config = config.with_overrides(**overrides)
        if args.command != "serve":
            setup_logging(config)
        return args.func(args, config)
    except GarminError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        return report_error(e)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
