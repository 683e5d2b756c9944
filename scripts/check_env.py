"""Utility for verifying that required environment configuration is intact.

The tool performs three checks and one helper task:

1. It instantiates ``AppSettings`` from the provided ``.env`` file, surfacing
   missing Slack credentials or key material before the service refuses to
   start.
2. It builds the token cipher and state signer from that configuration, so a
   malformed ``ENCRYPTION_KEY`` is reported here rather than at first login.
3. It can record and verify a checksum for the ``.env`` file so unexpected
   edits are detected. A changed ``ENCRYPTION_KEY`` makes every stored Slack
   token undecryptable, which is why drift matters.

``generate-key`` prints a fresh 64-character hex value suitable for
``ENCRYPTION_KEY`` or ``STATE_SECRET``.

Example usages::

    python -m scripts.check_env record --env-file /opt/lab-access/.env \
        --hash-file /opt/lab-access/.env.sha256

    python -m scripts.check_env verify --env-file /opt/lab-access/.env \
        --hash-file /opt/lab-access/.env.sha256

    python -m scripts.check_env generate-key
"""

from __future__ import annotations

import argparse
import hashlib
import secrets
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from lab_access.core.config import AppSettings, _load_env_file
from lab_access.services.oauth_state import OAuthStateService
from lab_access.services.token_cipher import TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_KEY_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    """Return the SHA256 checksum for the target environment file."""
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _validate_settings(env_file: Path) -> AppSettings:
    """Ensure required settings can be loaded from the supplied env file."""
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _check_key_material(settings: AppSettings) -> list[str]:
    """Build the crypto services and return warnings about weak setups."""
    cipher = TokenCipherService(secret=settings.security.encryption_key)
    probe = secrets.token_hex(8)
    if cipher.decrypt(cipher.encrypt(probe)) != probe:
        raise ValueError("Token cipher round trip failed.")
    OAuthStateService(secret_key=settings.security.effective_state_secret)

    warnings = []
    if not settings.security.state_secret:
        warnings.append("STATE_SECRET is not set; ENCRYPTION_KEY doubles as the state secret.")
    if len(settings.security.encryption_key) != 64:
        warnings.append("ENCRYPTION_KEY is not 64 hex characters; it will be stretched with SHA-256.")
    return warnings


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    """Persist the current checksum to ``hash_file``."""
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "A changed ENCRYPTION_KEY invalidates every stored Slack token; "
        "investigate before restarting the service.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _generate_key() -> int:
    print(secrets.token_hex(32))
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate Slack and key settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )

    def add_hash_argument(subparser: argparse.ArgumentParser, help_text: str) -> None:
        subparser.add_argument("--hash-file", required=True, type=Path, help=help_text)

    record_parser = subparsers.add_parser(
        "record", help="Validate settings and store the checksum baseline."
    )
    add_common_arguments(record_parser)
    add_hash_argument(record_parser, "Location to write the checksum baseline.")

    verify_parser = subparsers.add_parser(
        "verify", help="Validate settings and compare the checksum with the baseline."
    )
    add_common_arguments(verify_parser)
    add_hash_argument(verify_parser, "Location of the previously recorded checksum baseline.")

    check_parser = subparsers.add_parser(
        "check", help="Validate settings without touching any checksum files."
    )
    add_common_arguments(check_parser)

    subparsers.add_parser("generate-key", help="Print a new random 256-bit hex key.")

    return parser


def _ensure_env_file(env_file: Path) -> None:
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-key":
        return _generate_key()

    env_file: Path = args.env_file

    try:
        _ensure_env_file(env_file)
        settings = _validate_settings(env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        for warning in _check_key_material(settings):
            print(f"warning: {warning}", file=sys.stderr)
    except ValueError as exc:
        print(f"Key material is unusable: {exc}", file=sys.stderr)
        return EXIT_KEY_ERROR

    command: str = args.command
    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
    }
    return handlers[command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
