"""
Command-line interface for credcache.
"""

import argparse
import json
import logging
import os
import re
import sys
from datetime import timezone

from . import __version__
from .core import (
    DEFAULT_DURATION_SECONDS,
    MAX_DURATION_SECONDS,
    MIN_DURATION_SECONDS,
    AssumeRoleRetriever,
    CredentialBroker,
    Settings,
)
from .errors import ConfigurationError, CredCacheError, MFAError, RetrievalError

DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|m|s)")
DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}

SHELL_VARIABLES = (
    ("AWS_ACCESS_KEY_ID", lambda creds: creds.access_key_id),
    ("AWS_SECRET_ACCESS_KEY", lambda creds: creds.secret_access_key),
    ("AWS_SESSION_TOKEN", lambda creds: creds.session_token),
)


def parse_duration(value):
    """
    Parse a duration such as "1h", "90m", "1h30m" or "3600s" into seconds.

    A bare number is taken as seconds.
    """
    text = value.strip()
    if text.isdigit():
        return int(text)

    pos = 0
    total = 0.0
    for match in DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        pos = match.end()

    if not text or pos != len(text):
        raise argparse.ArgumentTypeError(f"invalid duration '{value}' (examples: 1h, 90m, 1h30m)")
    return int(total)


def format_process_credentials(credentials):
    """Render credentials as a credential_process response."""
    expiration = credentials.expiration.astimezone(timezone.utc)
    response = {
        "Version": 1,
        "AccessKeyId": credentials.access_key_id,
        "SecretAccessKey": credentials.secret_access_key,
        "SessionToken": credentials.session_token,
        "Expiration": expiration.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    return json.dumps(response, indent=2)


def format_shell_variables(credentials):
    """Render credentials as shell export statements."""
    return "\n".join(f"export {name}={value(credentials)}" for name, value in SHELL_VARIABLES)


def configure_logging(debug=False):
    """Send log records to stderr; stdout is reserved for credentials."""
    if not debug:
        debug = os.environ.get("CREDCACHE_DEBUG", "").lower() in ("1", "true", "yes")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s | %(name)s | %(message)s"))
    logger = logging.getLogger("credcache")
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="credcache",
        description="AWS CLI credential_process that assumes a role (with MFA) and caches "
        "the credentials in the AWS CLI cache directory (~/.aws/cli/cache)",
        epilog="Examples:\n"
        "  credcache --profile admin                 # credential_process JSON for profile admin\n"
        "  credcache -p admin --mfa-yk               # read the MFA code from a YubiKey\n"
        "  eval $(credcache -p admin --variables)    # export credentials into the shell\n"
        "\n"
        "~/.aws/config:\n"
        "  [profile admin-cached]\n"
        "  credential_process = credcache --profile admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-p",
        "--profile",
        default=None,
        help="AWS config profile to assume. If omitted, AWS_PROFILE or 'default' is used",
    )
    parser.add_argument(
        "-n",
        "--no-cache",
        action="store_true",
        help="Disable caching credentials in the ~/.aws/cli/cache directory",
    )
    parser.add_argument(
        "-d",
        "--duration",
        type=parse_duration,
        default=DEFAULT_DURATION_SECONDS,
        help="Duration for which the credentials remain valid, between 15m and 12h (default: 1h)",
    )
    parser.add_argument(
        "-m",
        "--mfa-yk",
        action="store_true",
        help="Read the MFA code from a YubiKey instead of prompting on the terminal. "
        "Requires mfa_serial in the profile config, or the AWS_MFA_SERIAL env var",
    )
    parser.add_argument(
        "-f",
        "--force-refresh",
        action="store_true",
        help="Ignore any cached credentials and fetch new ones. The new credentials are "
        "cached for future use. To disable caching entirely, use --no-cache",
    )
    parser.add_argument(
        "-v",
        "--variables",
        action="store_true",
        help="Print the credentials as shell export statements",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log debug messages to stderr (also enabled by CREDCACHE_DEBUG=1)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args):
    return Settings(
        profile=args.profile,
        use_cache=not args.no_cache,
        force_refresh=args.force_refresh,
        duration_seconds=args.duration,
        use_yubikey=args.mfa_yk,
        as_variables=args.variables,
    )


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug)

    # The STS maximum is 12 hours; roles may set a lower maximum, which
    # AssumeRole itself enforces
    if not MIN_DURATION_SECONDS <= args.duration <= MAX_DURATION_SECONDS:
        print("Error: duration must be between 15 minutes and 12 hours", file=sys.stderr)
        return 1

    settings = settings_from_args(args)

    try:
        retriever = AssumeRoleRetriever(settings)
        credentials = CredentialBroker(settings, retriever).acquire()
    except ConfigurationError as e:
        print(f"Error: Invalid configuration for profile '{settings.profile_name}'", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        return 1
    except MFAError as e:
        print("Error: Failed to obtain MFA code", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        return 1
    except RetrievalError as e:
        print(f"Error: Failed to get credentials for profile '{settings.profile_name}'", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        return 1
    except CredCacheError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if settings.as_variables:
        print(format_shell_variables(credentials))
    else:
        print(format_process_credentials(credentials))
    return 0


if __name__ == "__main__":
    sys.exit(main())
