"""
AWS CLI compatible credential cache.

Credentials are stored in ~/.aws/cli/cache/<key>.json, the same files the AWS
CLI writes for assume-role profiles. The cache key is derived from the
assume-role arguments exactly the way botocore derives it, so both tools
read each other's entries:

    sha1(json.dumps({"DurationSeconds": ..., "RoleArn": ...}, sort_keys=True))

Only non-empty arguments take part in the key. The JSON text uses Python's
default separators (", " and ": "), which is what makes the digest match.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cryptography.hazmat.primitives import hashes

from .errors import CachePersistenceError

logger = logging.getLogger(__name__)

# Literal +00:00 suffix (not Z) is what botocore writes into the cache files
EXPIRATION_FORMAT = "%Y-%m-%dT%H:%M:%S+00:00"

CACHE_FILE_MODE = 0o600
CACHE_DIR_MODE = 0o755


@dataclass(frozen=True)
class Credentials:
    """Temporary AWS credentials with an absolute UTC expiration."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime

    def expired(self, now=None):
        """Credentials are expired once the current time reaches the expiration."""
        if now is None:
            now = utcnow()
        return now >= self.expiration

    def __repr__(self):
        return (
            f"Credentials(access_key_id={self.access_key_id[:8]}***, "
            f"expiration={self.expiration.isoformat()})"
        )


@dataclass(frozen=True)
class AssumeRoleParameters:
    """The assume-role arguments that identify a cache entry."""

    role_arn: str
    duration_seconds: int = 0
    external_id: str = None
    serial_number: str = None

    def cache_fields(self):
        """
        Build the mapping hashed into the cache key.

        Empty values are left out entirely rather than written as empty
        strings or zero; an omitted field and an empty field hash differently.
        """
        fields = {}
        if self.duration_seconds:
            fields["DurationSeconds"] = self.duration_seconds
        if self.external_id:
            fields["ExternalId"] = self.external_id
        if self.role_arn:
            fields["RoleArn"] = self.role_arn
        if self.serial_number:
            fields["SerialNumber"] = self.serial_number
        return fields


def utcnow():
    return datetime.now(timezone.utc)


def derive_cache_key(parameters):
    """
    Compute the cache key for a set of assume-role parameters.

    Args:
        parameters: AssumeRoleParameters

    Returns:
        str: Lowercase hex SHA-1 digest
    """
    blob = json.dumps(parameters.cache_fields(), sort_keys=True)
    digest = hashes.Hash(hashes.SHA1())
    digest.update(blob.encode("utf-8"))
    return digest.finalize().hex()


def get_cache_dir():
    """Get the AWS CLI credential cache directory."""
    return os.path.expanduser(os.path.join("~", ".aws", "cli", "cache"))


def format_expiration(expiration):
    """Serialize an expiration timestamp in the AWS CLI cache format."""
    if expiration.tzinfo is not None:
        expiration = expiration.astimezone(timezone.utc)
    return expiration.strftime(EXPIRATION_FORMAT)


def parse_expiration(value):
    """Parse an expiration written by format_expiration() into an aware UTC datetime."""
    return datetime.strptime(value, EXPIRATION_FORMAT).replace(tzinfo=timezone.utc)


def encode_cache_item(credentials):
    """Build the cache file document for a set of credentials."""
    return {
        "Credentials": {
            "AccessKeyId": credentials.access_key_id,
            "SecretAccessKey": credentials.secret_access_key,
            "SessionToken": credentials.session_token,
            "Expiration": format_expiration(credentials.expiration),
        }
    }


def decode_cache_item(item):
    """
    Read credentials from a cache file document.

    Extra fields written by the AWS CLI (AssumedRoleUser, ResponseMetadata)
    are ignored.

    Raises:
        KeyError, TypeError, ValueError: If the document is not a cache entry
    """
    creds = item["Credentials"]
    return Credentials(
        access_key_id=creds["AccessKeyId"],
        secret_access_key=creds["SecretAccessKey"],
        session_token=creds["SessionToken"],
        expiration=parse_expiration(creds["Expiration"]),
    )


class CredentialCache:
    """
    File-backed credential cache in front of an upstream credential source.

    Args:
        retriever: Object with a retrieve() method returning Credentials
        parameters: AssumeRoleParameters used to derive the cache file name
        cache_dir: Cache directory (default: ~/.aws/cli/cache)
        clock: Callable returning the current aware UTC datetime
    """

    def __init__(self, retriever, parameters, cache_dir=None, clock=None):
        self.retriever = retriever
        self.parameters = parameters
        self.cache_key = derive_cache_key(parameters)
        self.cache_dir = Path(cache_dir or get_cache_dir())
        self._clock = clock or utcnow

    @property
    def path(self):
        return self.cache_dir / f"{self.cache_key}.json"

    def load(self, skip_cache=False):
        """
        Return valid cached credentials, or fetch and cache fresh ones.

        Args:
            skip_cache: If True, ignore any cached entry and always call upstream

        Returns:
            Credentials

        Raises:
            CachePersistenceError: If fresh credentials could not be written;
                the credentials are available on the exception
            Any error raised by the retriever, unchanged
        """
        if not skip_cache:
            creds = self.get()
            if creds is not None and not creds.expired(self._clock()):
                logger.debug("Using cached credentials from %s", self.path)
                return creds

        creds = self.retriever.retrieve()
        self.save(creds)
        return creds

    def get(self):
        """
        Read the cache entry.

        Returns:
            Credentials, or None if the file is missing or unreadable
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                item = json.load(f)
            return decode_cache_item(item)
        except FileNotFoundError:
            logger.debug("No cache file at %s", self.path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug("Ignoring unreadable cache file %s: %s", self.path, e)
        return None

    def save(self, credentials):
        """
        Write credentials to the cache file with owner-only permissions.

        The cache directory is only created when its parent already exists;
        the AWS CLI tree itself (~/.aws/cli) is never created from nothing.

        Raises:
            CachePersistenceError: If the directory or file cannot be written
        """
        try:
            if not self.cache_dir.exists() and self.cache_dir.parent.exists():
                self.cache_dir.mkdir(mode=CACHE_DIR_MODE, exist_ok=True)
            data = json.dumps(encode_cache_item(credentials))
            self._write_atomic(data)
        except (OSError, TypeError, ValueError) as e:
            raise CachePersistenceError(
                f"Failed to write cache file {self.path}: {e}", credentials
            ) from e
        logger.debug("Cached credentials in %s", self.path)

    def _write_atomic(self, data):
        # mkstemp creates the file with mode 0600
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.chmod(tmp_path, CACHE_FILE_MODE)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
