"""
Credential acquisition for credcache.

Reads the assume-role profile from ~/.aws/config, calls STS AssumeRole with
boto3 (prompting for MFA when the profile requires it), and decides whether
the AWS CLI compatible cache is consulted.
"""

import configparser
import logging
import os
import time
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .cache import AssumeRoleParameters, CredentialCache, Credentials, get_cache_dir
from .errors import CachePersistenceError, ConfigurationError, RetrievalError
from .mfa import TerminalPrompt, YubiKeyOATH

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
CREDENTIAL_SOURCES = ("Environment", "Ec2InstanceMetadata", "EcsContainer")
DEFAULT_DURATION_SECONDS = 60 * 60
MIN_DURATION_SECONDS = 15 * 60
MAX_DURATION_SECONDS = 12 * 60 * 60


@dataclass(frozen=True)
class Settings:
    """Options for a single credcache invocation."""

    profile: str = None
    use_cache: bool = True
    force_refresh: bool = False
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    use_yubikey: bool = False
    as_variables: bool = False
    cache_dir: str = None

    @property
    def profile_name(self):
        return self.profile or os.environ.get("AWS_PROFILE") or "default"


def get_aws_config_path():
    """Get the AWS config file path."""
    return os.environ.get("AWS_CONFIG_FILE") or os.path.expanduser("~/.aws/config")


def read_aws_config(config_file):
    """
    Read AWS config file.

    Args:
        config_file: Path to config file

    Returns:
        ConfigParser object with config
    """
    config = configparser.ConfigParser(interpolation=None)
    config.optionxform = str  # Preserve case sensitivity
    if os.path.exists(config_file):
        config.read(config_file)
    return config


def get_profile_config(profile_name, config_file=None):
    """
    Get the settings of a profile from ~/.aws/config.

    Args:
        profile_name: Profile name
        config_file: Path to config file (default: AWS_CONFIG_FILE or ~/.aws/config)

    Returns:
        dict: The profile's settings

    Raises:
        ConfigurationError: If the file cannot be parsed or the profile is not defined
    """
    config_file = config_file or get_aws_config_path()
    try:
        config = read_aws_config(config_file)
    except configparser.Error as e:
        raise ConfigurationError(f"Failed to parse AWS config file {config_file}: {e}") from e

    # Profile section name: "default" for default profile, "profile NAME" for others
    profile_section = "default" if profile_name == "default" else f"profile {profile_name}"

    if profile_section not in config:
        raise ConfigurationError(f"Profile '{profile_name}' not found in AWS config")

    return dict(config[profile_section])


class AssumeRoleRetriever:
    """
    Obtain credentials by assuming the role configured in a profile.

    The profile must name the role and the profile holding the credentials
    that assume it:

        [profile admin]
        role_arn = arn:aws:iam::123456789012:role/admin
        source_profile = default
        mfa_serial = arn:aws:iam::123456789012:mfa/alice

    Instead of source_profile, credential_source (Environment,
    Ec2InstanceMetadata or EcsContainer) takes the source credentials from
    the default chain. The STS region is the profile's region, then
    AWS_REGION, then AWS_DEFAULT_REGION, then us-east-1.

    Args:
        settings: Settings for this invocation
        profile_config: Profile settings (default: read from the AWS config file)
        token_source: MFA token source (default: chosen from settings)
    """

    def __init__(self, settings, profile_config=None, token_source=None):
        self.settings = settings
        if profile_config is None:
            profile_config = get_profile_config(settings.profile_name)
        self.profile_config = profile_config

        self.role_arn = profile_config.get("role_arn")
        self.source_profile = profile_config.get("source_profile")
        self.credential_source = profile_config.get("credential_source")
        if not self.role_arn:
            raise ConfigurationError(
                f"Profile '{settings.profile_name}' does not define role_arn"
            )
        if self.source_profile and self.credential_source:
            raise ConfigurationError(
                f"Profile '{settings.profile_name}' defines both source_profile "
                f"and credential_source"
            )
        if not self.source_profile and not self.credential_source:
            raise ConfigurationError(
                f"Profile '{settings.profile_name}' does not define source_profile "
                f"or credential_source"
            )
        if self.credential_source and self.credential_source not in CREDENTIAL_SOURCES:
            raise ConfigurationError(
                f"Unsupported credential_source '{self.credential_source}'. "
                f"Valid sources: {', '.join(CREDENTIAL_SOURCES)}"
            )

        self.serial_number = profile_config.get("mfa_serial") or os.environ.get("AWS_MFA_SERIAL")
        self.external_id = profile_config.get("external_id")
        self.region = (
            profile_config.get("region")
            or os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or DEFAULT_REGION
        )

        if token_source is None:
            token_source = self._default_token_source()
        self.token_source = token_source

    def _default_token_source(self):
        if self.settings.use_yubikey:
            if not self.serial_number:
                raise ConfigurationError(
                    "Reading MFA codes from a YubiKey requires mfa_serial in the profile "
                    "or the AWS_MFA_SERIAL environment variable"
                )
            return YubiKeyOATH(self.serial_number)
        return TerminalPrompt()

    @property
    def parameters(self):
        """AssumeRoleParameters identifying this role's cache entry."""
        return AssumeRoleParameters(
            role_arn=self.role_arn,
            duration_seconds=self.settings.duration_seconds,
            external_id=self.external_id,
            serial_number=self.serial_number,
        )

    def role_session_name(self):
        return self.profile_config.get("role_session_name") or (
            f"credcache-session-{int(time.time())}"
        )

    def source_description(self):
        if self.source_profile:
            return f"source profile '{self.source_profile}'"
        return f"credential source '{self.credential_source}'"

    def create_session(self):
        """
        Create the boto3 session holding the credentials that assume the role.

        With credential_source, botocore's default chain (environment, container
        or instance metadata) supplies them.
        """
        if self.source_profile:
            return boto3.Session(profile_name=self.source_profile)
        return boto3.Session()

    def assume_role_kwargs(self):
        """Build the AssumeRole arguments, asking for an MFA code if needed."""
        kwargs = {
            "RoleArn": self.role_arn,
            "RoleSessionName": self.role_session_name(),
            "DurationSeconds": self.settings.duration_seconds,
        }
        if self.external_id:
            kwargs["ExternalId"] = self.external_id
        if self.serial_number:
            kwargs["SerialNumber"] = self.serial_number
            kwargs["TokenCode"] = self.token_source.obtain()
        return kwargs

    def retrieve(self):
        """
        Call STS AssumeRole.

        Returns:
            Credentials

        Raises:
            MFAError: If the MFA code could not be obtained
            RetrievalError: If the STS call fails
        """
        try:
            sts_client = self.create_session().client("sts", region_name=self.region)
        except BotoCoreError as e:
            raise RetrievalError(
                f"Failed to create a session for {self.source_description()}: {e}"
            ) from e

        kwargs = self.assume_role_kwargs()
        try:
            response = sts_client.assume_role(**kwargs)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            error_msg = e.response.get("Error", {}).get("Message", str(e))
            logger.debug("AssumeRole failed: role=%s, error=%s", self.role_arn, error_code)
            raise RetrievalError(
                f"Failed to assume role {self.role_arn}: {error_msg}", code=error_code
            ) from e
        except BotoCoreError as e:
            raise RetrievalError(f"AWS connection failed: {e}") from e

        creds = response["Credentials"]
        logger.debug("Assumed role %s, session=%s", self.role_arn, kwargs["RoleSessionName"])
        return Credentials(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds["SessionToken"],
            expiration=creds["Expiration"],
        )


class CredentialBroker:
    """
    Decide between the cache and the upstream retriever.

    use_cache and force_refresh are independent: without the cache the disk
    is never touched, while a forced refresh still rewrites the cache entry.

    Args:
        settings: Settings for this invocation
        retriever: Object with retrieve() and a parameters property
        cache: CredentialCache (default: built from the retriever's parameters)
    """

    def __init__(self, settings, retriever, cache=None):
        self.settings = settings
        self.retriever = retriever
        if cache is None and settings.use_cache:
            cache = CredentialCache(
                retriever,
                retriever.parameters,
                cache_dir=settings.cache_dir or get_cache_dir(),
            )
        self.cache = cache

    def acquire(self):
        """
        Get credentials for this invocation.

        Returns:
            Credentials
        """
        if not self.settings.use_cache:
            return self.retriever.retrieve()

        try:
            return self.cache.load(skip_cache=self.settings.force_refresh)
        except CachePersistenceError as e:
            logger.warning("%s", e)
            return e.credentials
