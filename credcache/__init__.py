"""
credcache: AWS CLI credential_process with MFA and AWS CLI compatible caching.

Assumes the role configured in an AWS profile, asking for an MFA code on the
terminal or calculating it on a YubiKey, and caches the temporary credentials
in ~/.aws/cli/cache using the same file names and format as the AWS CLI, so
repeated invocations do not ask for MFA again until the credentials expire.

Key features:
- AWS CLI compatible cache keys and cache files
- MFA codes from the controlling terminal or a YubiKey (OATH)
- credential_process JSON or shell export output
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .cache import (
    AssumeRoleParameters,
    CredentialCache,
    Credentials,
    derive_cache_key,
    format_expiration,
    get_cache_dir,
    parse_expiration,
)
from .core import (
    AssumeRoleRetriever,
    CredentialBroker,
    Settings,
    get_aws_config_path,
    get_profile_config,
    read_aws_config,
)
from .errors import (
    CachePersistenceError,
    ConfigurationError,
    CredCacheError,
    MFAError,
    RetrievalError,
)
from .mfa import MFATokenSource, TerminalPrompt, YubiKeyOATH

__all__ = [
    # Acquisition
    "Settings",
    "CredentialBroker",
    "AssumeRoleRetriever",
    # Cache
    "AssumeRoleParameters",
    "Credentials",
    "CredentialCache",
    "derive_cache_key",
    "format_expiration",
    "parse_expiration",
    "get_cache_dir",
    # MFA token sources
    "MFATokenSource",
    "TerminalPrompt",
    "YubiKeyOATH",
    # AWS config
    "get_aws_config_path",
    "get_profile_config",
    "read_aws_config",
    # Errors
    "CredCacheError",
    "ConfigurationError",
    "MFAError",
    "RetrievalError",
    "CachePersistenceError",
]
