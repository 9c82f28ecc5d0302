"""Secret key resolution, age encryption and the decrypted-config cache."""

from .age import SECRET_KEY_PREFIX, AgeTool
from .bitwarden import BitwardenClient, VaultItem
from .cache import EncryptedConfigCache
from .resolver import KeySources, SecretResolver, build_resolver

__all__ = [
    "SECRET_KEY_PREFIX",
    "AgeTool",
    "BitwardenClient",
    "VaultItem",
    "EncryptedConfigCache",
    "KeySources",
    "SecretResolver",
    "build_resolver",
]
