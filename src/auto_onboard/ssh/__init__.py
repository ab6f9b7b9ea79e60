"""SSH utilities for auto-onboard."""

from .credentials import LocalKeyPair, PublicKey, SSHCredentials
from .session import SSHAuthenticationError, SSHCommandResult, SSHConnectionError, SSHSession
from .executor import RemoteExecutor, SSHRemoteExecutor, privileged_command
from .host_keys import TrustOnFirstUsePolicy, fingerprint_sha256
from .probe import ConnectionProbe, ProbeResult

__all__ = [
    "LocalKeyPair",
    "PublicKey",
    "SSHCredentials",
    "SSHCommandResult",
    "SSHAuthenticationError",
    "SSHConnectionError",
    "SSHSession",
    "RemoteExecutor",
    "SSHRemoteExecutor",
    "privileged_command",
    "TrustOnFirstUsePolicy",
    "fingerprint_sha256",
    "ConnectionProbe",
    "ProbeResult",
]
