"""
easyk8s/errors.py

Error taxonomy shared by providers, channels, the bootstrap sequencer and the
validation pipeline:

  - PreconditionError: malformed spec, missing credential or tool. Raised
    before any side effect is attempted.
  - BackendError: tofu / cloud CLI failure. Fatal while provisioning.
  - RemoteExecutionError: a single node's command failed or timed out.
  - ResolutionError: no API endpoint candidate could be resolved.
  - ProviderNotImplementedError: the backend is registered but not built yet.
  - CheckError: a health query found the cluster unhealthy.
  - BootstrapError: the sequencer reached FAILED(phase, cause).
"""

from __future__ import annotations

from typing import Optional


class EasyK8sError(Exception):
    """Base class for every error raised by easyk8s."""


class PreconditionError(EasyK8sError):
    """The cluster spec or local environment does not allow the operation."""


class BackendError(EasyK8sError):
    """The provisioning backend (tofu or a cloud CLI) failed."""


class RemoteExecutionError(EasyK8sError):
    """A command on a remote node could not be submitted or did not succeed.

    Attributes:
        node_id: The remote identifier of the node, if known.
    """

    def __init__(self, message: str, node_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class RemoteCommandTimeout(RemoteExecutionError, TimeoutError):
    """A remote command did not reach a terminal state within its poll policy."""


class ResolutionError(EasyK8sError):
    """No externally reachable API endpoint candidate is available."""


class ProviderNotImplementedError(EasyK8sError):
    """The backend is listed in the registry but has no implementation yet."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} provider not yet implemented")
        self.provider = provider


class CheckError(EasyK8sError):
    """A health query ran but the cluster failed the check."""


class BootstrapError(EasyK8sError):
    """The bootstrap sequencer stopped in its FAILED state.

    Attributes:
        phase: The phase that was running when the failure happened.
        cause: The underlying exception.
    """

    def __init__(self, phase: str, cause: BaseException) -> None:
        super().__init__(f"bootstrap failed during {phase}: {cause}")
        self.phase = phase
        self.cause = cause


__all__ = [
    "EasyK8sError",
    "PreconditionError",
    "BackendError",
    "RemoteExecutionError",
    "RemoteCommandTimeout",
    "ResolutionError",
    "ProviderNotImplementedError",
    "CheckError",
    "BootstrapError",
]
