"""Error taxonomy for the publication pipeline.

Every registry, governance and storage call is wrapped at its boundary and
re-raised as one of these classes with the underlying cause chained.  The
``retryable`` flag drives the driver's backoff loop and ``hint`` is what the
CLI prints as the operator's next step.
"""

from __future__ import annotations

from typing import Optional


class PublishError(Exception):
    """Base class for every error raised by ``ens_publish``."""

    code = "PUBLISH_ERROR"
    retryable = False
    hint: Optional[str] = None

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class ConfigError(PublishError, ValueError):
    code = "CONFIG_ERROR"
    hint = "Check the configuration file, environment variables and CLI flags."


class InvalidContentIdentifier(PublishError, ValueError):
    code = "INVALID_CONTENT_ID"
    hint = "The upload did not return a valid CID; nothing was written on-chain."


class StorageError(PublishError):
    code = "STORAGE_ERROR"
    hint = "Verify the storage provider is reachable and the directory exists."


class RegistryReadError(PublishError):
    code = "REGISTRY_READ_ERROR"
    retryable = True
    hint = "The RPC endpoint failed; retry later or configure another rpc_url."


class RegistryWriteError(PublishError):
    code = "REGISTRY_WRITE_ERROR"
    hint = "The transaction reverted; inspect it on a block explorer."


class WriteUnconfirmed(RegistryWriteError):
    """A write may have been broadcast but its outcome is unknown."""

    code = "WRITE_UNCONFIRMED"
    hint = "The transaction may still be mined; check the name before deploying again."


class VersionSlotConflict(PublishError):
    """Another deployment created the same version label first."""

    code = "VERSION_SLOT_CONFLICT"
    retryable = True
    hint = "Another deployment claimed this version; re-run to use the next one."

    def __init__(self, name: str, *, hint: Optional[str] = None) -> None:
        super().__init__(f"{name} already exists", hint=hint)
        self.name = name


class VersionLimitReached(PublishError):
    code = "VERSION_LIMIT_REACHED"
    hint = "Raise ens.max_versions in the configuration."


class FuseError(PublishError, ValueError):
    code = "FUSE_ERROR"


class AuthorizationError(PublishError):
    code = "AUTHORIZATION_ERROR"
    hint = "Use a signer key that is an owner of the Safe (or of the parent name)."


class GovernanceError(PublishError):
    code = "GOVERNANCE_ERROR"


class GovernanceUnavailable(GovernanceError):
    code = "GOVERNANCE_UNAVAILABLE"
    retryable = True
    hint = "The Safe Transaction Service is unreachable; retry later."


class ProposalNotFound(GovernanceError):
    code = "PROPOSAL_NOT_FOUND"
    hint = "Check the proposal hash and the configured Safe/network."


class PartialDeployment(PublishError):
    """Two-step deployment whose content proposal will never execute.

    The version slot exists on-chain (owned by governance, permanently locked)
    but carries no content.  Slots are never reused, so the only recovery is
    publishing a new version.
    """

    code = "PARTIAL_DEPLOYMENT"
    hint = "Governance rejected the content proposal; create a new version to retry."

    def __init__(
        self,
        name: str,
        proposal_id: Optional[str] = None,
        *,
        reason: str = "",
        hint: Optional[str] = None,
        confirmed: bool = True,
    ) -> None:
        if not confirmed:
            message = f"{name} may have been created but its creation was not confirmed"
        elif proposal_id is None:
            message = f"{name} was created but its content proposal could not be submitted"
        else:
            message = f"{name} was created but its content proposal {proposal_id} was not executed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, hint=hint)
        self.name = name
        self.proposal_id = proposal_id


class DeploymentCancelled(PublishError):
    code = "CANCELLED"
    hint = "No further writes were sent; pending proposals remain live."
