"""Versioned, immutable publication of content under an ENS parent name.

Every deployment creates a fresh ``v<N>.<parent>`` subname, points its
contenthash at the uploaded CID and burns fuses so that neither the record
nor the name can change afterwards.  Creation goes through a threshold-approval
governance account (a Safe multisig), so no single key can publish.

The entry point is :class:`ens_publish.driver.PublicationDriver`, which
orchestrates:

* resolving the next free version slot under the parent;
* detecting whether governance or an individual controls the parent;
* building the calldata for the locked child and its contenthash; and
* submitting the operations as a governance proposal and tracking it until
  it executes.

The package itself never reads configuration files or the environment; the
``publish_cli`` package builds a :class:`ens_publish.config.PublishConfig` and
hands it over.
"""

from .config import DeploymentMode, DeploymentPlan, DeploymentResult, NETWORKS, PublishConfig  # noqa: F401
from .driver import PublicationDriver  # noqa: F401

__all__ = [
    "DeploymentMode",
    "DeploymentPlan",
    "DeploymentResult",
    "NETWORKS",
    "PublicationDriver",
    "PublishConfig",
]
