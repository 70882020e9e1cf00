"""Background provisioning runs and their progress."""

from glinr.pipeline.progress import ProvisioningProgress, ProvisioningStage
from glinr.pipeline.provisioner import ProvisioningPipeline

__all__ = ["ProvisioningPipeline", "ProvisioningProgress", "ProvisioningStage"]
