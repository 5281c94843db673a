"""boto3 adapters for the control plane and the object store."""

from __future__ import annotations

from .cloudformation import CloudFormationControlPlane
from .s3 import S3ObjectStore

__all__ = ["CloudFormationControlPlane", "S3ObjectStore"]
