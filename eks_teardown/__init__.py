"""
eks-teardown - Staged teardown orchestrator for the EKS demo stack.

This package provides a CLI that destroys a Terraform-managed EKS environment
in dependency order and sweeps the load balancer resources an in-cluster
controller may have left behind.
"""

__version__ = "0.1.0"
