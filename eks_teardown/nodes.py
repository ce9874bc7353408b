"""
Karpenter-provisioned EC2 nodes.

Karpenter launches instances directly through EC2, so they never appear in
Terraform state and must be terminated before the Karpenter module goes.
"""

import logging
import time
from typing import Any, Callable, List

from botocore.exceptions import ClientError

from .poll import poll_until

logger = logging.getLogger(__name__)

LIVE_STATES = ["pending", "running", "stopping", "stopped", "shutting-down"]


def list_karpenter_instances(ec2: Any, cluster_id: str, states: List[str] = LIVE_STATES) -> List[str]:
    """
    List instance ids launched by Karpenter for this cluster.

    Args:
        ec2: boto3 EC2 client
        cluster_id: EKS cluster name
        states: Instance states to include

    Returns:
        Instance ids
    """
    paginator = ec2.get_paginator("describe_instances")
    instance_ids = []

    for page in paginator.paginate(Filters=[
        {"Name": "tag-key", "Values": ["karpenter.sh/nodepool"]},
        {"Name": f"tag:kubernetes.io/cluster/{cluster_id}", "Values": ["owned"]},
        {"Name": "instance-state-name", "Values": states},
    ]):
        for reservation in page.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                instance_ids.append(instance["InstanceId"])

    return instance_ids


def terminate_karpenter_nodes(
    ec2: Any,
    cluster_id: str,
    timeout_s: float,
    interval_s: float,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Terminate Karpenter nodes and wait for them to be gone.

    Args:
        ec2: boto3 EC2 client
        cluster_id: EKS cluster name
        timeout_s: How long to wait for termination
        interval_s: Poll interval

    Returns:
        Number of instances terminated (0 when there were none)

    Raises:
        ClientError: If listing or terminating fails
    """
    instance_ids = list_karpenter_instances(ec2, cluster_id)
    if not instance_ids:
        logger.info(f"No Karpenter nodes found for {cluster_id}")
        return 0

    logger.info(f"Terminating {len(instance_ids)} Karpenter node(s): {', '.join(instance_ids)}")
    ec2.terminate_instances(InstanceIds=instance_ids)

    def _all_terminated() -> bool:
        try:
            remaining = list_karpenter_instances(ec2, cluster_id)
        except ClientError as e:
            logger.warning(f"Could not check Karpenter nodes: {e}")
            return False
        return not set(remaining) & set(instance_ids)

    poll_until(_all_terminated, timeout_s, interval_s,
               f"waiting for {len(instance_ids)} Karpenter node(s) to terminate", sleep=sleep)
    return len(instance_ids)
