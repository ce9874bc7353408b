"""
Teardown stages and their fixed order.

In-cluster controllers remove the load balancers and volumes they created
only while the cluster and its IAM roles still exist, so workload, claim and
ingress go before the final full destroy.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Sequence

from botocore.exceptions import BotoCoreError, ClientError
from urllib3.exceptions import HTTPError

from .classify import Outcome
from .config import Environment, TeardownSettings
from .errors import KubeError
from .nodes import terminate_karpenter_nodes
from .terraform import TerraformRunner

logger = logging.getLogger(__name__)

_NOTHING_DESTROYED = re.compile(r"No objects need to be destroyed|Resources: 0 destroyed")


class StageOutcome(Enum):
    """How a stage ended; ALREADY_ABSENT is reported as a warning."""
    SUCCEEDED = "succeeded"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


@dataclass
class StageResult:
    """Outcome of one stage with a short human-readable detail."""
    outcome: StageOutcome
    detail: str = ""


@dataclass
class Stage:
    """One ordered unit of teardown work."""
    label: str
    critical: bool
    action: Callable[[], StageResult]


def destroy_result(terraform: TerraformRunner, env: Environment, targets: Sequence[str]) -> StageResult:
    """
    Run a (targeted) destroy and map it to a StageResult.

    A missing resource counts as already removed, both when Terraform
    reports nothing to destroy and when it fails with a not-found error.
    """
    result = terraform.destroy(env.var_file, targets)

    if result.ok:
        if _NOTHING_DESTROYED.search(result.output):
            return StageResult(StageOutcome.ALREADY_ABSENT, "nothing left to destroy")
        return StageResult(StageOutcome.SUCCEEDED)

    if result.outcome == Outcome.NOT_FOUND:
        return StageResult(StageOutcome.ALREADY_ABSENT, result.classification.last_error)

    classification = result.classification
    detail = classification.message
    if classification.hint:
        detail = f"{detail} ({classification.hint})"
    return StageResult(StageOutcome.FAILED, detail)


def build_stages(
    env: Environment,
    settings: TeardownSettings,
    terraform: TerraformRunner,
    kube_factory: Callable[[], Any],
    ec2: Any,
) -> List[Stage]:
    """
    Build the ordered stage list for an environment.

    Args:
        env: Environment being torn down
        settings: Resource targets and poll settings
        terraform: Runner bound to the root module
        kube_factory: Returns a connected KubeClient (called lazily)
        ec2: boto3 EC2 client, used by the Karpenter variant

    Returns:
        Stages in execution order
    """
    stages: List[Stage] = []

    def _destroy(*targets: str) -> Callable[[], StageResult]:
        return lambda: destroy_result(terraform, env, targets)

    if env.karpenter:
        def _terminate_nodes() -> StageResult:
            try:
                count = terminate_karpenter_nodes(
                    ec2, env.cluster_id, settings.poll_timeout_s, settings.poll_interval_s)
            except (ClientError, BotoCoreError) as e:
                return StageResult(StageOutcome.FAILED, str(e))
            if not count:
                return StageResult(StageOutcome.ALREADY_ABSENT, "no Karpenter nodes running")
            return StageResult(StageOutcome.SUCCEEDED, f"{count} node(s) terminated")

        stages.extend([
            Stage("Terminating Karpenter nodes", False, _terminate_nodes),
            Stage("Destroying Karpenter module", False,
                  _destroy(settings.karpenter_module_target)),
            Stage("Destroying Karpenter IAM role bindings", False,
                  _destroy(*settings.karpenter_iam_targets)),
            Stage("Destroying Karpenter access entry", False,
                  _destroy(settings.karpenter_access_entry_target)),
        ])

    def _unblock_and_destroy_ingress() -> StageResult:
        note = ""
        try:
            kube = kube_factory()
            webhooks = kube.delete_admission_webhooks(settings.webhook_prefixes)
            patched = kube.strip_finalizers()
            note = f"{len(webhooks)} webhook(s) removed, {patched} finalizer(s) stripped"
        except (KubeError, HTTPError) as e:
            reason = getattr(e, "message", None) or str(e)
            logger.warning(f"Could not unblock ingress deletion: {reason}")
            note = f"unblocking skipped: {reason}"

        result = destroy_result(terraform, env, [settings.ingress_target])
        result.detail = "; ".join(part for part in (note, result.detail) if part)
        return result

    stages.extend([
        Stage("Running terraform destroy on the application deployment", True,
              _destroy(settings.workload_target)),
        Stage("Running terraform destroy on the persistent volume claim", False,
              _destroy(settings.storage_claim_target)),
        Stage("Unblocking and destroying the ingress", False, _unblock_and_destroy_ingress),
        Stage("Running terraform destroy on all remaining resources", True, _destroy()),
    ])

    return stages
