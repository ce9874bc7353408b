"""
Resource sweep for load balancers, target groups and security groups.

The AWS Load Balancer Controller creates these from Ingress objects, so they
are not in Terraform state. When the controller dies before it can react to
the ingress deletion they stay behind (and keep costing money). Everything
here is best-effort: failures are logged and counted, never raised.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import OrphanSweepFailure
from ..poll import poll_until
from .models import FoundResource, SweepResult

logger = logging.getLogger(__name__)

NAME_PREFIX = "k8s-"
CLUSTER_TAG = "elbv2.k8s.aws/cluster"
TAG_BATCH = 20  # elbv2 DescribeTags limit


def is_owned_by(tags: Dict[str, str], cluster_id: str) -> bool:
    """
    Check whether a tag set ties a resource to exactly this cluster.

    Args:
        tags: Resource tags
        cluster_id: EKS cluster name

    Returns:
        True for `elbv2.k8s.aws/cluster=<cluster_id>` or a
        `kubernetes.io/cluster/<cluster_id>` tag key
    """
    return tags.get(CLUSTER_TAG) == cluster_id or f"kubernetes.io/cluster/{cluster_id}" in tags


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class OrphanReclaimer:
    """Finds and deletes controller-created resources tagged for one cluster."""

    def __init__(
        self,
        cluster_id: str,
        elbv2: Any,
        ec2: Any,
        timeout_s: float = 600.0,
        interval_s: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster_id = cluster_id
        self.elbv2 = elbv2
        self.ec2 = ec2
        self.timeout_s = timeout_s
        self.interval_s = interval_s
        self.sleep = sleep

    def sweep(self) -> List[SweepResult]:
        """
        Delete orphaned load balancers, then target groups, then security groups.

        Returns:
            One SweepResult per resource kind
        """
        lb_result = self._sweep_load_balancers()
        tg_result = self._sweep_target_groups()
        sg_result = self._sweep_security_groups()
        return [lb_result, tg_result, sg_result]

    def _elbv2_owned(self, kind: str, candidates: Dict[str, str]) -> List[FoundResource]:
        """Look up tags for candidate ARNs (arn -> name) and keep the owned ones."""
        found = []
        for batch in _chunks(list(candidates), TAG_BATCH):
            response = self.elbv2.describe_tags(ResourceArns=batch)
            for desc in response.get("TagDescriptions", []):
                tags = {t["Key"]: t["Value"] for t in desc.get("Tags", [])}
                arn = desc["ResourceArn"]
                if is_owned_by(tags, self.cluster_id):
                    found.append(FoundResource(kind=kind, resource_id=arn,
                                               name=candidates.get(arn, arn), tags=tags))
        return found

    def list_load_balancers(self) -> List[FoundResource]:
        candidates = {}
        paginator = self.elbv2.get_paginator("describe_load_balancers")
        for page in paginator.paginate():
            for lb in page.get("LoadBalancers", []):
                if lb["LoadBalancerName"].startswith(NAME_PREFIX):
                    candidates[lb["LoadBalancerArn"]] = lb["LoadBalancerName"]
        return self._elbv2_owned("load-balancer", candidates)

    def list_target_groups(self) -> List[FoundResource]:
        candidates = {}
        paginator = self.elbv2.get_paginator("describe_target_groups")
        for page in paginator.paginate():
            for tg in page.get("TargetGroups", []):
                if tg["TargetGroupName"].startswith(NAME_PREFIX):
                    candidates[tg["TargetGroupArn"]] = tg["TargetGroupName"]
        return self._elbv2_owned("target-group", candidates)

    def list_security_groups(self) -> List[FoundResource]:
        found = []
        paginator = self.ec2.get_paginator("describe_security_groups")
        for page in paginator.paginate(Filters=[{"Name": "group-name", "Values": [f"{NAME_PREFIX}*"]}]):
            for sg in page.get("SecurityGroups", []):
                tags = {t["Key"]: t["Value"] for t in sg.get("Tags", [])}
                if is_owned_by(tags, self.cluster_id):
                    found.append(FoundResource(kind="security-group", resource_id=sg["GroupId"],
                                               name=sg.get("GroupName", ""), tags=tags))
        return found

    def _run_sweep(self, kind: str, lister: Callable[[], List[FoundResource]],
                   deleter: Callable[[FoundResource], None]) -> SweepResult:
        result = SweepResult(kind=kind)
        try:
            found = lister()
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Listing {kind}s failed, skipping: {e}")
            result.error = str(e)
            return result

        result.found = len(found)
        for resource in found:
            try:
                deleter(resource)
                result.deleted += 1
                logger.info(f"Deleted orphaned {kind} {resource.name} ({resource.resource_id})")
            except OrphanSweepFailure as e:
                result.failed += 1
                logger.warning(f"Failed to delete {kind} {resource.name}: {e.message}")
        return result

    def _sweep_load_balancers(self) -> SweepResult:
        result = self._run_sweep("load-balancer", self.list_load_balancers, self._delete_load_balancer)

        if result.deleted:
            def _gone() -> bool:
                try:
                    return not self.list_load_balancers()
                except (ClientError, BotoCoreError) as e:
                    logger.warning(f"Could not re-list load balancers: {e}")
                    return False

            # target groups stay in use until their load balancer is really gone
            poll_until(_gone, self.timeout_s, self.interval_s,
                       "waiting for orphaned load balancers to disappear", sleep=self.sleep)
        return result

    def _sweep_target_groups(self) -> SweepResult:
        return self._run_sweep("target-group", self.list_target_groups, self._delete_target_group)

    def _sweep_security_groups(self) -> SweepResult:
        return self._run_sweep("security-group", self.list_security_groups, self._delete_security_group)

    def _delete_load_balancer(self, resource: FoundResource) -> None:
        """Delete listeners first, then the load balancer."""
        arn = resource.resource_id
        try:
            paginator = self.elbv2.get_paginator("describe_listeners")
            for page in paginator.paginate(LoadBalancerArn=arn):
                for listener in page.get("Listeners", []):
                    self.elbv2.delete_listener(ListenerArn=listener["ListenerArn"])
            self.elbv2.delete_load_balancer(LoadBalancerArn=arn)
        except ClientError as e:
            if _error_code(e) in ("LoadBalancerNotFound", "ListenerNotFound"):
                logger.info(f"Load balancer {resource.name} already gone")
                return
            raise OrphanSweepFailure(resource.kind, arn, str(e)) from e
        except BotoCoreError as e:
            raise OrphanSweepFailure(resource.kind, arn, str(e)) from e

    def _retry_in_use(self, resource: FoundResource, delete: Callable[[], None],
                      in_use_codes: Iterable[str], gone_codes: Iterable[str]) -> None:
        """Retry a delete while the resource is still referenced, up to the poll timeout."""
        in_use_codes, gone_codes = tuple(in_use_codes), tuple(gone_codes)
        last_error: List[Exception] = []

        def _attempt() -> bool:
            try:
                delete()
                return True
            except ClientError as e:
                code = _error_code(e)
                if code in gone_codes:
                    return True
                if code in in_use_codes:
                    last_error[:] = [e]
                    return False
                raise OrphanSweepFailure(resource.kind, resource.resource_id, str(e)) from e
            except BotoCoreError as e:
                # connection and timeout errors are retried like an in-use resource
                last_error[:] = [e]
                return False

        if not poll_until(_attempt, self.timeout_s, self.interval_s,
                          f"deleting {resource.kind} {resource.name}", sleep=self.sleep):
            message = str(last_error[0]) if last_error else "still in use"
            raise OrphanSweepFailure(resource.kind, resource.resource_id, message)

    def _delete_target_group(self, resource: FoundResource) -> None:
        self._retry_in_use(
            resource,
            lambda: self.elbv2.delete_target_group(TargetGroupArn=resource.resource_id),
            in_use_codes=("ResourceInUse",),
            gone_codes=("TargetGroupNotFound",),
        )

    def _delete_security_group(self, resource: FoundResource) -> None:
        # ENIs of a just-deleted load balancer keep the group referenced for a while
        self._retry_in_use(
            resource,
            lambda: self.ec2.delete_security_group(GroupId=resource.resource_id),
            in_use_codes=("DependencyViolation",),
            gone_codes=("InvalidGroup.NotFound",),
        )
