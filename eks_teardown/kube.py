"""
Kubernetes API calls that unblock load balancer teardown.

Removing the AWS Load Balancer Controller's admission webhooks and the
finalizers on Ingress / TargetGroupBinding objects lets Terraform delete the
ingress even when the controller is already unhealthy.
"""

import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import KubeError

logger = logging.getLogger(__name__)

TGB_GROUP = "elbv2.k8s.aws"
TGB_VERSION = "v1beta1"
TGB_PLURAL = "targetgroupbindings"

# JSON patch; only sent when finalizers are present
_REMOVE_FINALIZERS = [{"op": "remove", "path": "/metadata/finalizers"}]


@contextmanager
def _api_reachable(action: str) -> Iterator[None]:
    """Turn urllib3 transport errors (endpoint down, DNS, TLS) into KubeError."""
    try:
        yield
    except HTTPError as e:
        raise KubeError(f"{action} failed: Kubernetes API unreachable ({e})")


def write_kubeconfig(
    cluster_id: str,
    region: str,
    path: Path,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> Path:
    """
    Write a kubeconfig for the cluster with `aws eks update-kubeconfig`.

    Raises:
        KubeError: If the AWS CLI is missing or the cluster cannot be described
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "aws", "eks", "update-kubeconfig",
        "--name", cluster_id,
        "--region", region,
        "--kubeconfig", str(path),
    ]
    try:
        proc = runner(cmd, check=False, capture_output=True, text=True)
    except OSError as e:
        raise KubeError(f"Could not run aws cli: {e}")
    if proc.returncode != 0:
        raise KubeError(f"aws eks update-kubeconfig failed: {(proc.stderr or '').strip()}")
    return path


class KubeClient:
    """Thin wrapper around the official Kubernetes client APIs we need."""

    def __init__(self, api_client: Any):
        self.admission = client.AdmissionregistrationV1Api(api_client)
        self.networking = client.NetworkingV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    @classmethod
    def for_cluster(cls, cluster_id: str, region: str, kubeconfig: Path,
                    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> "KubeClient":
        """
        Connect to an EKS cluster.

        Args:
            cluster_id: EKS cluster name
            region: AWS region
            kubeconfig: Where to write the generated kubeconfig

        Returns:
            KubeClient bound to the cluster

        Raises:
            KubeError: If the kubeconfig cannot be written or loaded
        """
        write_kubeconfig(cluster_id, region, kubeconfig, runner=runner)
        try:
            api_client = config.new_client_from_config(config_file=str(kubeconfig))
        except (config.ConfigException, OSError) as e:
            raise KubeError(f"Could not load kubeconfig {kubeconfig}: {e}")
        return cls(api_client)

    def delete_admission_webhooks(self, prefixes: Iterable[str]) -> List[str]:
        """
        Delete mutating and validating webhook configurations by name prefix.

        Args:
            prefixes: Name prefixes to match

        Returns:
            Names of deleted configurations (already-gone ones are not listed)

        Raises:
            KubeError: If the API is unreachable, listing fails or a delete
                fails with anything but 404
        """
        prefixes = tuple(prefixes)
        deleted = []
        kinds = (
            ("mutating", self.admission.list_mutating_webhook_configuration,
             self.admission.delete_mutating_webhook_configuration),
            ("validating", self.admission.list_validating_webhook_configuration,
             self.admission.delete_validating_webhook_configuration),
        )

        with _api_reachable("Deleting admission webhooks"):
            for kind, list_fn, delete_fn in kinds:
                try:
                    items = list_fn().items or []
                except ApiException as e:
                    raise KubeError(f"Listing {kind} webhook configurations failed: {e.reason}")

                for item in items:
                    name = item.metadata.name
                    if not name.startswith(prefixes):
                        continue
                    try:
                        delete_fn(name)
                        deleted.append(name)
                        logger.info(f"Deleted {kind} webhook configuration {name}")
                    except ApiException as e:
                        if e.status != 404:
                            raise KubeError(f"Deleting {kind} webhook {name} failed: {e.reason}")

        return deleted

    def strip_finalizers(self) -> int:
        """
        Remove finalizers from every Ingress and TargetGroupBinding.

        Returns:
            Number of objects patched

        Raises:
            KubeError: If the API is unreachable, ingresses cannot be listed
                or a patch fails with anything but 404
        """
        with _api_reachable("Stripping finalizers"):
            patched = self._strip_ingress_finalizers()
            return patched + self._strip_binding_finalizers()

    def _strip_ingress_finalizers(self) -> int:
        patched = 0
        try:
            ingresses = self.networking.list_ingress_for_all_namespaces().items or []
        except ApiException as e:
            raise KubeError(f"Listing ingresses failed: {e.reason}")

        for ing in ingresses:
            if not ing.metadata.finalizers:
                continue
            try:
                self.networking.patch_namespaced_ingress(
                    ing.metadata.name, ing.metadata.namespace, _REMOVE_FINALIZERS)
                patched += 1
                logger.info(f"Removed finalizers from ingress {ing.metadata.namespace}/{ing.metadata.name}")
            except ApiException as e:
                if e.status != 404:
                    raise KubeError(f"Patching ingress {ing.metadata.name} failed: {e.reason}")
        return patched

    def _strip_binding_finalizers(self) -> int:
        patched = 0
        try:
            bindings = self.custom.list_cluster_custom_object(TGB_GROUP, TGB_VERSION, TGB_PLURAL)
        except ApiException as e:
            if e.status == 404:
                # CRD not installed (controller chart already gone)
                return 0
            raise KubeError(f"Listing targetgroupbindings failed: {e.reason}")

        for tgb in bindings.get("items", []):
            meta = tgb.get("metadata", {})
            if not meta.get("finalizers"):
                continue
            try:
                self.custom.patch_namespaced_custom_object(
                    TGB_GROUP, TGB_VERSION, meta.get("namespace"), TGB_PLURAL,
                    meta.get("name"), _REMOVE_FINALIZERS)
                patched += 1
                logger.info(f"Removed finalizers from targetgroupbinding {meta.get('namespace')}/{meta.get('name')}")
            except ApiException as e:
                if e.status != 404:
                    raise KubeError(f"Patching targetgroupbinding {meta.get('name')} failed: {e.reason}")
        return patched
