"""
Environment configuration for teardown runs.

An Environment is read once from a Terraform var-file and stays immutable
for the rest of the run.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigError

DEFAULT_CLUSTER_PREFIX = "guestbook"

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_ASSIGN_RE = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_-]*)\s*=\s*(.*?)\s*$')


@dataclass(frozen=True)
class Environment:
    """One deployment instance of the demo stack."""
    name: str           # also the Terraform workspace name
    region: str
    cluster_id: str     # e.g. "guestbook-demo1-cluster"
    var_file: Path
    tf_dir: Path
    karpenter: bool = False


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class TeardownSettings:
    """Knobs that are not part of the environment itself."""
    terraform_bin: str = "terraform"
    workload_target: str = "kubernetes_deployment_v1.guestbook_app_deployment"
    storage_claim_target: str = "kubernetes_persistent_volume_claim_v1.ebs_pvc"
    ingress_target: str = "kubernetes_ingress_v1.guestbook_ingress"
    karpenter_module_target: str = "module.karpenter"
    karpenter_iam_targets: List[str] = field(default_factory=lambda: [
        "aws_iam_role_policy_attachment.karpenter_node",
        "aws_iam_role_policy_attachment.karpenter_controller",
    ])
    karpenter_access_entry_target: str = "aws_eks_access_entry.karpenter_node"
    webhook_prefixes: List[str] = field(default_factory=lambda: ["aws-load-balancer-webhook"])
    poll_timeout_s: float = 600.0
    poll_interval_s: float = 15.0
    home: Path = Path(".eks-teardown")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "TeardownSettings":
        """
        Build settings from EKS_TEARDOWN_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            TeardownSettings with overrides applied

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        settings = cls()

        str_vars = {
            "EKS_TEARDOWN_TERRAFORM": "terraform_bin",
            "EKS_TEARDOWN_WORKLOAD_TARGET": "workload_target",
            "EKS_TEARDOWN_STORAGE_CLAIM_TARGET": "storage_claim_target",
            "EKS_TEARDOWN_INGRESS_TARGET": "ingress_target",
            "EKS_TEARDOWN_KARPENTER_MODULE": "karpenter_module_target",
            "EKS_TEARDOWN_KARPENTER_ACCESS_ENTRY": "karpenter_access_entry_target",
        }
        for var, attr in str_vars.items():
            if env.get(var):
                setattr(settings, attr, env[var])

        if env.get("EKS_TEARDOWN_KARPENTER_IAM_TARGETS"):
            settings.karpenter_iam_targets = _csv(env["EKS_TEARDOWN_KARPENTER_IAM_TARGETS"])
        if env.get("EKS_TEARDOWN_WEBHOOK_PREFIXES"):
            settings.webhook_prefixes = _csv(env["EKS_TEARDOWN_WEBHOOK_PREFIXES"])

        for var, attr in (("EKS_TEARDOWN_POLL_TIMEOUT", "poll_timeout_s"),
                          ("EKS_TEARDOWN_POLL_INTERVAL", "poll_interval_s")):
            if env.get(var):
                try:
                    setattr(settings, attr, float(env[var]))
                except ValueError:
                    raise ConfigError(f"{var} must be a number, got {env[var]!r}")

        if env.get("EKS_TEARDOWN_HOME"):
            settings.home = Path(env["EKS_TEARDOWN_HOME"])

        return settings


def _parse_value(raw: str) -> Optional[str]:
    # strip trailing comments outside quotes
    if raw.startswith('"'):
        end = raw.find('"', 1)
        if end == -1:
            return None
        return raw[1:end]
    raw = re.split(r"\s+(#|//)", raw, maxsplit=1)[0].strip()
    if raw in ("true", "false") or re.match(r"^-?\d+(\.\d+)?$", raw):
        return raw
    # lists, maps and heredocs are not needed here
    return None


def parse_tfvars(text: str) -> Dict[str, str]:
    """
    Parse top-level scalar assignments from a .tfvars file.

    Only `key = "string"`, `key = true|false` and numbers are returned;
    anything else (lists, maps, nested blocks) is skipped.

    Args:
        text: Contents of the var-file

    Returns:
        Dictionary of key to raw string value
    """
    values: Dict[str, str] = {}
    depth = 0

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("//"):
            continue

        if depth == 0:
            match = _ASSIGN_RE.match(line)
            if match:
                value = _parse_value(match.group(2))
                if value is not None:
                    values[match.group(1)] = value

        bare = re.sub(r'"[^"]*"', "", stripped)
        depth += bare.count("{") + bare.count("[")
        depth -= bare.count("}") + bare.count("]")
        depth = max(depth, 0)

    return values


def resolve_var_file(var_file: str, tf_dir: Path) -> Path:
    """
    Locate the var-file, falling back to <tf_dir>/environment/<basename>.

    Raises:
        ConfigError: If neither location exists
    """
    direct = Path(var_file)
    if direct.is_file():
        return direct.resolve()

    candidate = tf_dir / "environment" / direct.name
    if candidate.is_file():
        return candidate.resolve()

    raise ConfigError(
        f"{direct.name} does not exist",
        hint=f"Looked in {direct} and {candidate}",
    )


def load_environment(
    var_file: str,
    tf_dir: str = "terraform",
    cluster_prefix: Optional[str] = None,
    karpenter: bool = False,
) -> Environment:
    """
    Load the Environment described by a Terraform var-file.

    Args:
        var_file: Path (or bare name under <tf_dir>/environment) of the var-file
        tf_dir: Terraform root module directory
        cluster_prefix: Prefix used to derive the cluster name
        karpenter: Force the Karpenter variant on

    Returns:
        Environment for this run

    Raises:
        ConfigError: If the file is missing or env_name/region are absent or malformed
    """
    tf_path = Path(tf_dir)
    path = resolve_var_file(var_file, tf_path)

    try:
        values = parse_tfvars(path.read_text())
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}")

    name = values.get("env_name", "").strip()
    if not name:
        raise ConfigError(
            f"Could not extract env_name from {path.name}",
            hint="Ensure the file contains a line like: env_name = \"demo1\"",
        )
    if not _NAME_RE.match(name):
        raise ConfigError(f"Invalid env_name {name!r} in {path.name}")

    region = (values.get("region") or values.get("aws_region") or "").strip()
    if not region:
        raise ConfigError(
            f"Could not extract region from {path.name}",
            hint="Ensure the file contains a line like: region = \"us-east-1\"",
        )
    if not _NAME_RE.match(region):
        raise ConfigError(f"Invalid region {region!r} in {path.name}")

    cluster_id = values.get("cluster_name", "").strip()
    if not cluster_id:
        prefix = values.get("cluster_prefix") or cluster_prefix or DEFAULT_CLUSTER_PREFIX
        cluster_id = f"{prefix}-{name}-cluster"

    return Environment(
        name=name,
        region=region,
        cluster_id=cluster_id,
        var_file=path,
        tf_dir=tf_path.resolve(),
        karpenter=karpenter or values.get("enable_karpenter") == "true",
    )
