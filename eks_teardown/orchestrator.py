"""
Main orchestrator for the teardown lifecycle.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import boto3

from .cleanup import OrphanReclaimer, SweepResult
from .config import Environment, TeardownSettings
from .destroyer import StagedDestroyer
from .events import RunLog
from .identity import CallerIdentity, resolve_identity
from .kube import KubeClient
from .reporter import Reporter
from .stages import Stage, StageResult, build_stages
from .terraform import TerraformRunner, prepare_backend

logger = logging.getLogger(__name__)


@dataclass
class TeardownReport:
    identity: CallerIdentity
    backend_error_tolerated: bool
    stages: List[Tuple[Stage, StageResult]] = field(default_factory=list)
    sweep: List[SweepResult] = field(default_factory=list)


def teardown(
    env: Environment,
    settings: TeardownSettings,
    session: Optional[boto3.session.Session] = None,
    reporter: Optional[Reporter] = None,
    terraform: Optional[TerraformRunner] = None,
    kube_factory: Optional[Callable[[], Any]] = None,
    expected_account: Optional[str] = None,
    sweep: bool = True,
) -> TeardownReport:
    """
    Tear down an environment.

    Order: identity check, state backend, ordered stages, orphan sweep.
    Nothing destructive runs before the identity and backend checks pass.

    Args:
        env: Environment to destroy
        settings: Targets, poll settings and run-log home
        session: boto3 session (created for env.region if omitted)
        reporter: Progress reporter (writes the run log by default)
        terraform: Terraform runner (bound to env.tf_dir by default)
        kube_factory: Returns a KubeClient for the cluster
        expected_account: Abort unless the credentials belong to this account
        sweep: Run the orphan sweep after the final destroy

    Returns:
        TeardownReport

    Raises:
        AuthError, BackendFatalError, StageFailure: On fatal errors
    """
    run_dir = settings.home / env.name
    reporter = reporter or Reporter(RunLog(settings.home, env.name))
    session = session or boto3.session.Session(region_name=env.region)
    terraform = terraform or TerraformRunner(
        env.tf_dir, binary=settings.terraform_bin, log_path=run_dir / "terraform.log")
    kube_factory = kube_factory or (
        lambda: KubeClient.for_cluster(env.cluster_id, env.region, run_dir / "kubeconfig"))

    ec2 = session.client("ec2", region_name=env.region)
    stages = build_stages(env, settings, terraform, kube_factory, ec2)
    reporter.start(env, len(stages))

    identity = resolve_identity(env.region, session=session, expected_account=expected_account)
    reporter.identity(identity)

    reporter.info("Running terraform init...")
    tolerated = prepare_backend(terraform, env.name)
    reporter.backend_ready(env.name, tolerated)

    report = TeardownReport(identity=identity, backend_error_tolerated=tolerated)
    report.stages = StagedDestroyer(stages, reporter).run()

    if sweep:
        reporter.info(f"Sweeping orphaned load balancer resources for {env.cluster_id}...")
        reclaimer = OrphanReclaimer(
            env.cluster_id,
            elbv2=session.client("elbv2", region_name=env.region),
            ec2=ec2,
            timeout_s=settings.poll_timeout_s,
            interval_s=settings.poll_interval_s,
        )
        report.sweep = reclaimer.sweep()
        reporter.sweep_results(report.sweep)

    reporter.done()
    return report
