"""CLI entrypoint for eks-teardown."""

import logging
import sys

import click

from .config import DEFAULT_CLUSTER_PREFIX, TeardownSettings, load_environment
from .errors import TeardownError
from .events import RunLog
from .orchestrator import teardown
from .reporter import Reporter


def _confirmed(env) -> bool:
    """Ask before destroying anything; only y/yes (any case) proceeds."""
    click.echo(f"⚠️  This will destroy every resource in workspace '{env.name}' "
               f"(cluster {env.cluster_id}, region {env.region}).")
    try:
        answer = click.prompt("Are you sure? [y/N]", default="", show_default=False)
    except click.Abort:
        return False
    return answer.strip().lower() in ("y", "yes")


@click.command()
@click.option('-var-file', '--var-file', 'var_file', required=True,
              help='Terraform var-file of the environment (e.g. demo1.tfvars)')
@click.option('--karpenter', is_flag=True, help='Include the Karpenter teardown stages')
@click.option('--tf-dir', default='terraform', show_default=True, help='Terraform root module directory')
@click.option('--cluster-prefix', default=DEFAULT_CLUSTER_PREFIX, show_default=True,
              help='Prefix of the derived cluster name <prefix>-<env>-cluster')
@click.option('--account', 'expected_account', help='Abort unless credentials belong to this AWS account')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@click.option('--skip-sweep', is_flag=True, help='Do not sweep orphaned load balancer resources')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
def main(var_file, karpenter, tf_dir, cluster_prefix, expected_account, yes, skip_sweep, verbose):
    """Destroy an EKS demo environment in dependency order."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = TeardownSettings.from_env()
        env = load_environment(var_file, tf_dir=tf_dir, cluster_prefix=cluster_prefix,
                               karpenter=karpenter)
    except TeardownError as e:
        click.echo(click.style(f"❌ {e.message}", fg="red"), err=True)
        if e.hint:
            click.echo(f"   {e.hint}", err=True)
        sys.exit(e.exit_code)

    if not yes and not _confirmed(env):
        click.echo("❌ Teardown cancelled")
        sys.exit(1)

    reporter = Reporter(RunLog(settings.home, env.name))
    try:
        teardown(env, settings, reporter=reporter, expected_account=expected_account,
                 sweep=not skip_sweep)
    except TeardownError as e:
        reporter.aborted(e.message, e.hint)
        sys.exit(e.exit_code)

    sys.exit(0)


if __name__ == '__main__':
    main()
