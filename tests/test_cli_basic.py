"""
Basic tests for the CLI and the end-to-end orchestration.
"""

import pytest
from unittest.mock import Mock, patch
from click.testing import CliRunner

from eks_teardown.cleanup import SweepResult
from eks_teardown.cli import main
from eks_teardown.config import TeardownSettings, load_environment
from eks_teardown.errors import AuthError, BackendFatalError, StageFailure
from eks_teardown.events import RunLog
from eks_teardown.orchestrator import teardown
from eks_teardown.reporter import Reporter
from eks_teardown.terraform import TerraformRunner


@pytest.fixture
def var_file(tmp_path, monkeypatch):
    monkeypatch.setenv("EKS_TEARDOWN_HOME", str(tmp_path / "home"))
    path = tmp_path / "terraform" / "environment" / "demo1.tfvars"
    path.parent.mkdir(parents=True)
    path.write_text('env_name = "demo1"\nregion = "us-east-1"\n')
    return path


def _aws_session(account="111122223333"):
    session = Mock()
    session.client.return_value.get_caller_identity.return_value = {
        "Account": account, "Arn": f"arn:aws:iam::{account}:user/dev",
    }
    return session


class RecordingRunner:
    """subprocess.run stand-in that succeeds and remembers commands."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __call__(self, command, **kwargs):
        self.calls.append(command)
        if self.fail_on and any(self.fail_on in arg for arg in command):
            return Mock(returncode=1, stdout="Error: context deadline exceeded")
        if command[1:3] == ["workspace", "show"]:
            return Mock(returncode=0, stdout="demo1\n")
        return Mock(returncode=0, stdout="Destroy complete! Resources: 1 destroyed.")


class Collector:
    def __init__(self):
        self.lines = []

    def __call__(self, message="", **kwargs):
        self.lines.append(message)


class TestTeardown:
    """Test the orchestrator end to end with fake collaborators."""

    def _run(self, var_file, tmp_path, runner, **kwargs):
        env = load_environment(str(var_file), tf_dir=str(var_file.parent.parent))
        settings = TeardownSettings(home=tmp_path / "home")
        echo = Collector()
        reporter = Reporter(RunLog(settings.home, env.name), echo=echo)
        kube = Mock()
        kube.delete_admission_webhooks.return_value = []
        kube.strip_finalizers.return_value = 0
        with patch("eks_teardown.orchestrator.OrphanReclaimer") as reclaimer:
            reclaimer.return_value.sweep.return_value = [SweepResult(kind="load-balancer", found=1, deleted=1)]
            report = teardown(
                env, settings,
                session=_aws_session(),
                reporter=reporter,
                terraform=TerraformRunner(env.tf_dir, runner=runner),
                kube_factory=lambda: kube,
                **kwargs,
            )
        return report, echo, reporter, reclaimer

    def test_demo1_scenario(self, var_file, tmp_path):
        """Test counter from 1 of 4 to the aggregate success marker."""
        runner = RecordingRunner()

        report, echo, reporter, reclaimer = self._run(var_file, tmp_path, runner)

        stage_lines = [line for line in echo.lines if line.startswith("🏃 ") and " of " in line]
        assert stage_lines[0].startswith("🏃 1 of 4")
        assert stage_lines[-1].startswith("🏃 4 of 4")
        assert "✅✅✅ All resources deleted" in echo.lines[-1]
        assert report.identity.account == "111122223333"
        assert reclaimer.call_args.args[0] == "guestbook-demo1-cluster"

        commands = [c[1] for c in runner.calls]
        assert commands[0] == "init"
        assert commands.count("destroy") == 4

        events = [e["type"] for e in reporter.run_log.read_events()]
        assert events[0] == "RUN_START"
        assert events[-1] == "RUN_DONE"

    def test_wrong_account_stops_before_terraform(self, var_file, tmp_path):
        """Test the identity guard runs before any terraform command."""
        runner = RecordingRunner()

        with pytest.raises(AuthError):
            self._run(var_file, tmp_path, runner, expected_account="999999999999")

        assert runner.calls == []

    def test_critical_failure_skips_sweep(self, var_file, tmp_path):
        """Test a failed workload destroy aborts before the sweep."""
        runner = RecordingRunner(fail_on="kubernetes_deployment_v1")

        with pytest.raises(StageFailure):
            self._run(var_file, tmp_path, runner)

        assert [c[1] for c in runner.calls].count("destroy") == 1

    def test_sweep_can_be_skipped(self, var_file, tmp_path):
        """Test --skip-sweep leaves the reclaimer alone."""
        report, _, _, reclaimer = self._run(var_file, tmp_path, RecordingRunner(), sweep=False)

        reclaimer.assert_not_called()
        assert report.sweep == []


class TestCli:
    """Test the command-line surface."""

    @pytest.mark.parametrize("answer", ["n", "no", "", "yep", "sure"])
    def test_decline_makes_no_calls(self, var_file, answer):
        """Test anything but y/yes cancels before any cloud call."""
        with patch("eks_teardown.cli.teardown") as run:
            result = CliRunner().invoke(main, [f"-var-file={var_file}"], input=f"{answer}\n")

        assert result.exit_code == 1
        assert "Teardown cancelled" in result.output
        run.assert_not_called()

    @pytest.mark.parametrize("answer", ["y", "Y", "yes", "YES", "Yes"])
    def test_confirm_runs_teardown(self, var_file, answer):
        """Test y/yes in any case proceeds."""
        with patch("eks_teardown.cli.teardown") as run:
            result = CliRunner().invoke(main, ["-var-file", str(var_file)], input=f"{answer}\n")

        assert result.exit_code == 0
        env = run.call_args.args[0]
        assert env.name == "demo1"
        assert env.karpenter is False

    def test_yes_flag_and_karpenter(self, var_file):
        """Test --yes skips the prompt and --karpenter selects the variant."""
        with patch("eks_teardown.cli.teardown") as run:
            result = CliRunner().invoke(main, ["--var-file", str(var_file), "--yes", "--karpenter"])

        assert result.exit_code == 0
        assert run.call_args.args[0].karpenter is True

    def test_bare_name_resolves_under_tf_dir(self, var_file):
        """Test a bare var-file name is looked up under the environment directory."""
        with patch("eks_teardown.cli.teardown") as run:
            result = CliRunner().invoke(main, [
                "-var-file=demo1.tfvars", "--tf-dir", str(var_file.parent.parent), "--yes"])

        assert result.exit_code == 0
        assert run.call_args.args[0].var_file == var_file.resolve()

    def test_missing_var_file(self, tmp_path):
        """Test a config error exits 2 without prompting."""
        with patch("eks_teardown.cli.teardown") as run:
            result = CliRunner().invoke(main, [f"-var-file={tmp_path / 'nope.tfvars'}"])

        assert result.exit_code == 2
        assert "does not exist" in result.output
        run.assert_not_called()

    @pytest.mark.parametrize("error, code", [
        (AuthError("No AWS credentials found"), 3),
        (BackendFatalError("Workspace 'demo1' does not exist"), 4),
        (StageFailure("workload", True, "workload failed"), 1),
    ])
    def test_fatal_errors_exit_nonzero(self, var_file, error, code):
        """Test fatal errors print an error marker and exit nonzero."""
        with patch("eks_teardown.cli.teardown", side_effect=error):
            result = CliRunner().invoke(main, [f"-var-file={var_file}", "--yes"])

        assert result.exit_code == code
        assert "❌" in result.output
        assert error.message in result.output
