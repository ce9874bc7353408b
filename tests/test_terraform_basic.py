"""
Basic tests for the Terraform adapter and output classification.
"""

import subprocess

import pytest
from unittest.mock import Mock

from eks_teardown.classify import Outcome, OutputClassifier
from eks_teardown.errors import BackendFatalError
from eks_teardown.terraform import TerraformRunner, prepare_backend

S3_CHECKSUM = (
    "Error refreshing state: state data in S3 does not have the expected content.\n"
    "The checksum calculated for the state stored in S3 does not match"
)


def _proc(rc=0, out=""):
    return Mock(returncode=rc, stdout=out)


class ScriptedRunner:
    """Stands in for subprocess.run; answers by terraform subcommand."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append(command)
        key = " ".join(command[1:3]) if command[1] == "workspace" else command[1]
        return self.answers.get(key, _proc())


class TestOutputClassifier:
    """Test failure classification."""

    def test_success_is_ok_regardless_of_text(self):
        """Test exit status 0 is always OK."""
        result = OutputClassifier().classify(0, "Error: something not found")
        assert result.outcome == Outcome.OK

    def test_s3_checksum_is_transient(self):
        """Test the known S3 state error is recognised."""
        result = OutputClassifier().classify(1, S3_CHECKSUM)
        assert result.outcome == Outcome.BACKEND_TRANSIENT
        assert result.rule_id == "s3_state_checksum"

    def test_state_lock(self):
        """Test lock errors are their own class."""
        result = OutputClassifier().classify(1, "Error: Error acquiring the state lock\nLock Info: ...")
        assert result.outcome == Outcome.LOCKED
        assert "force-unlock" in result.hint

    def test_not_found(self):
        """Test not-found errors are recognised."""
        output = 'Error: persistentvolumeclaims "ebs-pvc" not found'
        result = OutputClassifier().classify(1, output)
        assert result.outcome == Outcome.NOT_FOUND
        assert result.last_error == output

    def test_other_errors_fail(self):
        """Test unknown errors keep the last error line as message."""
        output = "Planning...\nError: Unauthorized\n  with provider[\"kubernetes\"]"
        result = OutputClassifier().classify(1, output)
        assert result.outcome == Outcome.FAILED
        assert result.message == "Error: Unauthorized"


class TestTerraformRunner:
    """Test command construction."""

    def test_destroy_with_targets(self, tmp_path):
        """Test targets and var-file flags."""
        runner = ScriptedRunner({})
        tf = TerraformRunner(tmp_path, runner=runner)

        result = tf.destroy(tmp_path / "demo1.tfvars", ["kubernetes_deployment_v1.app"])

        assert result.ok
        command = runner.calls[0]
        assert command[:3] == ["terraform", "destroy", "-auto-approve"]
        assert "-target=kubernetes_deployment_v1.app" in command
        assert command[-1] == f"-var-file={tmp_path / 'demo1.tfvars'}"

    def test_destroy_all_has_no_target(self, tmp_path):
        """Test destroying everything passes no -target."""
        runner = ScriptedRunner({})
        TerraformRunner(tmp_path, runner=runner).destroy(tmp_path / "x.tfvars")

        assert not any(arg.startswith("-target=") for arg in runner.calls[0])

    def test_missing_binary(self, tmp_path):
        """Test a missing terraform binary is a failure, not an exception."""
        runner = Mock(side_effect=FileNotFoundError("terraform"))
        result = TerraformRunner(tmp_path, runner=runner).init()

        assert result.rc == 127
        assert result.outcome == Outcome.FAILED

    def test_output_logged(self, tmp_path):
        """Test command output is appended to the log file."""
        log_path = tmp_path / "run" / "terraform.log"
        runner = ScriptedRunner({"init": _proc(0, "Terraform has been successfully initialized!")})

        TerraformRunner(tmp_path, runner=runner, log_path=log_path).init()

        text = log_path.read_text()
        assert "=== terraform init" in text
        assert "successfully initialized" in text

    def test_runs_in_tf_dir(self, tmp_path):
        """Test the working directory and combined output streams."""
        runner = Mock(return_value=_proc())
        TerraformRunner(tmp_path, runner=runner).init()

        kwargs = runner.call_args.kwargs
        assert kwargs["cwd"] == tmp_path
        assert kwargs["stderr"] == subprocess.STDOUT


class TestPrepareBackend:
    """Test backend init and workspace selection."""

    def test_clean_init_current_workspace(self, tmp_path):
        """Test nothing is selected when already on the workspace."""
        runner = ScriptedRunner({"workspace show": _proc(0, "demo1\n")})

        tolerated = prepare_backend(TerraformRunner(tmp_path, runner=runner), "demo1")

        assert tolerated is False
        assert not any(c[1:3] == ["workspace", "select"] for c in runner.calls)

    def test_known_checksum_error_tolerated(self, tmp_path):
        """Test the S3 checksum error lets the run continue."""
        runner = ScriptedRunner({
            "init": _proc(1, S3_CHECKSUM),
            "workspace show": _proc(0, "default\n"),
        })

        tolerated = prepare_backend(TerraformRunner(tmp_path, runner=runner), "demo1")

        assert tolerated is True
        assert runner.calls[-1][-1] == "demo1"

    def test_other_init_error_is_fatal(self, tmp_path):
        """Test any other init error aborts before workspace selection."""
        runner = ScriptedRunner({"init": _proc(1, "Error: Failed to get existing workspaces: AccessDenied")})

        with pytest.raises(BackendFatalError, match="terraform init failed"):
            prepare_backend(TerraformRunner(tmp_path, runner=runner), "demo1")

        assert len(runner.calls) == 1

    def test_missing_workspace_is_fatal(self, tmp_path):
        """Test a workspace that cannot be selected aborts."""
        runner = ScriptedRunner({
            "workspace show": _proc(0, "default\n"),
            "workspace select": _proc(1, 'Workspace "demo9" doesn\'t exist.'),
        })

        with pytest.raises(BackendFatalError, match="Workspace 'demo9' does not exist"):
            prepare_backend(TerraformRunner(tmp_path, runner=runner), "demo9")


class TestMixedErrors:
    """Test outputs that report more than one error."""

    def test_not_found_alongside_real_error_fails(self):
        """Test one unrelated error keeps the whole run a failure."""
        output = (
            "Error: deleting IAM Role (node-role): NoSuchEntity: role not found\n"
            "Error: deleting EC2 VPC (vpc-1): DependencyViolation: has dependencies and cannot be deleted"
        )
        result = OutputClassifier().classify(1, output)

        assert result.outcome == Outcome.FAILED
        assert "DependencyViolation" in result.message

    def test_every_error_not_found(self):
        """Test several errors that all report a missing resource."""
        output = (
            "Error: deleting IAM Role (node-role): NoSuchEntity: role not found\n"
            'Error: ingresses.networking.k8s.io "guestbook" not found'
        )
        assert OutputClassifier().classify(1, output).outcome == Outcome.NOT_FOUND

    def test_framed_diagnostics(self):
        """Test box-drawn error blocks with detail lines."""
        output = (
            "╷\n"
            "│ Error: deleting IAM Role (node-role)\n"
            "│ \n"
            "│ NoSuchEntity: The role with name node-role cannot be found.\n"
            "╵\n"
            "╷\n"
            "│ Error: deleting Security Group (sg-1): DependencyViolation\n"
            "│   with aws_security_group.node,\n"
            "╵\n"
        )
        result = OutputClassifier().classify(1, output)

        assert result.outcome == Outcome.FAILED
        assert result.last_error == "Error: deleting Security Group (sg-1): DependencyViolation"
