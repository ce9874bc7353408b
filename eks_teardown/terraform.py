"""
Terraform wrapper functions for teardown orchestration.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .classify import Classification, Outcome, OutputClassifier
from .errors import BackendFatalError, BackendTransientError

logger = logging.getLogger(__name__)


@dataclass
class TerraformResult:
    command: List[str]
    rc: int
    output: str
    classification: Classification

    @property
    def ok(self) -> bool:
        return self.rc == 0

    @property
    def outcome(self) -> Outcome:
        return self.classification.outcome


class TerraformRunner:
    """Runs Terraform in a root module directory and classifies the result."""

    def __init__(
        self,
        tf_dir: Path,
        binary: str = "terraform",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        classifier: Optional[OutputClassifier] = None,
        log_path: Optional[Path] = None,
    ):
        self.tf_dir = Path(tf_dir)
        self.binary = binary
        self.runner = runner
        self.classifier = classifier or OutputClassifier()
        self.log_path = log_path

    def _run(self, args: Sequence[str]) -> TerraformResult:
        """
        Run a terraform command with stdout and stderr combined.

        Args:
            args: Arguments after the terraform binary

        Returns:
            TerraformResult; a missing binary is reported as rc 127
        """
        command = [self.binary, *args]
        logger.debug(f"Running {' '.join(command)} in {self.tf_dir}")

        try:
            process = self.runner(
                command,
                cwd=self.tf_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
            rc, output = process.returncode, process.stdout or ""
        except OSError as e:
            rc, output = 127, f"Error: failed to run {self.binary}: {e}"

        self._append_log(command, output)
        classification = self.classifier.classify(rc, output)
        if rc != 0:
            logger.info(f"{' '.join(command)} exited {rc} ({classification.outcome.value})")
        return TerraformResult(command=command, rc=rc, output=output, classification=classification)

    def _append_log(self, command: List[str], output: str) -> None:
        if self.log_path is None:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as log_file:
                log_file.write(f"=== {' '.join(command)} ===\n")
                log_file.write(output.rstrip() + "\n")
        except OSError as e:
            logger.warning(f"Could not write terraform log {self.log_path}: {e}")

    def init(self) -> TerraformResult:
        return self._run(["init", "-no-color", "-input=false"])

    def current_workspace(self) -> str:
        result = self._run(["workspace", "show", "-no-color"])
        return result.output.strip() if result.ok else ""

    def select_workspace(self, name: str) -> TerraformResult:
        return self._run(["workspace", "select", "-no-color", name])

    def destroy(self, var_file: Path, targets: Sequence[str] = ()) -> TerraformResult:
        """
        Run terraform destroy, optionally limited to targets.

        Args:
            var_file: Var-file passed with -var-file
            targets: Resource addresses; empty means everything in state

        Returns:
            TerraformResult
        """
        args = ["destroy", "-auto-approve", "-no-color", "-input=false"]
        args.extend(f"-target={target}" for target in targets)
        args.append(f"-var-file={var_file}")
        return self._run(args)


def prepare_backend(terraform: TerraformRunner, workspace: str) -> bool:
    """
    Initialize the state backend and select the environment's workspace.

    Args:
        terraform: Runner for the root module
        workspace: Workspace name (the environment name)

    Returns:
        True if the known S3 state checksum error was tolerated during init

    Raises:
        BackendFatalError: On any other init failure or a missing workspace
    """
    tolerated = False
    result = terraform.init()

    if not result.ok:
        try:
            _raise_for_init(result)
        except BackendTransientError as e:
            logger.info(f"Tolerating backend error during init: {e.message}")
            tolerated = True

    current = terraform.current_workspace()
    if current != workspace:
        logger.info(f"Switching Terraform workspace from {current or '?'} to {workspace}")
        selected = terraform.select_workspace(workspace)
        if not selected.ok:
            raise BackendFatalError(
                f"Workspace '{workspace}' does not exist",
                hint=selected.classification.last_error or None,
            )

    return tolerated


def _raise_for_init(result: TerraformResult) -> None:
    classification = result.classification
    if classification.outcome == Outcome.BACKEND_TRANSIENT:
        raise BackendTransientError(classification.message, hint=classification.hint)
    raise BackendFatalError(
        f"terraform init failed: {classification.message}",
        hint=classification.hint,
    )
