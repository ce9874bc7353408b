"""
Driver loop for ordered teardown stages.
"""

import logging
from typing import List, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .errors import StageFailure, TeardownError
from .reporter import Reporter
from .stages import Stage, StageOutcome, StageResult

logger = logging.getLogger(__name__)


class StagedDestroyer:
    """Runs stages strictly in order; a failed critical stage stops the run."""

    def __init__(self, stages: Sequence[Stage], reporter: Reporter):
        self.stages = list(stages)
        self.reporter = reporter

    def _execute(self, stage: Stage) -> StageResult:
        try:
            return stage.action()
        except (TeardownError, ClientError, BotoCoreError) as e:
            logger.debug(f"Stage '{stage.label}' raised", exc_info=True)
            return StageResult(StageOutcome.FAILED, getattr(e, "message", None) or str(e))
        except Exception as e:
            logger.warning(f"Stage '{stage.label}' raised unexpectedly", exc_info=True)
            return StageResult(StageOutcome.FAILED, f"{type(e).__name__}: {e}")

    def run(self) -> List[Tuple[Stage, StageResult]]:
        """
        Execute every stage.

        Returns:
            (stage, result) pairs in execution order

        Raises:
            StageFailure: When a critical stage fails; later stages are not run
        """
        results = []

        for stage in self.stages:
            self.reporter.stage_start(stage.label)
            result = self._execute(stage)
            results.append((stage, result))

            if result.outcome == StageOutcome.SUCCEEDED:
                self.reporter.stage_ok(stage.label, result.detail)
            elif result.outcome == StageOutcome.ALREADY_ABSENT:
                self.reporter.stage_absent(stage.label, result.detail)
            elif stage.critical:
                self.reporter.stage_failed(stage.label, result.detail)
                raise StageFailure(
                    stage.label, True, f"{stage.label} failed: {result.detail}",
                    hint="Partial teardown left as-is; fix the cause and re-run",
                )
            else:
                self.reporter.stage_warn(stage.label, result.detail)

        return results
