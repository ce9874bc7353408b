"""
Human and structured progress reporting.
"""

import logging
from typing import Any, Dict, List, Optional

import click

from .events import EventTypes, RunLog

logger = logging.getLogger(__name__)


class Reporter:
    """Prints numbered progress and mirrors every line into the run log."""

    def __init__(self, run_log: Optional[RunLog] = None, echo=click.echo):
        self.run_log = run_log
        self.echo = echo
        self.total = 0
        self.current = 0
        self.warnings = 0

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.run_log is None:
            return
        try:
            self.run_log.emit(event_type, data)
        except OSError as e:
            # run log is best-effort
            logger.warning(f"Could not write run log {self.run_log.path}: {e}")

    def start(self, env, total: int) -> None:
        self.total = total
        self.current = 0
        self.echo(f"✅ Selected environment: {env.name} (from {env.var_file.name})")
        self.echo(f"   region={env.region} cluster={env.cluster_id}"
                  f"{' variant=karpenter' if env.karpenter else ''}")
        self._emit(EventTypes.RUN_START, {
            "env_name": env.name,
            "region": env.region,
            "cluster_id": env.cluster_id,
            "karpenter": env.karpenter,
            "total_stages": total,
        })

    def identity(self, identity) -> None:
        self.echo(f"✅ Using AWS account {identity.account} ({identity.arn})")
        self._emit(EventTypes.IDENTITY, {"account": identity.account, "arn": identity.arn})

    def info(self, message: str) -> None:
        self.echo(f"🏃 {message}")

    def backend_ready(self, workspace: str, tolerated: bool) -> None:
        if tolerated:
            self.echo("👍 Ignoring known state data error and continuing...")
            self._emit(EventTypes.BACKEND_TOLERATED, {"workspace": workspace})
        self.echo(f"✅ Using Terraform workspace [{workspace}]")
        self._emit(EventTypes.BACKEND_READY, {"workspace": workspace})

    def stage_start(self, label: str) -> None:
        self.current += 1
        self.echo(f"🏃 {self.current} of {self.total} - {label}...")
        self._emit(EventTypes.STAGE_START, {
            "index": self.current, "total": self.total, "label": label,
        })

    def stage_ok(self, label: str, detail: str = "") -> None:
        self.echo(f"✅ {label} done{f' ({detail})' if detail else ''}")
        self._emit(EventTypes.STAGE_OK, {"label": label, "detail": detail})

    def stage_absent(self, label: str, detail: str = "") -> None:
        self.warnings += 1
        self.echo(click.style(f"⚠️  {label}: already removed{f' ({detail})' if detail else ''}",
                              fg="yellow"))
        self._emit(EventTypes.STAGE_ABSENT, {"label": label, "detail": detail})

    def stage_warn(self, label: str, detail: str) -> None:
        self.warnings += 1
        self.echo(click.style(f"⚠️  {label} failed, continuing: {detail}", fg="yellow"))
        self._emit(EventTypes.STAGE_WARN, {"label": label, "detail": detail})

    def stage_failed(self, label: str, detail: str) -> None:
        self.echo(click.style(f"❌ {label} failed: {detail}", fg="red"), err=True)
        self._emit(EventTypes.STAGE_FAILED, {"label": label, "detail": detail})

    def sweep_results(self, results: List[Any]) -> None:
        for r in results:
            line = f"   {r.kind}: found={r.found} deleted={r.deleted} failed={r.failed}"
            if r.error:
                line += f" (not listed: {r.error})"
            if r.failed or r.error:
                self.warnings += 1
                self.echo(click.style(f"⚠️ {line.strip()}", fg="yellow"))
            else:
                self.echo(line)
            self._emit(EventTypes.SWEEP_RESULT, {
                "kind": r.kind, "found": r.found, "deleted": r.deleted, "failed": r.failed,
                "error": r.error,
            })

    def done(self) -> None:
        suffix = f" ({self.warnings} warning(s))" if self.warnings else ""
        self.echo(click.style(f"✅✅✅ All resources deleted{suffix}", fg="green"))
        self._emit(EventTypes.RUN_DONE, {"warnings": self.warnings})

    def aborted(self, message: str, hint: Optional[str] = None) -> None:
        self.echo(click.style(f"❌ {message}", fg="red"), err=True)
        if hint:
            self.echo(f"   {hint}", err=True)
        self._emit(EventTypes.RUN_ABORTED, {"reason": message, "hint": hint})
