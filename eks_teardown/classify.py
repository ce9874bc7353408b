"""
Classification of Terraform command output.

The exit status of a Terraform invocation decides success. When a command
fails, its output is matched against these rules to tell a benign failure
(resource already gone, the known S3 state checksum error) from a real one.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class Outcome(Enum):
    """Result class of a single Terraform invocation."""
    OK = "ok"
    NOT_FOUND = "not_found"
    BACKEND_TRANSIENT = "backend_transient"
    LOCKED = "locked"
    FAILED = "failed"


@dataclass
class OutputRule:
    """
    A rule mapping output patterns to an outcome.

    With every_error set, the rule only matches when each reported error
    matches one of its regexes; a single unrelated error makes it miss.
    """
    id: str
    outcome: Outcome
    regexes: List[str]
    message: str
    hint: Optional[str] = None
    flags: int = 0
    every_error: bool = False


@dataclass
class Classification:
    """Outcome of a command plus the rule that decided it and the error to show."""
    outcome: Outcome
    rule_id: Optional[str] = None
    message: str = ""
    hint: Optional[str] = None
    last_error: str = ""


class OutputClassifier:
    """Classifies Terraform output using ordered regex rules."""

    def __init__(self, rules: Optional[List[OutputRule]] = None):
        self.rules = rules if rules is not None else self._load_default_rules()

    def _load_default_rules(self) -> List[OutputRule]:
        """Load default output rules, most specific first."""
        return [
            OutputRule(
                id="s3_state_checksum",
                outcome=Outcome.BACKEND_TRANSIENT,
                regexes=[
                    r'Error refreshing state: state data in S3 does not have the expected content',
                ],
                message="State data in S3 does not have the expected content",
                hint="Known S3/DynamoDB checksum lag; init is retried implicitly by the next command"
            ),
            OutputRule(
                id="state_locked",
                outcome=Outcome.LOCKED,
                regexes=[
                    r'Error acquiring the state lock',
                    r'ConditionalCheckFailedException',
                ],
                message="Terraform state is locked by another process",
                hint="Wait for the other run to finish or `terraform force-unlock <id>`"
            ),
            OutputRule(
                id="resource_not_found",
                outcome=Outcome.NOT_FOUND,
                regexes=[
                    r'Error: .*\bnot found\b',
                    r'Error: .*\bNotFound\b',
                    r'Error: .*(does not exist|doesn\'t exist)',
                    r'Error: .*\(404\)',
                    r'NoSuchEntity',
                ],
                message="Resource already removed",
                flags=re.IGNORECASE,
                every_error=True,
            ),
        ]

    def _matches(self, rule: OutputRule, output: str) -> bool:
        def _search(text: str) -> bool:
            return any(re.search(regex, text, rule.flags) for regex in rule.regexes)

        if not rule.every_error:
            return _search(output)
        return all(_search(block) for block in _error_blocks(output) or [output])

    def classify(self, rc: int, output: str) -> Classification:
        """
        Classify a finished command.

        Args:
            rc: Process exit status
            output: Combined stdout/stderr

        Returns:
            Classification with the outcome and the matching rule, if any
        """
        if rc == 0:
            return Classification(outcome=Outcome.OK)

        last_error = _last_error_line(output)
        for rule in self.rules:
            if self._matches(rule, output):
                return Classification(
                    outcome=rule.outcome,
                    rule_id=rule.id,
                    message=rule.message,
                    hint=rule.hint,
                    last_error=last_error,
                )

        return Classification(
            outcome=Outcome.FAILED,
            message=last_error or f"exit status {rc}",
            last_error=last_error,
        )


def _clean_lines(output: str) -> List[str]:
    # terraform frames diagnostics with box-drawing characters, even with -no-color
    lines = (line.strip().lstrip("│╷╵").strip() for line in output.splitlines())
    return [line for line in lines if line]


def _error_blocks(output: str) -> List[str]:
    """Split output into one block per reported error (its Error line plus detail lines)."""
    blocks: List[List[str]] = []
    for line in _clean_lines(output):
        if line.startswith("Error"):
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
    return ["\n".join(block) for block in blocks]


def _last_error_line(output: str) -> str:
    lines = _clean_lines(output)
    for line in reversed(lines):
        if line.startswith("Error"):
            return line
    return lines[-1] if lines else ""
