"""
Data models for the orphan sweep.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class FoundResource:
    """An AWS resource that belongs to the cluster being torn down."""
    kind: str  # "load-balancer", "target-group", "security-group"
    resource_id: str  # ARN for ELBv2 resources, group id for security groups
    name: str
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class SweepResult:
    """Per-kind outcome of one sweep."""
    kind: str
    found: int = 0
    deleted: int = 0
    failed: int = 0
    error: Optional[str] = None  # set when the kind could not be listed at all
