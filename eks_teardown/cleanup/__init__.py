"""
Orphan sweep for load balancer resources left behind by the AWS Load
Balancer Controller.
"""

from .models import FoundResource, SweepResult
from .sweep import OrphanReclaimer, is_owned_by

__all__ = [
    "FoundResource",
    "SweepResult",
    "OrphanReclaimer",
    "is_owned_by",
]
