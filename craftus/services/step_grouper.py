"""
StepGrouper - collapse an ordered list of build steps into at most N image calls.

The image service has a practical ceiling on distinct calls per master image,
so long step lists are chunked positionally and each chunk is illustrated by
a single generated image.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .models import AnalysisStep

logger = logging.getLogger(__name__)

TITLE_SEPARATOR = " + "
TEXT_SEPARATOR = " | "


@dataclass(frozen=True)
class StepGroup:
    """One or more consecutive steps illustrated by a single image."""
    member_step_numbers: Tuple[int, ...]
    combined_title: str
    combined_text: str
    warnings: Tuple[str, ...] = ()

    @property
    def is_singleton(self) -> bool:
        return len(self.member_step_numbers) == 1

    def contains(self, step_number: int) -> bool:
        return step_number in self.member_step_numbers


def _singleton(step: AnalysisStep) -> StepGroup:
    warnings = (step.safety_warning,) if step.safety_warning else ()
    return StepGroup(
        member_step_numbers=(step.step_number,),
        combined_title=step.title,
        combined_text=step.description,
        warnings=warnings,
    )


def _combine(chunk: Sequence[AnalysisStep]) -> StepGroup:
    warnings: List[str] = []
    for step in chunk:
        if step.safety_warning and step.safety_warning not in warnings:
            warnings.append(step.safety_warning)

    return StepGroup(
        member_step_numbers=tuple(step.step_number for step in chunk),
        combined_title=TITLE_SEPARATOR.join(step.title for step in chunk),
        combined_text=TEXT_SEPARATOR.join(
            f"Step {step.step_number}: {step.description}" for step in chunk
        ),
        warnings=tuple(warnings),
    )


def group_steps(steps: Sequence[AnalysisStep], max_groups: int) -> List[StepGroup]:
    """
    Group steps into at most max_groups contiguous chunks.

    When the steps already fit, every step is its own group with its title and
    text untouched. Otherwise chunks of ceil(n / max_groups) steps are formed
    in order; the last chunk may be shorter.

    Args:
        steps: Ordered steps from the dissection call
        max_groups: Ceiling on the number of image calls (>= 1)

    Returns:
        Ordered list of StepGroup
    """
    if max_groups < 1:
        raise ValueError(f"max_groups must be >= 1, got {max_groups}")

    if len(steps) <= max_groups:
        return [_singleton(step) for step in steps]

    steps_per_group = math.ceil(len(steps) / max_groups)
    groups = [
        _combine(steps[start:start + steps_per_group])
        for start in range(0, len(steps), steps_per_group)
    ]

    logger.info(
        f"Grouped {len(steps)} steps into {len(groups)} image calls "
        f"({steps_per_group} steps per group)"
    )
    return groups
