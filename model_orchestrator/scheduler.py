from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set

from .errors import CycleError
from .types import Task

logger = logging.getLogger(__name__)


def group_tasks_into_waves(tasks: Sequence[Task]) -> List[List[Task]]:
    """Split ``tasks`` into layers of mutually independent tasks.

    A task lands in the first wave after all of its dependencies; input order
    is kept inside each wave.
    """
    waves: List[List[Task]] = []
    remaining: List[Task] = list(tasks)
    placed: Set[str] = set()

    while remaining:
        wave = [task for task in remaining if all(dep in placed for dep in task.depends_on)]
        if not wave:
            stuck = ", ".join(task.id for task in remaining)
            raise CycleError(f"Cannot create waves - circular or missing dependencies: {stuck}")
        waves.append(wave)
        placed.update(task.id for task in wave)
        wave_ids = {task.id for task in wave}
        remaining = [task for task in remaining if task.id not in wave_ids]

    logger.debug("Grouped %d tasks into %d waves", len(tasks), len(waves))
    return waves


def wave_index(waves: Sequence[Sequence[Task]]) -> Dict[str, int]:
    return {task.id: i for i, wave in enumerate(waves) for task in wave}
