# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Callable, Sequence, Tuple

# Third-Party Imports
from rich.progress import (
    BarColumn, Progress, ProgressColumn, SpinnerColumn, Task, TextColumn,
    TimeElapsedColumn
)
from rich.text import Text

# Local Imports
from diversity_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

Stage = Tuple[str, Callable[[], None]]

# ============================== CUSTOM PROGRESS COLUMNS ============================= #

class StageCountColumn(ProgressColumn):
    """Renders finished stages over total stages (e.g. 'stage 3/6')."""

    def render(self, task: Task) -> Text:
        total = "?" if task.total is None else int(task.total)
        return Text(
            f"stage {int(task.completed)}/{total}".rjust(12),
            style=constants.DEFAULT_M_OF_N_COMPLETE_STYLE,
            justify="right"
        )

# =================================== PROGRESS BAR =================================== #

def get_progress_bar(transient: bool = False) -> Progress:
    return Progress(
        SpinnerColumn(
            "dots",
            style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            speed=0.75
        ),
        TextColumn(
            "{task.description}",
            style=constants.DEFAULT_DESCRIPTION_STYLE,
            justify="left"
        ),
        StageCountColumn(),
        BarColumn(
            bar_width=constants.DEFAULT_BAR_WIDTH,
            style="black",
            complete_style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            finished_style=constants.DEFAULT_FINISHED_STYLE
        ),
        TextColumn(
            "{task.percentage:>3.0f}%".rjust(5),
            style=constants.DEFAULT_PROGRESS_PERCENTAGE_STYLE,
            justify="right"
        ),
        TimeElapsedColumn(),
        transient=transient,
        expand=False
    )


def format_stage(desc: str) -> str:
    return f"[white]{str(desc):<{constants.DEFAULT_PROGRESS_TEXT_N}}"


def run_stages(
    stages: Sequence[Stage],
    title: str,
    transient: bool = False
) -> None:
    """Run ``(description, callable)`` stages in order under one progress bar.

    The bar shows the running stage and is reset to ``title`` when all
    stages have finished. An exception raised by a stage stops the run.
    """
    with get_progress_bar(transient) as progress:
        task = progress.add_task(format_stage(title), total=len(stages))
        for desc, stage in stages:
            progress.update(task, description=format_stage(desc))
            logger.debug(f"Stage started: {desc}")
            stage()
            progress.advance(task)
        progress.update(task, description=format_stage(title))
