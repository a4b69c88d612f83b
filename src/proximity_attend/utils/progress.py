"""
src/proximity_attend/utils/progress.py
Terminal progress bar for the location search.
"""

import os
import sys
from typing import Dict, Optional, Tuple

from rich.console import Console
from rich.progress import Progress, ProgressColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Column
from rich.text import Text

from ..models import AcquisitionProgress
from .logger import progress as log_progress


class BlockBarColumn(ProgressColumn):
    """Square-filled bar column compatible with Rich caching."""

    def __init__(
        self,
        width: int = 26,
        *,
        border_style: str = "blue",
        fill_style: str = "bright_blue",
        finished_style: str = "green",
        empty_style: str = "grey23",
    ) -> None:
        self.width = max(width, 1)
        self.border_style = border_style
        self.fill_style = fill_style
        self.finished_style = finished_style
        self.empty_style = empty_style
        self._table_column = Column(no_wrap=True, justify="left")
        self._renderable_cache: Dict[int, Tuple[float, Text]] = {}

    def get_table_column(self) -> Column:  # type: ignore[override]
        return self._table_column

    def render(self, task) -> Text:  # type: ignore[override]
        if not task.total:
            ratio = 0.0
        else:
            ratio = min(max(task.completed / task.total, 0.0), 1.0)

        filled = int(self.width * ratio)
        empty = self.width - filled

        text = Text("╭", style=self.border_style)
        if filled:
            style = self.finished_style if task.finished else self.fill_style
            text.append("█" * filled, style=style)
        if empty:
            text.append("░" * empty, style=self.empty_style)
        text.append("╮", style=self.border_style)
        return text


class LocationProgressDisplay:
    """Render :class:`AcquisitionProgress` updates.

    Uses a live Rich bar on a TTY (disable with ``CLI_PROGRESS_RICH=0``);
    otherwise each new message is logged once.
    """

    def __init__(self, console: Optional[Console] = None, bar_width: int = 28) -> None:
        self.console = console or Console()
        rich_flag = os.getenv("CLI_PROGRESS_RICH")
        self.use_rich = sys.stdout.isatty() and (rich_flag is None or rich_flag.lower() not in {"0", "false"})
        self.bar_width = bar_width
        self._progress: Optional[Progress] = None
        self._task_id: Optional[TaskID] = None
        self._last_message: Optional[str] = None

    def __enter__(self) -> "LocationProgressDisplay":
        if self.use_rich:
            self._progress = Progress(
                BlockBarColumn(width=self.bar_width, finished_style="bright_green"),
                TextColumn("{task.percentage:>3.0f}%", style="bright_blue"),
                TextColumn("{task.description}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            )
            self._progress.start()
            self._task_id = self._progress.add_task("Getting location...", total=100)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task_id = None
        return False

    def update(self, update: AcquisitionProgress) -> None:
        description = update.message
        if update.best_sample is not None:
            description = f"{description}  best {round(update.best_sample.accuracy_meters)}m"
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, completed=update.fraction * 100, description=description)
            return
        if update.message != self._last_message:
            self._last_message = update.message
            log_progress(update.message)
