from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Emission progress display with tqdm (TTY only).

A single tqdm bar over the groups being issued. In non-TTY environments
(CI, bot workers writing to log files) the bar is disabled entirely so no ANSI
control sequences end up in the logs.
"""

__all__ = [
    "EmissionProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class EmissionProgress:
    """Progress over the documents of one confirmed batch."""

    def __init__(self, total_groups: int, *, description: str = "Issuing documents") -> None:
        self.total_groups = total_groups
        self.description = description
        self.current_group = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_groups,
                desc=description,
                unit="doc",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start_group(self, label: str) -> None:
        self.current_group += 1
        if self.enabled and self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({label})")

    def finish_group(self, success: bool = True) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_description(self.description)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> EmissionProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
