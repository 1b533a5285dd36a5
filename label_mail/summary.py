from __future__ import annotations

from collections import Counter
from typing import Iterable


class ActionsSummary(Counter):
    """Count of actions taken during a pass, keyed by a readable description."""

    def record(self, actions: Iterable[str]) -> None:
        for action in actions:
            self[action] += 1

    def total_actions(self) -> int:
        return sum(self.values())

    def __str__(self) -> str:
        return format_summary(self)


def format_summary(actions: dict[str, int]) -> str:
    counted = {key: count for key, count in actions.items() if count}
    total = sum(counted.values())
    if total <= 0:
        return "Nothing to do.\n"

    key_width = max([5, *(len(key) for key in counted)])
    count_width = max([1, len(str(total)), *(len(str(count)) for count in counted.values())])

    lines = [f" {key:<{key_width}} : {counted[key]:>{count_width}}" for key in sorted(counted)]
    lines.append(f"{'-' * (key_width + 2)} {'-' * (count_width + 2)}")
    lines.append(f" {'Total':<{key_width}} : {total:>{count_width}}")
    return "\n".join(lines) + "\n"
