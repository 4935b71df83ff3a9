"""Small parsing and timing helpers."""

import time
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Union


def normalize_tags(tags: Optional[Union[str, Sequence[str]]]) -> List[str]:
    """
    Normalize tags: trim, lowercase, drop empties, dedupe.

    Args:
        tags: List of tags or a comma-separated string

    Returns:
        Tags in first-seen order
    """
    if not tags:
        return []

    raw = tags.split(",") if isinstance(tags, str) else list(tags)

    seen = set()
    normalized = []
    for tag in raw:
        value = str(tag).strip().lower()
        if value and value not in seen:
            seen.add(value)
            normalized.append(value)
    return normalized


def parse_boolean(value: Union[str, bool, None], default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return default
    return value.strip().lower() in ("true", "1", "yes")


class Stopwatch:
    """Elapsed wall time in whole milliseconds."""

    def __init__(self):
        self._start = time.perf_counter()
        self.elapsed_ms = 0

    def stop(self) -> int:
        self.elapsed_ms = int((time.perf_counter() - self._start) * 1000)
        return self.elapsed_ms


@contextmanager
def stopwatch() -> Iterator[Stopwatch]:
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.stop()
