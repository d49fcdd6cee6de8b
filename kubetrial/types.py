"""Core value types shared by test environments: features, steps, labels, config and testers."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

StepFunc = Callable[[Any, "Tester", "Config"], Any]
RegexLike = Union[str, "re.Pattern[str]", None]


class Level(Enum):
    """The phase of a feature in which a step runs."""

    SETUP = "setup"
    ASSESS = "assess"
    TEARDOWN = "teardown"


class Labels(dict):
    """Mapping of label keys to the list of values carried under each key."""

    def contains(self, key: str, value: str) -> bool:
        """Return True if ``value`` is among the values stored under ``key``."""
        return value in self.get(key, ())

    def copy(self) -> Labels:
        return Labels({key: list(values) for key, values in self.items()})


def _as_labels(value: Any) -> Labels:
    if isinstance(value, Labels):
        return value
    return Labels({key: list(values) for key, values in dict(value or {}).items()})


@dataclass
class Step:
    """A named function run at one level of a feature."""

    name: str
    level: Level
    func: StepFunc | None = None


@dataclass
class Feature:
    """A named, labelled group of setup, assessment and teardown steps."""

    name: str = ""
    labels: Labels = field(default_factory=Labels)
    steps: list[Step] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.labels = _as_labels(self.labels)
        self.steps = list(self.steps)

    def steps_by_level(self, level: Level) -> list[Step]:
        """Return the steps at ``level`` in the order they were added."""
        return [step for step in self.steps if step is not None and step.level == level]

    def info_copy(self) -> Feature:
        """Return an independent copy holding names, levels and labels but no step functions."""
        return Feature(
            name=self.name,
            labels=self.labels.copy(),
            steps=[Step(step.name, step.level, None) for step in self.steps if step is not None],
        )


def _compile(pattern: RegexLike) -> re.Pattern[str] | None:
    if pattern is None or pattern == "":
        return None
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


@dataclass
class Config:
    """Settings that control how an environment runs its features."""

    namespace: str = ""
    kubeconfig: str = ""
    dry_run: bool = False
    fail_fast: bool = False
    parallel_tests: bool = False
    disable_graceful_teardown: bool = False
    feature_regex: Any = None
    skip_feature_regex: Any = None
    assessment_regex: Any = None
    skip_assessment_regex: Any = None
    labels: Labels = field(default_factory=Labels)
    skip_labels: Labels = field(default_factory=Labels)

    def __post_init__(self) -> None:
        self.feature_regex = _compile(self.feature_regex)
        self.skip_feature_regex = _compile(self.skip_feature_regex)
        self.assessment_regex = _compile(self.assessment_regex)
        self.skip_assessment_regex = _compile(self.skip_assessment_regex)
        self.labels = _as_labels(self.labels)
        self.skip_labels = _as_labels(self.skip_labels)


class _FailNow(Exception):
    """Stops the running test body after it has been marked failed."""


class _SkipNow(Exception):
    """Stops the running test body and marks it skipped."""


class Tester:
    """Records the outcome of a test and of the subtests it runs."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.logs: list[str] = []
        self.errors: list[str] = []
        self.subtests: list[Tester] = []
        self.skipped = False
        self._failed = False
        self._lock = threading.Lock()

    @property
    def failed(self) -> bool:
        """True if this test or any of its subtests failed."""
        with self._lock:
            children = list(self.subtests)
            own = self._failed
        return own or any(child.failed for child in children)

    def _mark_failed(self) -> None:
        with self._lock:
            self._failed = True

    def run(self, name: str, fn: Callable[[Tester], Any]) -> bool:
        """Run ``fn`` as a subtest named ``name``; return True unless it failed."""
        child = Tester(f"{self.name}/{name}" if self.name else name)
        with self._lock:
            self.subtests.append(child)
        try:
            fn(child)
        except _SkipNow:
            child.skipped = True
        except _FailNow:
            pass
        except Exception as exc:  # a crash in the body counts as a failure
            child.error(f"unexpected error: {exc!r}")
        return not child.failed

    def log(self, message: str) -> None:
        """Record a log message."""
        with self._lock:
            self.logs.append(message)

    def error(self, message: str) -> None:
        """Record an error and mark the test failed, then continue."""
        with self._lock:
            self.errors.append(message)
        self._mark_failed()

    def fatal(self, message: str) -> None:
        """Record an error, mark the test failed and stop it."""
        self.error(message)
        raise _FailNow(message)

    def fail_now(self) -> None:
        """Mark the test failed and stop it."""
        self._mark_failed()
        raise _FailNow()

    def skip(self, message: str) -> None:
        """Record ``message`` and stop the test as skipped."""
        self.log(message)
        raise _SkipNow(message)


def labels_from(pairs: Iterable[tuple[str, str]]) -> Labels:
    """Build labels from ``(key, value)`` pairs, keeping repeated keys."""
    result = Labels()
    for key, value in pairs:
        result.setdefault(key, []).append(value)
    return result