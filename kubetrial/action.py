"""Groups of environment functions tagged with the phase they run in."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from kubetrial.types import Config, Feature, Tester

log = logging.getLogger(__name__)

EnvFunc = Callable[[Any, Config], Any]
TestEnvFunc = Callable[[Any, Config, Tester], Any]
FeatureEnvFunc = Callable[[Any, Config, Tester, Feature], Any]


class ActionRole(IntEnum):
    """The phase of an environment in which an action runs."""

    SETUP = 0
    BEFORE_TEST = 1
    BEFORE_FEATURE = 2
    AFTER_FEATURE = 3
    AFTER_TEST = 4
    FINISH = 5

    def __str__(self) -> str:
        return _ROLE_NAMES[self]


_ROLE_NAMES = {
    ActionRole.SETUP: "Setup",
    ActionRole.BEFORE_TEST: "BeforeEachTest",
    ActionRole.BEFORE_FEATURE: "BeforeEachFeature",
    ActionRole.AFTER_FEATURE: "AfterEachFeature",
    ActionRole.AFTER_TEST: "AfterEachTest",
    ActionRole.FINISH: "Finish",
}

_TEST_ROLES = frozenset({ActionRole.BEFORE_TEST, ActionRole.AFTER_TEST})
_FEATURE_ROLES = frozenset({ActionRole.BEFORE_FEATURE, ActionRole.AFTER_FEATURE})


@dataclass
class Action:
    """A sequence of functions run in order, each receiving the context the previous returned.

    A function reports failure by raising; the exception stops the action.
    ``None`` entries are skipped. Nothing runs while the config is in dry-run mode.
    """

    role: ActionRole
    funcs: Sequence[Callable[..., Any] | None] = field(default_factory=tuple)

    def run(self, ctx: Any, cfg: Config) -> Any:
        """Run the functions as ``f(ctx, cfg)`` and return the final context."""
        if cfg.dry_run:
            log.debug("Skipping processing of action due to framework being in dry-run mode")
            return ctx
        for func in self.funcs:
            if func is not None:
                ctx = func(ctx, cfg)
        return ctx

    def run_with_t(self, ctx: Any, cfg: Config, t: Tester) -> Any:
        """Run before/after-test functions as ``f(ctx, cfg, t)`` and return the final context."""
        if self.role not in _TEST_ROLES:
            raise ValueError(
                "run_with_t() is only valid for actions BeforeEachTest and AfterEachTest"
            )
        if cfg.dry_run:
            log.debug("Skipping execution of before/after test actions in dry-run mode")
            return ctx
        for func in self.funcs:
            if func is not None:
                ctx = func(ctx, cfg, t)
        return ctx

    def run_with_feature(self, ctx: Any, cfg: Config, t: Tester, feature: Feature) -> Any:
        """Run before/after-feature functions as ``f(ctx, cfg, t, feature)``."""
        if self.role not in _FEATURE_ROLES:
            raise ValueError(
                "run_with_feature() is only valid for actions BeforeEachFeature "
                "and AfterEachFeature"
            )
        if cfg.dry_run:
            log.debug("Skipping execution of before/after feature actions in dry-run mode")
            return ctx
        for func in self.funcs:
            if func is not None:
                ctx = func(ctx, cfg, t, feature)
        return ctx