"""Test environments that run features with setup, teardown and per-test hooks.

An environment owns a context value that is handed from one registered
function to the next: each function receives the current context and returns
the context the next one should see.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any

from kubetrial.action import Action, ActionRole, EnvFunc, FeatureEnvFunc, TestEnvFunc
from kubetrial.types import Config, Feature, Labels, Level, Step, Tester

log = logging.getLogger(__name__)


class SetupError(RuntimeError):
    """Raised by :meth:`Environment.run` when a setup function fails."""


def _pattern(value: Any) -> re.Pattern[str] | None:
    if value is None or value == "":
        return None
    if isinstance(value, re.Pattern):
        return value
    return re.compile(value)


def _format_values(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


class Environment:
    """Runs features against a shared context and configuration."""

    def __init__(self, cfg: Config | None = None, ctx: Any = None) -> None:
        self.ctx: Any = {} if ctx is None else ctx
        self.cfg: Config = Config() if cfg is None else cfg
        self.actions: list[Action] = []

    def with_context(self, ctx: Any) -> Environment:
        """Return a new environment using ``ctx`` with this one's config and actions."""
        if ctx is None:
            raise ValueError("context is None")
        env = Environment(self.cfg, ctx)
        env.actions = list(self.actions)
        return env

    def _register(self, role: ActionRole, funcs: Sequence[Callable[..., Any] | None]) -> Environment:
        if funcs:
            self.actions.append(Action(role, tuple(funcs)))
        return self

    def setup(self, *funcs: EnvFunc) -> Environment:
        """Register functions run once before any test, as ``f(ctx, cfg)``."""
        return self._register(ActionRole.SETUP, funcs)

    def before_each_test(self, *funcs: TestEnvFunc) -> Environment:
        """Register functions run before each call to :meth:`test`, as ``f(ctx, cfg, t)``."""
        return self._register(ActionRole.BEFORE_TEST, funcs)

    def before_each_feature(self, *funcs: FeatureEnvFunc) -> Environment:
        """Register functions run before each feature, as ``f(ctx, cfg, t, feature)``."""
        return self._register(ActionRole.BEFORE_FEATURE, funcs)

    def after_each_feature(self, *funcs: FeatureEnvFunc) -> Environment:
        """Register functions run after each feature, as ``f(ctx, cfg, t, feature)``."""
        return self._register(ActionRole.AFTER_FEATURE, funcs)

    def after_each_test(self, *funcs: TestEnvFunc) -> Environment:
        """Register functions run after each call to :meth:`test`, as ``f(ctx, cfg, t)``."""
        return self._register(ActionRole.AFTER_TEST, funcs)

    def finish(self, *funcs: EnvFunc) -> Environment:
        """Register functions run once at the end of the suite, as ``f(ctx, cfg)``."""
        return self._register(ActionRole.FINISH, funcs)

    def actions_by_role(self, role: ActionRole) -> list[Action]:
        """Return the registered actions with ``role``, in registration order."""
        return [action for action in self.actions if action.role == role]

    def test(self, t: Tester, *features: Feature) -> None:
        """Run ``features`` one after another as subtests of ``t``."""
        self._process_tests(t, False, features)

    def test_in_parallel(self, t: Tester, *features: Feature) -> None:
        """Run ``features`` concurrently when the config enables parallel tests.

        Before/after-test functions still run once, around the whole set.
        """
        self._process_tests(t, True, features)

    def run(self, suite: Callable[[], int]) -> int:
        """Run setups, then ``suite``, then finish functions; return the suite's exit code.

        A failing setup raises :class:`SetupError` and nothing else runs. If the
        suite raises, the error is logged, finish functions still run and 1 is
        returned, unless graceful teardown is disabled, in which case the error
        propagates at once. Finish functions that fail are logged and skipped.
        """
        if self.ctx is None:
            raise RuntimeError("context not set")
        for action in self.actions_by_role(ActionRole.SETUP):
            try:
                self.ctx = action.run(self.ctx, self.cfg)
            except Exception as exc:
                raise SetupError(f"{action.role} failure: {exc}") from exc
        try:
            code = suite()
        except Exception:
            if self.cfg.disable_graceful_teardown:
                raise
            log.exception("Recovering from failure and running finish actions")
            code = 1
        for action in self.actions_by_role(ActionRole.FINISH):
            try:
                self.ctx = action.run(self.ctx, self.cfg)
            except Exception:
                log.exception("Cleanup failed: action %s", action.role)
        return code

    def _process_tests(self, t: Tester, parallel: bool, features: Sequence[Feature]) -> None:
        if self.cfg.dry_run:
            log.debug("Running in dry-run mode: before/after functions and steps are skipped")
        if self.ctx is None:
            raise RuntimeError("context not set")
        if not features:
            t.log("No test features provided, skipping test")
            return
        before = self.actions_by_role(ActionRole.BEFORE_TEST)
        after = self.actions_by_role(ActionRole.AFTER_TEST)

        self._process_test_actions(t, before)

        named = list(self._named(features))
        if self.cfg.parallel_tests and parallel:
            log.debug("Running test features in parallel")
            threads = [
                threading.Thread(target=self._process_feature_guarded, args=(t, name, feature))
                for name, feature in named
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        else:
            for name, feature in named:
                self._process_test_feature(t, name, feature)
                if self.cfg.fail_fast and t.failed:
                    break

        self._process_test_actions(t, after)

    @staticmethod
    def _named(features: Sequence[Feature]) -> Iterator[tuple[str, Feature]]:
        for index, feature in enumerate(features, start=1):
            yield feature.name or f"Feature-{index}", feature

    def _process_test_actions(self, t: Tester, actions: Sequence[Action]) -> None:
        for action in actions:
            try:
                self.ctx = action.run_with_t(self.ctx, self.cfg, t)
            except Exception as exc:
                t.fatal(f"{action.role} failure: {exc}")

    def _process_feature_actions(
        self, t: Tester, feature: Feature, actions: Sequence[Action]
    ) -> None:
        for action in actions:
            try:
                self.ctx = action.run_with_feature(self.ctx, self.cfg, t, feature.info_copy())
            except Exception as exc:
                t.fatal(f"{action.role} failure: {exc}")

    def _process_feature_guarded(self, t: Tester, name: str, feature: Feature) -> None:
        try:
            self._process_test_feature(t, name, feature)
        except Exception as exc:
            if not t.failed:
                t.error(f"feature {name} failed: {exc!r}")

    def _process_test_feature(self, t: Tester, name: str, feature: Feature) -> None:
        self._process_feature_actions(t, feature, self.actions_by_role(ActionRole.BEFORE_FEATURE))
        self.ctx = self._exec_feature(self.ctx, t, name, feature)
        self._process_feature_actions(t, feature, self.actions_by_role(ActionRole.AFTER_FEATURE))

    def _execute_steps(self, ctx: Any, t: Tester, steps: Sequence[Step]) -> Any:
        if self.cfg.dry_run:
            return ctx
        for step in steps:
            ctx = step.func(ctx, t, self.cfg)
        return ctx

    def _exec_feature(self, ctx: Any, t: Tester, name: str, feature: Feature) -> Any:
        def feature_body(ft: Tester) -> None:
            nonlocal ctx
            skipped, message = self._require_feature_processing(feature)
            if skipped:
                ft.skip(message)

            ctx = self._execute_steps(ctx, ft, feature.steps_by_level(Level.SETUP))

            failed = False
            for index, assess in enumerate(feature.steps_by_level(Level.ASSESS), start=1):

                def assess_body(at: Tester, assess: Step = assess, index: int = index) -> None:
                    nonlocal ctx
                    skip, reason = self._require_assessment_processing(assess, index)
                    if skip:
                        at.skip(reason)
                    ctx = self._execute_steps(ctx, at, [assess])

                ft.run(assess.name or f"Assessment-{index}", assess_body)
                if self.cfg.fail_fast and ft.failed:
                    failed = True
                    break

            # Leave teardown undone so the failed state stays around for debugging.
            if self.cfg.fail_fast and failed:
                ft.fail_now()

            ctx = self._execute_steps(ctx, ft, feature.steps_by_level(Level.TEARDOWN))

        t.run(name, feature_body)
        return ctx

    def _require_feature_processing(self, feature: Feature) -> tuple[bool, str]:
        return self._require_processing(
            "feature",
            feature.name,
            self.cfg.feature_regex,
            self.cfg.skip_feature_regex,
            feature.labels,
        )

    def _require_assessment_processing(self, step: Step, index: int) -> tuple[bool, str]:
        name = step.name or f"Assessment-{index}"
        return self._require_processing(
            "assessment",
            name,
            self.cfg.assessment_regex,
            self.cfg.skip_assessment_regex,
            None,
        )

    def _require_processing(
        self,
        kind: str,
        name: str,
        required: Any,
        skip: Any,
        labels: Labels | None,
    ) -> tuple[bool, str]:
        required_re = _pattern(required)
        skip_re = _pattern(skip)
        if required_re is not None and not required_re.search(name):
            return True, f'Skipping {kind} "{name}": name not matched'
        if skip_re is not None and skip_re.search(name):
            return True, f'Skipping {kind}: "{name}": name matched'
        if labels is not None:
            for key, values in self.cfg.labels.items():
                for value in values:
                    if not labels.contains(key, value):
                        return True, f'Skipping feature "{name}": unmatched label "{key}={value}"'
            for key, values in self.cfg.skip_labels.items():
                for value in values:
                    if labels.contains(key, value):
                        return True, (
                            f'Skipping feature "{name}": matched label provided in '
                            f'--skip-labels "{key}={_format_values(labels[key])}"'
                        )
        return False, ""


def new() -> Environment:
    """Create an environment with a default config and an empty context."""
    return Environment()


def new_parallel() -> Environment:
    """Create an environment whose config enables parallel feature runs."""
    return Environment(Config(parallel_tests=True))


def new_with_config(cfg: Config) -> Environment:
    """Create an environment using ``cfg``."""
    return Environment(cfg)


def new_with_context(ctx: Any, cfg: Config) -> Environment:
    """Create an environment with the given context and config; neither may be None."""
    if ctx is None:
        raise ValueError("context is None")
    if cfg is None:
        raise ValueError("environment config is None")
    return Environment(cfg, ctx)