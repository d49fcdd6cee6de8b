import threading
import time

import pytest

from kubetrial.action import ActionRole
from kubetrial.env import (
    Environment,
    SetupError,
    new,
    new_parallel,
    new_with_config,
    new_with_context,
)
from kubetrial.types import Config, Feature, Labels, Level, Step, Tester

KEY = "values"


def make_feature(name, *assessments, labels=None, setups=(), teardowns=()):
    steps = [Step(n, Level.SETUP, f) for n, f in setups]
    steps += [Step(n, Level.ASSESS, f) for n, f in assessments]
    steps += [Step(n, Level.TEARDOWN, f) for n, f in teardowns]
    return Feature(name=name, labels=labels or Labels(), steps=steps)


def recording_step(values, item):
    def step(ctx, t, cfg):
        values.append(item)
        return ctx

    return step


def recording_hook(values, item):
    def hook(ctx, cfg, *rest):
        values.append(item)
        return ctx

    return hook


def appending_hook(item):
    def hook(ctx, cfg, *rest):
        return {**ctx, KEY: ctx[KEY] + [item]}

    return hook


def appending_step(item):
    def step(ctx, t, cfg):
        return {**ctx, KEY: ctx[KEY] + [item]}

    return step


def noop(ctx, *rest):
    return ctx


def test_new_defaults():
    env = new()
    assert env.ctx == {}
    assert env.actions == []
    assert env.cfg.namespace == ""


@pytest.mark.parametrize(
    "register, expected",
    [
        (lambda e: e, {ActionRole.SETUP: 0, ActionRole.BEFORE_TEST: 0, ActionRole.AFTER_TEST: 0, ActionRole.FINISH: 0}),
        (lambda e: e.setup(noop).setup(noop), {ActionRole.SETUP: 2, ActionRole.BEFORE_TEST: 0, ActionRole.AFTER_TEST: 0, ActionRole.FINISH: 0}),
        (lambda e: e.before_each_test(noop), {ActionRole.SETUP: 0, ActionRole.BEFORE_TEST: 1, ActionRole.AFTER_TEST: 0, ActionRole.FINISH: 0}),
        (lambda e: e.after_each_test(noop), {ActionRole.SETUP: 0, ActionRole.BEFORE_TEST: 0, ActionRole.AFTER_TEST: 1, ActionRole.FINISH: 0}),
        (lambda e: e.finish(noop), {ActionRole.SETUP: 0, ActionRole.BEFORE_TEST: 0, ActionRole.AFTER_TEST: 0, ActionRole.FINISH: 1}),
        (
            lambda e: e.setup(noop).before_each_test(noop).after_each_test(noop).finish(noop),
            {ActionRole.SETUP: 1, ActionRole.BEFORE_TEST: 1, ActionRole.AFTER_TEST: 1, ActionRole.FINISH: 1},
        ),
    ],
)
def test_api_methods_register_actions(register, expected):
    env = new()
    register(env)
    counts = {role: len(env.actions_by_role(role)) for role in expected}
    assert counts == expected


def test_registering_nothing_adds_no_action():
    env = new()
    assert env.setup() is env
    assert env.before_each_test() is env
    assert env.finish() is env
    assert env.actions == []


def test_feature_only():
    values = []
    env = new()
    env.test(Tester(), make_feature("test-feat", ("assess", recording_step(values, "test-feat"))))
    assert values == ["test-feat"]


def test_filtered_feature():
    values = []
    env = new_with_config(Config(feature_regex="test-feat"))
    env.test(Tester(), make_feature("test-feat", ("assess", recording_step(values, "test-feat"))))
    env2 = new_with_config(Config(feature_regex="skip-me"))
    t = Tester()
    env2.test(t, make_feature("test-feat-2", ("assess", recording_step(values, "test-feat-2"))))
    assert values == ["test-feat"]
    assert t.subtests[0].skipped
    assert t.subtests[0].logs == ['Skipping feature "test-feat-2": name not matched']


def test_with_before_test():
    values = []
    env = new()
    env.before_each_test(recording_hook(values, "before-each-test"))
    env.test(Tester(), make_feature("test-feat", ("assess", recording_step(values, "test-feat"))))
    assert values == ["before-each-test", "test-feat"]


def test_with_after_and_before_test():
    values = []
    env = new()
    env.after_each_test(recording_hook(values, "after-each-test")).before_each_test(
        recording_hook(values, "before-each-test")
    )
    env.test(Tester(), make_feature("test-feat", ("assess", recording_step(values, "test-feat"))))
    assert values == ["before-each-test", "test-feat", "after-each-test"]


def test_with_after_test_only():
    values = []
    env = new()
    env.after_each_test(recording_hook(values, "after-each-test"))
    env.test(Tester(), make_feature("test-feat", ("assess", recording_step(values, "test-feat"))))
    assert values == ["test-feat", "after-each-test"]


def test_filter_assessment():
    values = []
    env = new_with_config(Config(assessment_regex="add-*"))
    t = Tester()
    env.test(
        t,
        make_feature(
            "test-feat",
            ("add-one", recording_step(values, "add-1")),
            ("add-two", recording_step(values, "add-2")),
            ("take-one", recording_step(values, "take-1")),
        ),
    )
    assert values == ["add-1", "add-2"]
    assert [sub.skipped for sub in t.subtests[0].subtests] == [False, False, True]


def test_skip_assessment_regex():
    values = []
    env = new_with_config(Config(skip_assessment_regex="take"))
    t = Tester()
    env.test(
        t,
        make_feature(
            "f",
            ("add-one", recording_step(values, "add-1")),
            ("take-one", recording_step(values, "take-1")),
        ),
    )
    assert values == ["add-1"]
    assert t.subtests[0].subtests[1].logs == ['Skipping assessment: "take-one": name matched']


def test_context_value_propagation():
    env = new_with_context({KEY: []}, Config())
    env.before_each_test(appending_hook("before-each-test"))
    env.after_each_test(appending_hook("after-each-test"))
    env.test(Tester(), make_feature("test-feat", ("assess", appending_step("test-feat"))))
    assert env.ctx[KEY] == ["before-each-test", "test-feat", "after-each-test"]


def test_no_features():
    env = new()
    values = []
    env.before_each_test(recording_hook(values, "before"))
    t = Tester()
    env.test(t)
    assert values == []
    assert t.logs == ["No test features provided, skipping test"]


def test_multiple_features():
    values = []
    env = new()
    env.test(
        Tester(),
        make_feature("test-feat-1", ("assess", recording_step(values, "test-feature-1"))),
        make_feature("test-feat-2", ("assess", recording_step(values, "test-feature-2"))),
    )
    assert values == ["test-feature-1", "test-feature-2"]


def test_multiple_features_with_before_after_test():
    values = []
    env = new()
    env.before_each_test(recording_hook(values, "before-each-test"))
    env.after_each_test(recording_hook(values, "after-each-test"))
    env.test(
        Tester(),
        make_feature("test-feat-1", ("assess", recording_step(values, "test-feat-1"))),
        make_feature("test-feat-2", ("assess", recording_step(values, "test-feat-2"))),
    )
    assert values == ["before-each-test", "test-feat-1", "test-feat-2", "after-each-test"]


def test_before_and_after_features():
    values = []
    env = new()
    env.before_each_feature(recording_hook(values, "before-each-feature")).after_each_feature(
        recording_hook(values, "after-each-feature")
    )
    env.test(
        Tester(),
        make_feature("test-feat", ("assess", recording_step(values, "test-feat-1"))),
        make_feature("test-feat", ("assess", recording_step(values, "test-feat-2"))),
    )
    assert values == [
        "before-each-feature",
        "test-feat-1",
        "after-each-feature",
        "before-each-feature",
        "test-feat-2",
        "after-each-feature",
    ]


def test_feature_hooks_cannot_mutate_feature():
    values = []
    observed = []

    def before(ctx, cfg, t, info):
        values.append("before-each-feature")
        observed.append(("before", len(info.steps), info.steps[0].func))
        info.steps[0] = None
        info.labels["foo"] = ["bar"]
        return ctx

    def after(ctx, cfg, t, info):
        values.append("after-each-feature")
        observed.append(("after", info.labels.contains("foo", "bar"), info.steps[0].func))
        return ctx

    env = new()
    env.before_each_feature(before).after_each_feature(after)
    f1 = make_feature("test-feat", ("assess", recording_step(values, "test-feat-1")))
    f2 = make_feature("test-feat", ("assess", recording_step(values, "test-feat-2")))
    env.test(Tester(), f1, f2)
    assert values == [
        "before-each-feature",
        "test-feat-1",
        "after-each-feature",
        "before-each-feature",
        "test-feat-2",
        "after-each-feature",
    ]
    assert observed == [
        ("before", 1, None),
        ("after", False, None),
        ("before", 1, None),
        ("after", False, None),
    ]
    assert f1.steps[0].func is not None and "foo" not in f1.labels


def test_context_propagation_through_run():
    env = new_with_context({KEY: []}, Config())
    env.setup(appending_hook("setup-1"), appending_hook("setup-2"))
    env.before_each_test(appending_hook("before-each-test"))
    env.after_each_test(appending_hook("after-each-test"))

    def suite():
        env.test(
            Tester(),
            make_feature("test-context-propagation", ("assess", appending_step("test-context-propagation"))),
        )
        return 0

    assert env.run(suite) == 0
    assert env.ctx[KEY] == [
        "setup-1",
        "setup-2",
        "before-each-test",
        "test-context-propagation",
        "after-each-test",
    ]


def test_test_in_parallel():
    env = new_parallel()
    calls = []
    lock = threading.Lock()

    def counter(item):
        def hook(ctx, cfg, *rest):
            with lock:
                calls.append(item)
            return ctx

        return hook

    def slow(ctx, t, cfg):
        time.sleep(0.05)
        return ctx

    env.before_each_test(counter("before-test"))
    env.after_each_test(counter("after-test"))
    env.before_each_feature(counter("before-feature"))
    env.after_each_feature(counter("after-feature"))
    t = Tester()
    env.test_in_parallel(
        t,
        make_feature("test-parallel-feature1", ("check addition", slow), ("check addition again", slow)),
        make_feature("test-parallel-feature2", ("check subtraction", noop)),
    )
    assert calls.count("before-test") == 1
    assert calls.count("after-test") == 1
    assert calls.count("before-feature") == 2
    assert calls.count("after-feature") == 2
    assert calls[0] == "before-test" and calls[-1] == "after-test"
    assert sorted(sub.name for sub in t.subtests) == ["test-parallel-feature1", "test-parallel-feature2"]
    assert not t.failed


def test_default_feature_and_assessment_names():
    t = Tester()
    new().test(t, make_feature("", ("", noop)))
    assert t.subtests[0].name == "Feature-1"
    assert t.subtests[0].subtests[0].name == "Feature-1/Assessment-1"


def test_fail_fast_stops_assessments_and_teardown():
    values = []

    def failing(ctx, t, cfg):
        t.error("bad")
        return ctx

    env = new_with_config(Config(fail_fast=True))
    t = Tester()
    env.test(
        t,
        make_feature(
            "f",
            ("one", failing),
            ("two", recording_step(values, "two")),
            teardowns=[("down", recording_step(values, "teardown"))],
        ),
        make_feature("g", ("three", recording_step(values, "three"))),
    )
    assert values == []
    assert t.failed
    assert len(t.subtests) == 1


def test_without_fail_fast_continues_after_failure():
    values = []

    def failing(ctx, t, cfg):
        t.error("bad")
        return ctx

    env = new()
    t = Tester()
    env.test(
        t,
        make_feature(
            "f",
            ("one", failing),
            ("two", recording_step(values, "two")),
            teardowns=[("down", recording_step(values, "teardown"))],
        ),
    )
    assert values == ["two", "teardown"]
    assert t.failed


def test_setup_assess_teardown_order():
    values = []
    new().test(
        Tester(),
        make_feature(
            "f",
            ("assess", recording_step(values, "assess")),
            setups=[("up", recording_step(values, "setup"))],
            teardowns=[("down", recording_step(values, "teardown"))],
        ),
    )
    assert values == ["setup", "assess", "teardown"]


def test_dry_run_skips_hooks_and_steps():
    values = []
    env = new_with_config(Config(dry_run=True))
    env.before_each_test(recording_hook(values, "before"))
    env.before_each_feature(recording_hook(values, "before-feature"))
    t = Tester()
    env.test(t, make_feature("f", ("assess", recording_step(values, "assess"))))
    assert values == []
    assert [sub.name for sub in t.subtests[0].subtests] == ["f/assess"]


def test_label_filtering():
    values = []
    env = new_with_config(Config(labels={"type": ["lang"]}))
    t = Tester()
    env.test(
        t,
        make_feature("plain", ("a", recording_step(values, "plain"))),
        make_feature("tagged", ("a", recording_step(values, "tagged")), labels=Labels({"type": ["lang"]})),
    )
    assert values == ["tagged"]
    assert t.subtests[0].logs == ['Skipping feature "plain": unmatched label "type=lang"']


def test_skip_labels():
    values = []
    env = new_with_config(Config(skip_labels={"env": ["prod"]}))
    t = Tester()
    env.test(
        t,
        make_feature("dev", ("a", recording_step(values, "dev")), labels=Labels({"env": ["dev"]})),
        make_feature("prod", ("a", recording_step(values, "prod")), labels=Labels({"env": ["prod"]})),
    )
    assert values == ["dev"]
    assert t.subtests[1].logs == [
        'Skipping feature "prod": matched label provided in --skip-labels "env=[prod]"'
    ]


def test_before_test_failure_fails_test():
    values = []

    def broken(ctx, cfg, t):
        raise ValueError("boom")

    env = new()
    env.before_each_test(broken)
    outer = Tester()
    passed = outer.run("top", lambda t: env.test(t, make_feature("f", ("a", recording_step(values, "a")))))
    assert passed is False
    assert outer.subtests[0].errors == ["BeforeEachTest failure: boom"]
    assert values == []


def test_run_runs_finish_after_suite():
    values = []
    env = new()
    env.setup(recording_hook(values, "setup"))
    env.finish(recording_hook(values, "finish-1"), recording_hook(values, "finish-2"))

    def suite():
        values.append("suite")
        return 3

    assert env.run(suite) == 3
    assert values == ["setup", "suite", "finish-1", "finish-2"]


def test_run_recovers_from_suite_error():
    values = []
    env = new()
    env.finish(recording_hook(values, "finish"))

    def suite():
        raise RuntimeError("crash")

    assert env.run(suite) == 1
    assert values == ["finish"]


def test_run_without_graceful_teardown_reraises():
    values = []
    env = new_with_config(Config(disable_graceful_teardown=True))
    env.finish(recording_hook(values, "finish"))

    def suite():
        raise RuntimeError("crash")

    with pytest.raises(RuntimeError, match="crash"):
        env.run(suite)
    assert values == []


def test_run_setup_failure_raises():
    values = []

    def broken(ctx, cfg):
        raise ValueError("nope")

    env = new()
    env.setup(broken)
    env.finish(recording_hook(values, "finish"))
    with pytest.raises(SetupError, match="Setup failure: nope"):
        env.run(lambda: values.append("suite") or 0)
    assert values == []


def test_finish_failure_is_logged_and_skipped():
    values = []

    def broken(ctx, cfg):
        raise ValueError("nope")

    env = new()
    env.finish(broken)
    env.finish(recording_hook(values, "finish"))
    assert env.run(lambda: 0) == 0
    assert values == ["finish"]


def test_new_with_context_rejects_none():
    with pytest.raises(ValueError, match="context is None"):
        new_with_context(None, Config())
    with pytest.raises(ValueError, match="environment config is None"):
        new_with_context({}, None)


def test_with_context_copies_actions():
    env = new()
    env.setup(noop)
    other = env.with_context({"k": 1})
    assert other.ctx == {"k": 1}
    assert other.cfg is env.cfg
    other.finish(noop)
    assert len(env.actions) == 1
    assert len(other.actions) == 2


def test_with_context_rejects_none():
    with pytest.raises(ValueError):
        new().with_context(None)


def test_missing_context_raises():
    env = Environment()
    env.ctx = None
    with pytest.raises(RuntimeError, match="context not set"):
        env.test(Tester(), make_feature("f", ("a", noop)))