# kubetrial

A small framework for writing end-to-end tests organised as *features*, with
environment-level hooks and polling wait conditions for cluster resources.
It has no dependencies outside the standard library.

## Installation

```
pip install kubetrial
```

To run the package's own tests:

```
pip install "kubetrial[test]"
pytest
```

## Waiting for conditions

`kubetrial.wait.wait_for` polls a condition until it returns true. A condition
is a callable that takes no arguments; any exception it raises propagates and
ends the wait.

```python
import threading
from kubetrial.wait import wait_for, WaitTimeoutError, WaitStoppedError

wait_for(service_is_up, interval=1.0, timeout=30.0, immediate=True)

stop = threading.Event()
wait_for(queue_drained, stop_event=stop)
```

- `interval` defaults to 5 seconds and must be positive (`ValueError` otherwise).
- `timeout` defaults to 5 minutes; when it passes, `WaitTimeoutError`
  (a `TimeoutError`) is raised.
- With `stop_event`, the timeout is ignored and `WaitStoppedError`
  (a subclass of `WaitTimeoutError`) is raised once the event is set.
- With `immediate=True` the condition is checked once before the first
  interval; otherwise the first check happens after one interval.

## Predefined resource conditions

`kubetrial.conditions.Condition` wraps a resource client that you supply. The
client must provide:

- `get(name, namespace, obj)` returning the current object, raising
  `kubetrial.conditions.NotFoundError` when it does not exist;
- `list(object_list, *list_options)` returning an object list.

Objects are mappings in the Kubernetes JSON shape (`apiVersion`, `kind`,
`metadata`, `status`); object lists are either a mapping with `items` or a
plain sequence of objects. Each method returns a condition callable for
`wait_for`:

```python
from kubetrial.conditions import Condition, DEPLOYMENT_AVAILABLE, CONDITION_TRUE
from kubetrial.wait import wait_for

cond = Condition(client)
wait_for(cond.pod_running(pod), immediate=True)
wait_for(cond.job_completed(job))
wait_for(cond.resource_scaled(deployment, lambda d: d["status"]["readyReplicas"], 2))
wait_for(cond.deployment_condition_match(deployment, DEPLOYMENT_AVAILABLE, CONDITION_TRUE))
wait_for(cond.resource_deleted(pod), interval=2.0)
```

| Method | True once |
| --- | --- |
| `resource_scaled(obj, scale_fetcher, replica)` | `scale_fetcher(obj) == replica` |
| `resource_match(obj, match_fetcher)` | `match_fetcher(obj)` is true |
| `resource_list_n(object_list, n, *options)` | listing yields at least `n` objects |
| `resource_list_match_n(object_list, n, match_fetcher, *options)` | at least `n` listed objects match |
| `resources_found(object_list)` | every named object in the list can be fetched |
| `resources_match(object_list, match_fetcher)` | every named object exists and matches |
| `resources_deleted(object_list)` | none of the named objects can be found |
| `resource_deleted(obj)` | the client raises `NotFoundError` |
| `pod_condition_match(pod, type, state)` | the pod has a condition with that type and status |
| `pod_phase_match(pod, phase)` | `status.phase` equals `phase` |
| `pod_ready(pod)` / `containers_ready(pod)` | `Ready` / `ContainersReady` is `True` |
| `pod_running(pod)` | phase is `Running` |
| `deployment_condition_match(deployment, type, state)` | the deployment has that condition |
| `job_condition_match(job, type, state)` | the job has that condition |
| `job_completed(job)` / `job_failed(job)` | `Complete` / `Failed` is `True` |

`resource_scaled`, `resource_match` and the list-counting conditions treat any
client error as "not yet". The other conditions let errors other than
`NotFoundError` propagate, which ends the wait. A list item that is not a
mapping raises `TypeError`. The module also exports the string constants
`POD_READY`, `CONTAINERS_READY`, `POD_RUNNING`, `JOB_COMPLETE`, `JOB_FAILED`,
`DEPLOYMENT_AVAILABLE`, `CONDITION_TRUE` and `CONDITION_FALSE`.

## Features

`kubetrial.types` holds the building blocks:

- `Level`: `SETUP`, `ASSESS`, `TEARDOWN`.
- `Step(name, level, func)`: a step function is called as `func(ctx, t, cfg)`
  and returns the context for the next step.
- `Feature(name, labels, steps)`: `steps_by_level(level)` returns the steps at
  that level in order; `info_copy()` returns an independent copy with names,
  levels and labels but no step functions.
- `Labels`: a dict of key to list of values, with `contains(key, value)`;
  `labels_from(pairs)` builds one from `(key, value)` pairs.
- `Config`: `namespace`, `kubeconfig`, `dry_run`, `fail_fast`,
  `parallel_tests`, `disable_graceful_teardown`, `feature_regex`,
  `skip_feature_regex`, `assessment_regex`, `skip_assessment_regex`, `labels`
  and `skip_labels`. Regex fields accept a string or a compiled pattern.
- `Tester`: records the outcome of a test. `run(name, fn)` runs a subtest,
  `log`, `error`, `fatal`, `fail_now` and `skip` behave as their names say,
  and `failed`, `skipped`, `logs`, `errors` and `subtests` hold the results.

```python
from kubetrial.types import Feature, Level, Step, Tester, labels_from

def check(ctx, t, cfg):
    if ctx.get("cluster") != "demo":
        t.error("wrong cluster")
    return ctx

feature = Feature(
    name="cluster",
    labels=labels_from([("type", "smoke")]),
    steps=[Step("has cluster", Level.ASSESS, check)],
)
```

## Test environments

`kubetrial.env.Environment` holds a context, a `Config` and registered hooks.
Each hook receives the current context and returns the one the next hook sees.

- `setup(*funcs)` and `finish(*funcs)`: `f(ctx, cfg)`, run once by `run(suite)`.
- `before_each_test(*funcs)` and `after_each_test(*funcs)`: `f(ctx, cfg, t)`,
  run around each `test` / `test_in_parallel` call.
- `before_each_feature(*funcs)` and `after_each_feature(*funcs)`:
  `f(ctx, cfg, t, feature)`, run around each feature with an `info_copy()` of it.

Hooks report failure by raising. Registration calls return the environment, so
they can be chained; calling one with no functions registers nothing.
`actions_by_role(role)` lists registered `kubetrial.action.Action` values for an
`ActionRole`.

```python
from kubetrial import env
from kubetrial.types import Tester

environment = env.new()
environment.setup(lambda ctx, cfg: {**ctx, "cluster": "demo"})

def suite():
    t = Tester("suite")
    environment.test(t, feature)
    return 1 if t.failed else 0

exit_code = environment.run(suite)
```

Constructors: `env.new()`, `env.new_parallel()` (parallel tests enabled),
`env.new_with_config(cfg)` and `env.new_with_context(ctx, cfg)` (raises
`ValueError` if either is `None`). `with_context(ctx)` returns a new
environment sharing the config and a copy of the hooks.

Behaviour of a run:

- `test(t, *features)` runs features one after another as subtests of `t`;
  `test_in_parallel` runs them in threads when `cfg.parallel_tests` is set.
  Unnamed features and assessments are called `Feature-N` / `Assessment-N`.
- Features are skipped when their name does not match `feature_regex`, matches
  `skip_feature_regex`, lacks a label in `cfg.labels` or has one in
  `cfg.skip_labels`; assessments are filtered by the assessment regexes.
- With `fail_fast`, a failing assessment stops the remaining assessments and
  the teardown of that feature, and a failed feature stops later ones in
  sequential runs.
- With `dry_run`, hooks and steps are not executed.
- In `run(suite)`, a failing setup raises `kubetrial.env.SetupError`. If the
  suite raises, finish functions still run and 1 is returned, unless
  `disable_graceful_teardown` is set, in which case the exception propagates.
  Failing finish functions are logged and the rest still run.

## What this package does not do

It does not talk to a cluster on its own: there is no built-in API client,
no cluster creation or deletion, and no command-line flag parsing for
`Config`. Resource conditions work only through the client object you pass to
`Condition`, and `Tester` is a self-contained recorder rather than a plug-in
for an existing test runner.