"""Ready-made wait conditions for Kubernetes resources.

Objects are mappings in the Kubernetes JSON shape (``apiVersion``, ``kind``,
``metadata``, ``status``). The resource client must provide
``get(name, namespace, obj)`` returning the current object, raising
:class:`NotFoundError` when it does not exist, and
``list(object_list, *list_options)`` returning an object list.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol

log = logging.getLogger(__name__)

K8sObject = Mapping[str, Any]
ConditionFunc = Callable[[], bool]
MatchFunc = Callable[[K8sObject], bool]

POD_READY = "Ready"
CONTAINERS_READY = "ContainersReady"
POD_RUNNING = "Running"
JOB_COMPLETE = "Complete"
JOB_FAILED = "Failed"
DEPLOYMENT_AVAILABLE = "Available"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


class NotFoundError(LookupError):
    """Raised by a resource client when the requested object does not exist."""


class _Resources(Protocol):
    def get(self, name: str, namespace: str, obj: K8sObject) -> K8sObject: ...

    def list(self, object_list: Any, *list_options: Any) -> Any: ...


@dataclass
class _Tracked:
    obj: K8sObject
    seen: bool = False


def _metadata(obj: K8sObject) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _name(obj: K8sObject) -> str:
    return _metadata(obj).get("name") or ""


def _namespace(obj: K8sObject) -> str:
    return _metadata(obj).get("namespace") or ""


def _describe(obj: K8sObject) -> str:
    return (
        f"{obj.get('apiVersion', '')}, Kind={obj.get('kind', '')} "
        f"[{_namespace(obj)}/{_name(obj)}]"
    )


def _extract_list(object_list: Any) -> list[Any]:
    if isinstance(object_list, Mapping):
        return list(object_list.get("items") or [])
    if isinstance(object_list, Sequence) and not isinstance(object_list, (str, bytes)):
        return list(object_list)
    raise TypeError(f"condition: {type(object_list).__name__} is not an object list")


def _check_object(item: Any) -> K8sObject:
    if not isinstance(item, Mapping):
        raise TypeError(
            f"condition: unexpected type {type(item).__name__} in list, "
            "is not a Kubernetes object"
        )
    return item


def _named_objects(object_list: Any) -> tuple[list[K8sObject], Optional[TypeError]]:
    """Return the named objects of a list, or the error that makes the list unusable."""
    try:
        items = [_check_object(item) for item in _extract_list(object_list)]
    except TypeError as error:
        return [], error
    return [obj for obj in items if _name(obj)], None


def _has_condition(obj: K8sObject, condition_type: str, condition_state: str) -> bool:
    conditions = (obj.get("status") or {}).get("conditions") or []
    return any(
        cond.get("type") == condition_type and cond.get("status") == condition_state
        for cond in conditions
    )


def _matches(match_fetcher: Optional[MatchFunc], obj: K8sObject) -> bool:
    return match_fetcher is None or bool(match_fetcher(obj))


class Condition:
    """Builds condition callables that check resources through a client."""

    def __init__(self, resources: _Resources) -> None:
        self._resources = resources

    def _get(self, obj: K8sObject) -> K8sObject:
        return self._resources.get(_name(obj), _namespace(obj), obj)

    def resource_scaled(
        self, obj: K8sObject, scale_fetcher: Callable[[K8sObject], int], replica: int
    ) -> ConditionFunc:
        """True once ``scale_fetcher`` reports ``replica`` replicas; lookup errors count as not yet."""

        def condition() -> bool:
            log.debug("Checking for resource to be scaled: %s replica=%s", _describe(obj), replica)
            try:
                current = self._get(obj)
            except Exception:
                return False
            return scale_fetcher(current) == replica

        return condition

    def resource_match(self, obj: K8sObject, match_fetcher: MatchFunc) -> ConditionFunc:
        """True once the fetched object satisfies ``match_fetcher``; lookup errors count as not yet."""

        def condition() -> bool:
            try:
                current = self._get(obj)
            except Exception:
                return False
            return bool(match_fetcher(current))

        return condition

    def resource_list_n(self, object_list: Any, n: int, *list_options: Any) -> ConditionFunc:
        """True once listing returns at least ``n`` objects."""
        return self.resource_list_match_n(object_list, n, None, *list_options)

    def resource_list_match_n(
        self,
        object_list: Any,
        n: int,
        match_fetcher: Optional[MatchFunc],
        *list_options: Any,
    ) -> ConditionFunc:
        """True once listing returns at least ``n`` objects that satisfy ``match_fetcher``.

        A ``match_fetcher`` of None accepts every object.
        """

        def condition() -> bool:
            try:
                listed = self._resources.list(object_list, *list_options)
            except Exception:
                return False
            found = sum(
                1 for item in _extract_list(listed) if _matches(match_fetcher, _check_object(item))
            )
            return found >= n

        return condition

    def resources_found(self, object_list: Any) -> ConditionFunc:
        """True once every named object in ``object_list`` can be fetched."""
        return self.resources_match(object_list, None)

    def resources_match(
        self, object_list: Any, match_fetcher: Optional[MatchFunc]
    ) -> ConditionFunc:
        """True once every named object in ``object_list`` exists and satisfies ``match_fetcher``.

        A ``match_fetcher`` of None accepts every object that exists.
        """
        objects, list_error = _named_objects(object_list)
        tracked = [_Tracked(obj) for obj in objects]

        def condition() -> bool:
            if list_error is not None:
                raise list_error
            found = 0
            for entry in tracked:
                if not entry.seen:
                    try:
                        current = self._get(entry.obj)
                    except NotFoundError:
                        continue
                    if not _matches(match_fetcher, current):
                        continue
                    entry.obj = current
                entry.seen = True
                found += 1
            return found == len(tracked)

        return condition

    def resources_deleted(self, object_list: Any) -> ConditionFunc:
        """True once none of the named objects in ``object_list`` can be found."""
        remaining, list_error = _named_objects(object_list)

        def condition() -> bool:
            if list_error is not None:
                raise list_error
            still_present = []
            for obj in remaining:
                log.debug("Checking for resource to be garbage collected: %s", _describe(obj))
                try:
                    self._get(obj)
                except NotFoundError:
                    continue
                still_present.append(obj)
            remaining[:] = still_present
            return not remaining

        return condition

    def resource_deleted(self, obj: K8sObject) -> ConditionFunc:
        """True once the object is reported as not found; other errors propagate."""

        def condition() -> bool:
            log.debug("Checking for resource to be garbage collected: %s", _describe(obj))
            try:
                self._get(obj)
            except NotFoundError:
                return True
            return False

        return condition

    def job_condition_match(
        self, job: K8sObject, condition_type: str, condition_state: str
    ) -> ConditionFunc:
        """True once the job carries a condition of the given type and state."""

        def condition() -> bool:
            log.debug(
                "Checking for condition match: %s state=%s type=%s",
                _describe(job),
                condition_state,
                condition_type,
            )
            current = self._get(job)
            log.debug("Current status of the job resource: %s", current.get("status"))
            return _has_condition(current, condition_type, condition_state)

        return condition

    def deployment_condition_match(
        self, deployment: K8sObject, condition_type: str, condition_state: str
    ) -> ConditionFunc:
        """True once the deployment carries a condition of the given type and state."""

        def condition() -> bool:
            current = self._get(deployment)
            return _has_condition(current, condition_type, condition_state)

        return condition

    def pod_condition_match(
        self, pod: K8sObject, condition_type: str, condition_state: str
    ) -> ConditionFunc:
        """True once the pod carries a condition of the given type and state."""

        def condition() -> bool:
            log.debug(
                "Checking for condition match: %s state=%s type=%s",
                _describe(pod),
                condition_state,
                condition_type,
            )
            current = self._get(pod)
            log.debug("Current status of the pod resource: %s", current.get("status"))
            return _has_condition(current, condition_type, condition_state)

        return condition

    def pod_phase_match(self, pod: K8sObject, phase: str) -> ConditionFunc:
        """True once the pod's ``status.phase`` equals ``phase``."""

        def condition() -> bool:
            log.debug("Checking for phase match: %s phase=%s", _describe(pod), phase)
            current = self._get(pod)
            current_phase = (current.get("status") or {}).get("phase")
            log.debug("Current phase: %s", current_phase)
            return current_phase == phase

        return condition

    def pod_ready(self, pod: K8sObject) -> ConditionFunc:
        """True once the pod's Ready condition is True."""
        return self.pod_condition_match(pod, POD_READY, CONDITION_TRUE)

    def containers_ready(self, pod: K8sObject) -> ConditionFunc:
        """True once the pod's ContainersReady condition is True."""
        return self.pod_condition_match(pod, CONTAINERS_READY, CONDITION_TRUE)

    def pod_running(self, pod: K8sObject) -> ConditionFunc:
        """True once the pod is in the Running phase."""
        return self.pod_phase_match(pod, POD_RUNNING)

    def job_completed(self, job: K8sObject) -> ConditionFunc:
        """True once the job's Complete condition is True."""
        return self.job_condition_match(job, JOB_COMPLETE, CONDITION_TRUE)

    def job_failed(self, job: K8sObject) -> ConditionFunc:
        """True once the job's Failed condition is True."""
        return self.job_condition_match(job, JOB_FAILED, CONDITION_TRUE)