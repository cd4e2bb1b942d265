"""Audit wrapper for designated operations.

``AuditAspect.auditable()`` is applied where an operation is registered
(typically a route handler). Each call is timed, and exactly one structured
``audit_event_recorded`` log event plus one counter increment and one
duration observation are emitted whether the call returns or raises. The
wrapper observes only: exceptions are re-raised unchanged and return values
pass through untouched.
"""

from __future__ import annotations

import functools
import inspect
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from authlab.audit.sanitize import (
    find_root_cause,
    sanitize_exception_message,
    sanitize_ip_address,
    sanitize_user_agent,
)
from authlab.logging import get_logger
from authlab.metrics import Metrics
from authlab.security.context import current_authentication, current_request_scope

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"
WEB = "WEB"
NON_WEB = "NON_WEB"
ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class AuditRecord:
    method: str
    outcome: str
    duration_ms: float
    principal: str
    roles: list[str]
    context_type: str
    remote_addr: Optional[str] = None
    request_uri: Optional[str] = None
    user_agent: Optional[str] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    root_cause_type: Optional[str] = None
    root_cause_message: Optional[str] = None

    def as_log_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "method": self.method,
            "outcome": self.outcome,
            "durationMs": self.duration_ms,
            "principal": self.principal,
            "roles": list(self.roles),
            "contextType": self.context_type,
        }
        optional = {
            "remoteAddr": self.remote_addr,
            "requestUri": self.request_uri,
            "userAgent": self.user_agent,
            "exceptionType": self.exception_type,
            "exceptionMessage": self.exception_message,
            "rootCauseType": self.root_cause_type,
            "rootCauseMessage": self.root_cause_message,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


def build_audit_record(
    method: str,
    duration_ns: int,
    outcome: str,
    exc: Optional[BaseException] = None,
) -> AuditRecord:
    authentication = current_authentication()
    principal = authentication.name if authentication else ANONYMOUS
    roles = authentication.sorted_authorities if authentication else []

    details: dict[str, Any] = {}
    scope = current_request_scope()
    if scope is not None:
        details.update(
            context_type=WEB,
            remote_addr=sanitize_ip_address(scope.remote_addr),
            request_uri=scope.request_uri,
            # Logged only; never a metric label
            user_agent=sanitize_user_agent(scope.user_agent),
        )
    else:
        details["context_type"] = NON_WEB

    if exc is not None:
        details["exception_type"] = type(exc).__name__
        details["exception_message"] = sanitize_exception_message(str(exc))
        root = find_root_cause(exc)
        if root is not exc:
            details["root_cause_type"] = type(root).__name__
            details["root_cause_message"] = sanitize_exception_message(str(root))

    return AuditRecord(
        method=method,
        outcome=outcome,
        duration_ms=duration_ns / 1_000_000.0,
        principal=principal,
        roles=roles,
        **details,
    )


def operation_name(func: Callable[..., Any]) -> str:
    """``module.function`` style identifier, without ``<locals>`` noise."""
    module = (func.__module__ or "").rsplit(".", 1)[-1]
    qualname = func.__qualname__.split("<locals>.")[-1]
    return f"{module}.{qualname}" if module else qualname


@dataclass
class _Meters:
    counter: Any
    timer: Any


@dataclass
class AuditAspect:
    metrics: Metrics
    audit_logger: Any = field(default_factory=lambda: get_logger("audit"))
    _meters: dict[tuple[str, str], _Meters] = field(default_factory=dict, init=False, repr=False)
    _meter_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def auditable(self, name: Optional[str] = None) -> Callable[[F], F]:
        def decorator(func: F) -> F:
            return self.wrap(func, name=name)

        return decorator

    def wrap(self, func: F, *, name: Optional[str] = None) -> F:
        method = name or operation_name(func)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter_ns()
                outcome = SUCCESS
                caught: Optional[BaseException] = None
                try:
                    return await func(*args, **kwargs)
                except BaseException as exc:
                    outcome = FAILURE
                    caught = exc
                    raise
                finally:
                    self._record(method, time.perf_counter_ns() - start, outcome, caught)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter_ns()
            outcome = SUCCESS
            caught: Optional[BaseException] = None
            try:
                return func(*args, **kwargs)
            except BaseException as exc:
                outcome = FAILURE
                caught = exc
                raise
            finally:
                self._record(method, time.perf_counter_ns() - start, outcome, caught)

        return wrapper  # type: ignore[return-value]

    def _record(
        self,
        method: str,
        duration_ns: int,
        outcome: str,
        exc: Optional[BaseException],
    ) -> None:
        # Sink failures must never change the outcome of the audited call
        try:
            record = build_audit_record(method, duration_ns, outcome, exc)
            self.audit_logger.info("audit_event_recorded", audit=record.as_log_dict())
        except Exception as err:
            logger.warning("audit_log_failed", method=method, error=str(err))
        try:
            meters = self._meters_for(method, outcome)
            meters.counter.inc()
            meters.timer.observe(duration_ns / 1_000_000_000)
        except Exception as err:
            logger.warning("audit_metrics_failed", method=method, error=str(err))

    def _meters_for(self, method: str, outcome: str) -> _Meters:
        key = (method, outcome)
        meters = self._meters.get(key)
        if meters is not None:
            return meters
        with self._meter_lock:
            meters = self._meters.get(key)
            if meters is None:
                meters = _Meters(
                    counter=self.metrics.audit_events_total.labels(method=method, outcome=outcome),
                    timer=self.metrics.audit_events_duration.labels(method=method, outcome=outcome),
                )
                self._meters[key] = meters
        return meters

    @property
    def cached_meter_keys(self) -> set[tuple[str, str]]:
        with self._meter_lock:
            return set(self._meters)
