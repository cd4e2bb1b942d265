"""Unit tests for the audit wrapper."""

import threading

import pytest

from authlab.audit.aspect import AuditAspect, build_audit_record, operation_name
from authlab.metrics import Metrics
from authlab.security.context import (
    Authentication,
    RequestScope,
    SecurityContext,
    bind_security_context,
)

from conftest import RecordingLogger


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def audit_log():
    return RecordingLogger()


@pytest.fixture
def aspect(metrics, audit_log):
    return AuditAspect(metrics, audit_logger=audit_log)


def _audit_events(audit_log):
    return [fields["audit"] for event, fields in audit_log.events if event == "audit_event_recorded"]


def _authenticated(name="user", *authorities):
    context = SecurityContext()
    context.set_authentication(Authentication(name=name, authorities=frozenset(authorities)))
    return context


class TestOutcomes:
    """Every call emits exactly one record, whatever its outcome."""

    def test_success_passes_value_through(self, aspect, audit_log, metrics):
        wrapped = aspect.wrap(lambda x: x * 2, name="svc.double")

        assert wrapped(21) == 42
        [record] = _audit_events(audit_log)
        assert record["method"] == "svc.double"
        assert record["outcome"] == "SUCCESS"
        assert record["durationMs"] >= 0
        assert "exceptionType" not in record
        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.double", "outcome": "SUCCESS"}
        ) == 1
        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.double", "outcome": "FAILURE"}
        ) == 0

    def test_failure_reraises_same_exception(self, aspect, audit_log, metrics):
        error = ValueError("boom")

        def fail():
            raise error

        wrapped = aspect.wrap(fail, name="svc.fail")
        with pytest.raises(ValueError) as caught:
            wrapped()

        assert caught.value is error
        [record] = _audit_events(audit_log)
        assert record["outcome"] == "FAILURE"
        assert record["exceptionType"] == "ValueError"
        assert record["exceptionMessage"] == "boom"
        assert "rootCauseType" not in record
        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.fail", "outcome": "FAILURE"}
        ) == 1
        assert metrics.sample(
            "app_audit_events_duration_seconds_count",
            {"method": "svc.fail", "outcome": "FAILURE"},
        ) == 1

    def test_root_cause_is_reported(self, aspect, audit_log):
        def fail():
            try:
                raise KeyError("inner")
            except KeyError as exc:
                raise RuntimeError("outer") from exc

        with pytest.raises(RuntimeError):
            aspect.wrap(fail, name="svc.chain")()

        [record] = _audit_events(audit_log)
        assert record["exceptionType"] == "RuntimeError"
        assert record["rootCauseType"] == "KeyError"
        assert record["rootCauseMessage"] == "'inner'"

    def test_exception_message_is_escaped(self, aspect, audit_log):
        def fail():
            raise ValueError("line1\nline2\rfake=entry")

        with pytest.raises(ValueError):
            aspect.wrap(fail, name="svc.inject")()

        [record] = _audit_events(audit_log)
        assert record["exceptionMessage"] == "line1\\nline2\\rfake=entry"

    def test_empty_exception_message(self, aspect, audit_log):
        def fail():
            raise ValueError()

        with pytest.raises(ValueError):
            aspect.wrap(fail, name="svc.empty")()
        assert _audit_events(audit_log)[0]["exceptionMessage"] == "n/a"

    async def test_async_functions_are_awaited(self, aspect, audit_log):
        async def fetch():
            return "done"

        wrapped = aspect.wrap(fetch, name="svc.fetch")
        assert await wrapped() == "done"
        assert _audit_events(audit_log)[0]["outcome"] == "SUCCESS"

    async def test_async_failure(self, aspect, audit_log):
        async def fetch():
            raise LookupError("missing")

        with pytest.raises(LookupError):
            await aspect.wrap(fetch, name="svc.fetch")()
        assert _audit_events(audit_log)[0]["outcome"] == "FAILURE"


class TestContext:
    """Principal and request metadata come from the bound security context."""

    def test_anonymous_non_web_call(self, aspect, audit_log):
        aspect.wrap(lambda: None, name="job.run")()
        [record] = _audit_events(audit_log)
        assert record["principal"] == "anonymous"
        assert record["roles"] == []
        assert record["contextType"] == "NON_WEB"
        assert "remoteAddr" not in record

    def test_web_call_with_principal(self, aspect, audit_log):
        context = _authenticated("user", "write", "ROLE_USER", "read")
        scope = RequestScope(
            remote_addr="192.168.1.123",
            request_uri="/api/secure/data",
            user_agent="x" * 300,
        )
        with bind_security_context(context, scope):
            aspect.wrap(lambda: None, name="api.secure_data")()

        [record] = _audit_events(audit_log)
        assert record["principal"] == "user"
        assert record["roles"] == ["ROLE_USER", "read", "write"]
        assert record["contextType"] == "WEB"
        assert record["remoteAddr"] == "192.168.1.XXX"
        assert record["requestUri"] == "/api/secure/data"
        assert record["userAgent"] == "x" * 253 + "..."

    def test_context_is_unbound_after_block(self):
        with bind_security_context(_authenticated("user")):
            assert build_audit_record("m", 0, "SUCCESS").principal == "user"
        assert build_audit_record("m", 0, "SUCCESS").principal == "anonymous"


class BrokenLogger:
    def info(self, event, **fields):
        raise RuntimeError("sink down")


class TestSinkFailures:
    def test_logging_failure_does_not_fail_the_call(self, metrics):
        aspect = AuditAspect(metrics, audit_logger=BrokenLogger())
        assert aspect.wrap(lambda: "ok", name="svc.ok")() == "ok"
        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.ok", "outcome": "SUCCESS"}
        ) == 1

    def test_logging_failure_keeps_original_exception(self, metrics):
        aspect = AuditAspect(metrics, audit_logger=BrokenLogger())

        def fail():
            raise ValueError("original")

        with pytest.raises(ValueError, match="original"):
            aspect.wrap(fail, name="svc.fail")()


class TestMeterCache:
    def test_meters_cached_per_method_and_outcome(self, aspect, metrics):
        ok = aspect.wrap(lambda: None, name="svc.a")
        ok()
        ok()

        def fail():
            raise ValueError("x")

        with pytest.raises(ValueError):
            aspect.wrap(fail, name="svc.a")()

        assert aspect.cached_meter_keys == {("svc.a", "SUCCESS"), ("svc.a", "FAILURE")}
        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.a", "outcome": "SUCCESS"}
        ) == 2

    def test_concurrent_calls_count_every_event(self, aspect, metrics):
        wrapped = aspect.wrap(lambda: None, name="svc.concurrent")
        threads = [threading.Thread(target=lambda: [wrapped() for _ in range(50)]) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert metrics.sample(
            "app_audit_events_total", {"method": "svc.concurrent", "outcome": "SUCCESS"}
        ) == 400
        assert aspect.cached_meter_keys == {("svc.concurrent", "SUCCESS")}


class TestOperationName:
    def test_default_name_uses_module_and_qualname(self, aspect, audit_log):
        def handler():
            return None

        aspect.auditable()(handler)()
        assert _audit_events(audit_log)[0]["method"] == "test_audit_aspect.handler"

    def test_operation_name_strips_locals(self):
        def outer():
            def inner():
                return None

            return inner

        assert operation_name(outer()) == "test_audit_aspect.inner"
