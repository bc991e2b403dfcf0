"""Unit tests for the recording tracer and meter."""

from __future__ import annotations

import threading

from cluster_testbed.observability import RecordingMeter, RecordingTracer


class TestRecordingTracer:
    def test_spans_are_recorded_with_parent(self):
        tracer = RecordingTracer()

        parent = tracer.request_span("get")
        child = tracer.request_span("dispatch_to_server", parent=parent.context())
        child.set_attribute("db.instance", "default")
        child.add_event("retry")
        child.end()

        assert [s.name for s in tracer.spans] == ["get", "dispatch_to_server"]
        assert child.parent is parent
        assert child.attributes == {"db.instance": "default"}
        assert child.events == ["retry"]
        assert child.finished
        assert not parent.finished

    def test_spans_named_and_reset(self):
        tracer = RecordingTracer()
        tracer.request_span("get")
        tracer.request_span("upsert")
        tracer.request_span("get")

        assert len(tracer.spans_named("get")) == 2

        tracer.reset()

        assert tracer.spans == []

    def test_concurrent_spans(self):
        tracer = RecordingTracer()

        def worker():
            for _ in range(200):
                tracer.request_span("get").end()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(tracer.spans) == 1600


class TestRecordingMeter:
    def test_counter_per_tag_set(self):
        meter = RecordingMeter()

        meter.counter("requests", {"op": "get"}).increment_by(2)
        meter.counter("requests", {"op": "get"}).increment_by(1)
        meter.counter("requests", {"op": "upsert"}).increment_by(5)

        assert meter.counter_value("requests", {"op": "get"}) == 3
        assert meter.counter_value("requests", {"op": "upsert"}) == 5
        assert meter.counter_value("requests") == 0

    def test_tag_order_does_not_matter(self):
        meter = RecordingMeter()

        first = meter.counter("requests", {"a": "1", "b": "2"})
        second = meter.counter("requests", {"b": "2", "a": "1"})

        assert first is second

    def test_value_recorder(self):
        meter = RecordingMeter()

        recorder = meter.value_recorder("latency", {"op": "get"})
        recorder.record_value(1.5)
        recorder.record_value(2.0)

        assert meter.recorded_values("latency", {"op": "get"}) == [1.5, 2.0]
        assert meter.recorded_values("latency") == []

    def test_reset(self):
        meter = RecordingMeter()
        meter.counter("requests").increment_by(1)
        meter.value_recorder("latency").record_value(1.0)

        meter.reset()

        assert meter.counter_value("requests") == 0
        assert meter.recorded_values("latency") == []

    def test_concurrent_increments(self):
        meter = RecordingMeter()
        counter = meter.counter("requests")

        def worker():
            for _ in range(1000):
                counter.increment_by(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert meter.counter_value("requests") == 4000
