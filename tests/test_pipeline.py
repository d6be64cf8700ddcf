from datetime import datetime

import pytest

from marketing_data.etl import (
    Event,
    EventBus,
    EtlPipeline,
    FormatTransformer,
    PipelineBusyError,
    PipelineState,
    RawRecord,
    RecordValidator,
)

TS = datetime(2024, 1, 15, 2, 0)


class FakeStore:
    def __init__(self, raw, fail_on_save=False):
        self.raw = raw
        self.saved = None
        self.fail_on_save = fail_on_save

    def get_pending_raw_records(self):
        return list(self.raw)

    def save_normalized_records(self, records):
        if self.fail_on_save:
            raise RuntimeError("database unavailable")
        self.saved = list(records)
        return len(records)


class CountingValidator(RecordValidator):
    calls = 0

    def validate(self, record):
        self.calls += 1
        return super().validate(record)


class CountingTransformer(FormatTransformer):
    calls = 0

    def transform(self, record):
        self.calls += 1
        return super().transform(record)


def _capture(bus):
    seen = []
    bus.subscribe(Event.LOAD_COMPLETED, seen.append)
    return seen


def _three_raw():
    return [
        RawRecord('{"id": "A", "type": "sale", "value": 10}', TS, "api", id=1),
        RawRecord("", TS, "api", id=2),                      # fails validation
        RawRecord("id,category,value\nB,lead,3\n", TS, "csv", id=3),
    ]


def test_one_invalid_of_three_yields_two_records():
    v, t = CountingValidator(), CountingTransformer()
    store = FakeStore(_three_raw())
    p = EtlPipeline(store, EventBus(), validator=v, transformer=t)

    out = p.run(run_id=1)

    assert v.calls == 3
    assert t.calls == 2
    assert [r.system_id for r in store.saved] == ["A", "B"]
    assert out.received == 3 and out.valid == 2
    # every output record traces to a validated raw record
    assert {r.raw_record_id for r in store.saved} == {1, 3}

def test_success_publishes_load_completed_once():
    bus = EventBus()
    seen = _capture(bus)
    EtlPipeline(FakeStore(_three_raw()), bus).run(run_id=42)
    assert len(seen) == 1
    assert seen[0].run_id == 42
    assert seen[0].records == 2
    assert bus.stats()["LoadCompleted"]["published"] == 1

def test_failure_propagates_and_publishes_nothing():
    bus = EventBus()
    seen = _capture(bus)
    p = EtlPipeline(FakeStore(_three_raw(), fail_on_save=True), bus)
    with pytest.raises(RuntimeError, match="database unavailable"):
        p.run()
    assert seen == []
    assert bus.stats()["LoadCompleted"]["published"] == 0
    assert p.state is PipelineState.IDLE

def test_output_is_enriched_and_deduplicated():
    raw = [
        RawRecord('{"id": "A", "value": 1}', TS, "api", id=1),
        RawRecord('{"id": "A", "value": 2}', TS, "api", id=2),
        RawRecord('{"id": "B", "value": 3}', TS, "api", id=3),
    ]
    store = FakeStore(raw)
    EtlPipeline(store, EventBus()).run()
    assert [(r.system_id, r.value) for r in store.saved] == [("A", 1.0), ("B", 3.0)]
    assert all(r.content.endswith(" | enriched") for r in store.saved)

def test_malformed_payload_is_kept_with_warning():
    raw = [RawRecord('{"id": "A", "value": ', TS, "api", id=9)]
    store = FakeStore(raw)
    out = EtlPipeline(store, EventBus()).run()
    assert len(store.saved) == 1
    assert store.saved[0].system_id == "GENERIC-9"
    assert [w.raw_record_id for w in out.warnings] == [9]

def test_state_is_running_during_run_and_busy_rejects_reentry():
    observed = []

    class PeekStore(FakeStore):
        def get_pending_raw_records(self):
            observed.append(pipeline.state)
            with pytest.raises(PipelineBusyError):
                pipeline.run()
            return []

    pipeline = EtlPipeline(PeekStore([]), EventBus())
    pipeline.run()
    assert observed == [PipelineState.RUNNING]
    assert pipeline.state is PipelineState.IDLE

def test_empty_input_still_completes():
    bus = EventBus()
    seen = _capture(bus)
    store = FakeStore([])
    out = EtlPipeline(store, bus).run()
    assert store.saved == [] and out.records == []
    assert len(seen) == 1

def test_one_unparseable_record_does_not_sink_the_run():
    raw = [
        RawRecord('{"id": "A", "value": 5}', TS, "api", id=1),
        RawRecord('{"id": "B", "value": ' + "9" * 400 + "}", TS, "api", id=2),
        RawRecord("[" * 100000, TS, "api", id=3),
    ]
    bus = EventBus()
    seen = _capture(bus)
    store = FakeStore(raw)
    out = EtlPipeline(store, bus).run()
    assert [r.system_id for r in store.saved] == ["A", "B", "GENERIC-3"]
    assert [w.raw_record_id for w in out.warnings] == [3]
    assert len(seen) == 1
