"""Tests for the self-correction loop and the batched extraction pool."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import ServiceError
from rigforge.engine.extraction import batched, refine_unit, run_extraction_pool
from rigforge.models.geometry import CircleShape, FreeformOutline
from rigforge.models.record import ConversationalInput
from tests.conftest import (
    ACCEPT,
    CAR_PNG,
    REJECT,
    FakeReasoningService,
    FakeSegmentationService,
    Seq,
    circle_payload,
    disk_mask,
    make_unit,
)


def _refine(service, unit, config=None, stage_input=None, segmentation=None):
    call_log = []
    result, trace = asyncio.run(
        refine_unit(service, CAR_PNG, unit, call_log, config, stage_input, segmentation)
    )
    return result, trace, call_log


class TestRefineUnit:
    def test_converges_first_round(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")})
        result, trace, call_log = _refine(service, make_unit("wheel"))

        assert result.id == "wheel"
        assert isinstance(result.shape, CircleShape)
        assert trace.rounds == 1
        assert trace.converged
        assert [e.step for e in trace.events] == ["propose", "critique"]
        assert trace.events[1].verdict == "acceptable"
        assert len(call_log) == 2
        assert len(service.calls("extraction")) == 1
        assert len(service.calls("critique")) == 1

    def test_bounded_at_three_rounds(self):
        service = FakeReasoningService(
            extraction={"wheel": circle_payload("wheel", confidence=0.4)},
            critique=REJECT,
        )
        result, trace, call_log = _refine(service, make_unit("wheel"))

        assert trace.rounds == 3
        assert not trace.converged
        assert len(trace.events) == 6
        assert result.confidence == 0.4
        assert len(service.calls("extraction")) == 3
        assert len(service.calls("critique")) == 3
        assert len(call_log) == 6

    def test_round_limit_follows_config(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")}, critique=REJECT)
        _, trace, _ = _refine(service, make_unit("wheel"), PipelineConfig(max_refinement_rounds=1))
        assert trace.rounds == 1
        assert not trace.converged

    def test_zero_round_limit_still_runs_once(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")}, critique=REJECT)
        result, trace, _ = _refine(service, make_unit("wheel"), PipelineConfig(max_refinement_rounds=0))
        assert result.id == "wheel"
        assert trace.rounds == 1
        assert len(service.calls("extraction")) == 1

    def test_second_round_returns_revised_candidate(self):
        service = FakeReasoningService(
            extraction={"wheel": Seq(circle_payload("wheel", r=0.1), circle_payload("wheel", r=0.2))},
            critique=Seq(REJECT, ACCEPT),
        )
        result, trace, _ = _refine(service, make_unit("wheel"))
        assert result.shape.radius == pytest.approx(0.2)
        assert trace.rounds == 2
        assert trace.converged

    def test_feedback_reaches_next_proposal(self):
        service = FakeReasoningService(
            extraction={"wheel": circle_payload("wheel")},
            critique=Seq(REJECT, ACCEPT),
        )
        _refine(service, make_unit("wheel"))

        first, second = service.calls("extraction")
        assert len(first.images) == 1
        assert len(second.images) == 2
        assert REJECT["feedback"] in second.prompt
        assert "Your previous candidate" in second.prompt
        assert "Your previous candidate" not in first.prompt

    def test_critique_sees_composite(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")})
        _refine(service, make_unit("wheel"))
        (critique,) = service.calls("critique")
        assert len(critique.images) == 1
        assert critique.images[0] != CAR_PNG

    def test_conversational_input_used_in_first_round(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")})
        stage_input = ConversationalInput(prior_output='{"id":"wheel"}', feedback="make it bigger")
        _refine(service, make_unit("wheel"), stage_input=stage_input)
        (request,) = service.calls("extraction")
        assert "make it bigger" in request.prompt

    def test_failed_proposal_propagates(self):
        service = FakeReasoningService(extraction={"wheel": ServiceError("boom", "extraction", "wheel")})
        with pytest.raises(ServiceError, match="boom"):
            _refine(service, make_unit("wheel"))

    def test_failed_critique_propagates(self):
        service = FakeReasoningService(
            extraction={"wheel": circle_payload("wheel")},
            critique=RuntimeError("critic offline"),
        )
        with pytest.raises(ServiceError, match="critic offline"):
            _refine(service, make_unit("wheel"))

    def test_unparseable_response_fails_unit(self):
        service = FakeReasoningService(extraction={"wheel": "I could not find the part."})
        with pytest.raises(ServiceError):
            _refine(service, make_unit("wheel"))


class TestSegmentationPath:
    def test_mask_replaces_first_proposal(self):
        service = FakeReasoningService(extraction={})
        segmentation = FakeSegmentationService(disk_mask())
        result, trace, call_log = _refine(
            service, make_unit("cloud", "mask_segmentation"), segmentation=segmentation
        )

        assert isinstance(result.shape, FreeformOutline)
        assert segmentation.calls == 1
        assert service.calls("extraction") == []
        assert trace.events[0].prompt_digest is None
        assert len(call_log) == 2
        assert result.confidence == pytest.approx(1.0)

    def test_unusable_mask_falls_back(self):
        service = FakeReasoningService(extraction={"cloud": circle_payload("cloud")})
        segmentation = FakeSegmentationService(np.zeros((64, 64), dtype=np.uint8))
        result, _, call_log = _refine(
            service, make_unit("cloud", "mask_segmentation"), segmentation=segmentation
        )
        assert isinstance(result.shape, CircleShape)
        assert len(service.calls("extraction")) == 1
        assert len(call_log) == 3

    def test_segmentation_failure_falls_back(self):
        class Broken:
            async def segment(self, image, rough_bbox):
                raise RuntimeError("gpu on fire")

        service = FakeReasoningService(extraction={"cloud": circle_payload("cloud")})
        result, _, call_log = _refine(service, make_unit("cloud", "mask_segmentation"), segmentation=Broken())
        assert isinstance(result.shape, CircleShape)
        assert call_log[0].ok is False

    def test_primitive_units_skip_segmentation(self):
        service = FakeReasoningService(extraction={"wheel": circle_payload("wheel")})
        segmentation = FakeSegmentationService(disk_mask())
        _refine(service, make_unit("wheel"), segmentation=segmentation)
        assert segmentation.calls == 0

    def test_later_rounds_use_reasoning_service(self):
        service = FakeReasoningService(
            extraction={"cloud": circle_payload("cloud")},
            critique=Seq(REJECT, ACCEPT),
        )
        segmentation = FakeSegmentationService(disk_mask())
        result, trace, _ = _refine(service, make_unit("cloud", "mask_segmentation"), segmentation=segmentation)
        assert segmentation.calls == 1
        assert len(service.calls("extraction")) == 1
        assert isinstance(result.shape, CircleShape)
        assert trace.rounds == 2


def _units(n):
    return [make_unit(f"u{i:02d}") for i in range(n)]


def _pool_service(units, **overrides):
    extraction = {u.id: circle_payload(u.id) for u in units}
    extraction.update(overrides)
    return FakeReasoningService(extraction=extraction)


class TestBatched:
    def test_sizes(self):
        assert [len(b) for b in batched(_units(20), 8)] == [8, 8, 4]

    def test_zero_size_treated_as_one(self):
        assert len(batched(_units(3), 0)) == 3

    def test_empty(self):
        assert batched([], 8) == []


class TestExtractionPool:
    def test_progress_reports_each_batch(self):
        units = _units(20)
        progress = []
        asyncio.run(
            run_extraction_pool(
                _pool_service(units), CAR_PNG, units, [], on_progress=lambda *a: progress.append(a)
            )
        )
        assert progress == [(1, 3, 1, 8, 20), (2, 3, 9, 16, 20), (3, 3, 17, 20, 20)]

    def test_concurrency_bounded_by_batch_size(self):
        units = _units(20)
        service = _pool_service(units)
        asyncio.run(run_extraction_pool(service, CAR_PNG, units, []))
        assert service.max_in_flight == 8

    def test_batches_settle_in_order(self):
        units = _units(20)
        service = _pool_service(units)
        asyncio.run(run_extraction_pool(service, CAR_PNG, units, []))

        order = [r.unit_id for r in service.requests]
        batch_of = {u.id: i // 8 for i, u in enumerate(units)}
        batches_seen = [batch_of[uid] for uid in order]
        assert batches_seen == sorted(batches_seen)

    def test_results_in_manifest_order(self):
        units = _units(12)
        partition = asyncio.run(run_extraction_pool(_pool_service(units), CAR_PNG, units, []))
        assert [r.id for r in partition.results] == [u.id for u in units]
        assert set(partition.traces) == {u.id for u in units}
        assert partition.errors == []

    def test_failure_is_isolated(self):
        units = _units(10)
        service = _pool_service(units, u03=ServiceError("extraction: No response", "extraction", "u03"))
        call_log = []
        partition = asyncio.run(run_extraction_pool(service, CAR_PNG, units, call_log))

        assert [e.id for e in partition.errors] == ["u03"]
        assert partition.errors[0].message == "extraction: No response"
        assert partition.errors[0].retry_count == 0
        assert "u03" not in partition.traces
        assert [r.id for r in partition.results] == [u.id for u in units if u.id != "u03"]

    def test_call_log_matches_requests(self):
        units = _units(10)
        service = _pool_service(units, u05=RuntimeError("timeout"))
        call_log = []
        asyncio.run(run_extraction_pool(service, CAR_PNG, units, call_log))
        assert len(call_log) == len(service.requests)
        assert [c.ok for c in call_log].count(False) == 1

    def test_per_unit_inputs(self):
        units = _units(3)
        service = _pool_service(units)
        inputs = {"u01": ConversationalInput(prior_output="{}", feedback="shift it right")}
        asyncio.run(run_extraction_pool(service, CAR_PNG, units, [], inputs=inputs))
        assert "shift it right" in service.calls("extraction", "u01")[0].prompt
        assert "shift it right" not in service.calls("extraction", "u00")[0].prompt

    def test_custom_batch_size(self):
        units = _units(5)
        progress = []
        asyncio.run(
            run_extraction_pool(
                _pool_service(units),
                CAR_PNG,
                units,
                [],
                PipelineConfig(batch_size=2),
                on_progress=lambda *a: progress.append(a),
            )
        )
        assert [p[:2] for p in progress] == [(1, 3), (2, 3), (3, 3)]

    def test_empty_manifest(self):
        partition = asyncio.run(run_extraction_pool(FakeReasoningService(), CAR_PNG, [], []))
        assert partition.results == []
        assert partition.errors == []
