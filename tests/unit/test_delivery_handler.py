"""Unit tests for the delivery pipeline: ack discipline, requeue counter and retry ceiling."""
from __future__ import annotations

import asyncio
import json

import pytest

from delivery.app.application.delivery_service import DeliveryService
from delivery.app.constants import DELIVERY_OUTCOME
from delivery.app.domain.models import MessageDecodeError
from delivery.app.messaging.consumer import create_message_handler
from tests.fakes import CapturingQueue, FakeMessage, FakeSender

QUEUE = "engine"


def _handle(service: DeliveryService, msg: FakeMessage) -> None:
    asyncio.run(create_message_handler(service)(msg))  # type: ignore[arg-type]


def _texts(records, level: str) -> list[str]:
    return [r["message"] for r in records if r["level"].name == level]


def test_successful_delivery_acks_without_publishing(log_records):
    queue = CapturingQueue()
    sender = FakeSender(result=True)
    svc = DeliveryService(queue, sender, QUEUE)
    msg = FakeMessage({"id": 42})

    _handle(svc, msg)

    assert msg.resolutions == ["ack"]
    assert queue.published == []
    assert sender.sent == [{"id": 42}]
    delivered = [t for t in _texts(log_records, "INFO") if "delivered successfully" in t]
    assert len(delivered) == 1


def test_failed_delivery_requeues_with_iteration_one():
    queue = CapturingQueue()
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE)
    msg = FakeMessage({"id": 42})

    _handle(svc, msg)

    assert queue.published == [
        {"queue": QUEUE, "payload": {"id": 42, "iteration": 1}, "exchange": "", "delay_ms": 0}
    ]
    assert msg.resolutions == ["ack"]


def test_iteration_is_stripped_before_delivery():
    sender = FakeSender(result=False)
    queue = CapturingQueue()
    svc = DeliveryService(queue, sender, QUEUE)
    msg = FakeMessage({"id": 42, "name": "x", "iteration": 7})

    _handle(svc, msg)

    assert sender.sent == [{"id": 42, "name": "x"}]
    assert queue.published[0]["payload"] == {"id": 42, "name": "x", "iteration": 8}


def test_iteration_grows_by_one_per_requeue_cycle():
    queue = CapturingQueue()
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE, retry_limit=10)
    payload = {"id": 42, "tags": ["a", "b"]}

    seen = []
    for _ in range(4):
        _handle(svc, FakeMessage(payload))
        payload = queue.published[-1]["payload"]
        seen.append(payload["iteration"])

    assert seen == [1, 2, 3, 4]
    assert {k: v for k, v in payload.items() if k != "iteration"} == {"id": 42, "tags": ["a", "b"]}


def test_retry_ceiling_drops_task_and_acks(log_records):
    queue = CapturingQueue()
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE)
    msg = FakeMessage({"id": 42, "iteration": 86400})

    _handle(svc, msg)

    assert queue.published == []
    assert msg.resolutions == ["ack"]
    assert any("abandoned" in t for t in _texts(log_records, "INFO"))


def test_last_allowed_iteration_is_still_requeued():
    queue = CapturingQueue()
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE, retry_limit=3)

    _handle(svc, FakeMessage({"id": 1, "iteration": 2}))
    _handle(svc, FakeMessage({"id": 1, "iteration": 3}))

    assert [p["payload"]["iteration"] for p in queue.published] == [3]


def test_zero_retry_limit_never_republishes():
    queue = CapturingQueue()
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE, retry_limit=0)
    msg = FakeMessage({"id": 1})

    outcome = asyncio.run(svc.process_message(msg))  # type: ignore[arg-type]

    assert outcome == DELIVERY_OUTCOME.ABANDONED
    assert queue.published == []
    assert msg.acked is True


def test_invalid_body_is_nacked_without_delivery_attempt():
    queue = CapturingQueue()
    sender = FakeSender(result=True)
    svc = DeliveryService(queue, sender, QUEUE)
    msg = FakeMessage(body=b"\xff{not json")

    _handle(svc, msg)

    assert sender.sent == []
    assert queue.published == []
    assert msg.resolutions == ["nack"]
    assert msg.nack_requeue is False


@pytest.mark.parametrize("body", [b"[1, 2, 3]", b'"text"'])
def test_process_message_raises_decode_error_for_non_object_payloads(body):
    sender = FakeSender()
    svc = DeliveryService(CapturingQueue(), sender, QUEUE)
    msg = FakeMessage(body=body)

    with pytest.raises(MessageDecodeError):
        asyncio.run(svc.process_message(msg))  # type: ignore[arg-type]

    assert sender.sent == []
    assert msg.resolutions == []


@pytest.mark.parametrize("iteration", ["soon", -1, 2.5, True, "\u00b2", "\u0663"])
def test_unusable_counter_is_rejected_after_failed_send(iteration):
    queue = CapturingQueue()
    sender = FakeSender(result=False)
    msg = FakeMessage({"id": 1, "iteration": iteration})

    _handle(DeliveryService(queue, sender, QUEUE), msg)

    assert sender.sent == [{"id": 1}]
    assert queue.published == []
    assert msg.resolutions == ["nack"]
    assert msg.nack_requeue is False


@pytest.mark.parametrize("iteration", [1.0, "soon"])
def test_counter_is_not_read_before_successful_delivery(iteration):
    sender = FakeSender(result=True)
    msg = FakeMessage({"id": 1, "iteration": iteration})

    _handle(DeliveryService(CapturingQueue(), sender, QUEUE), msg)

    assert sender.sent == [{"id": 1}]
    assert msg.resolutions == ["ack"]


def test_integral_float_counter_is_requeued_as_integer():
    queue = CapturingQueue()
    _handle(DeliveryService(queue, FakeSender(result=False), QUEUE), FakeMessage({"id": 1, "iteration": 1.0}))

    assert queue.published[0]["payload"] == {"id": 1, "iteration": 2}


def test_receipt_is_logged_with_raw_body_even_when_malformed(log_records):
    svc = DeliveryService(CapturingQueue(), FakeSender(), QUEUE)

    _handle(svc, FakeMessage(body=b"{broken"))

    assert any('Received message data "{broken"' in t for t in _texts(log_records, "INFO"))
    assert _texts(log_records, "ERROR")


def test_publish_failure_is_nacked_for_redelivery(log_records):
    queue = CapturingQueue(raise_on_publish=ConnectionError("channel closed"))
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE)
    msg = FakeMessage({"id": 42})

    _handle(svc, msg)

    assert msg.resolutions == ["nack"]
    assert msg.nack_requeue is True
    errors = [r for r in log_records if r["level"].name == "ERROR"]
    assert len(errors) == 1
    assert '{"id": 42}' in errors[0]["message"]
    assert "channel closed" in errors[0]["message"]
    assert errors[0]["exception"] is not None


def test_ack_failure_falls_back_to_single_nack():
    svc = DeliveryService(CapturingQueue(), FakeSender(result=True), QUEUE)
    msg = FakeMessage({"id": 42})
    msg.raise_on_ack = ConnectionError("ack lost")

    _handle(svc, msg)

    assert msg.resolutions == ["nack"]


def test_nack_failure_is_logged_and_not_raised(log_records):
    queue = CapturingQueue(raise_on_publish=RuntimeError("boom"))
    svc = DeliveryService(queue, FakeSender(result=False), QUEUE)
    msg = FakeMessage({"id": 42})
    msg.raise_on_nack = ConnectionError("channel gone")

    _handle(svc, msg)

    assert msg.resolutions == []
    assert any(r["extra"].get("event") == "message_nack_failed" for r in log_records)


def test_every_outcome_resolves_the_handle_exactly_once():
    cases = [
        (FakeSender(True), CapturingQueue(), {"id": 1}),
        (FakeSender(False), CapturingQueue(), {"id": 1}),
        (FakeSender(False), CapturingQueue(), {"id": 1, "iteration": 86400}),
        (FakeSender(False), CapturingQueue(raise_on_publish=RuntimeError("x")), {"id": 1}),
    ]
    for sender, queue, payload in cases:
        msg = FakeMessage(payload)
        _handle(DeliveryService(queue, sender, QUEUE), msg)
        assert len(msg.resolutions) == 1, payload


def test_requeue_uses_configured_delay_and_exchange():
    queue = CapturingQueue()
    svc = DeliveryService(
        queue,
        FakeSender(result=False),
        QUEUE,
        requeue_delay_ms=1000,
        requeue_exchange="delayed",
    )

    outcome = asyncio.run(svc.process_message(FakeMessage({"id": 5})))  # type: ignore[arg-type]

    assert outcome == DELIVERY_OUTCOME.REQUEUED
    assert queue.published[0]["delay_ms"] == 1000
    assert queue.published[0]["exchange"] == "delayed"
    assert json.loads(json.dumps(queue.published[0]["payload"])) == {"id": 5, "iteration": 1}
