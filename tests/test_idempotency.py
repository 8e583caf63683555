"""Tests for the stage-local idempotency guard."""

import threading

from fulfillment_service.idempotency import IdempotencyGuard


def test_claim_is_true_only_once():
    guard = IdempotencyGuard()
    assert guard.claim("order-1") is True
    assert guard.claim("order-1") is False
    assert "order-1" in guard


def test_release_allows_a_new_claim():
    guard = IdempotencyGuard()
    guard.claim("order-1")
    guard.release("order-1")
    assert guard.claim("order-1") is True


def test_oldest_keys_are_evicted():
    guard = IdempotencyGuard(max_keys=2)
    for key in ("a", "b", "c"):
        guard.claim(key)

    assert len(guard) == 2
    assert "a" not in guard
    assert guard.claim("a") is True


def test_concurrent_claims_admit_a_single_winner():
    guard = IdempotencyGuard()
    results = []
    barrier = threading.Barrier(8)

    def claim():
        barrier.wait()
        results.append(guard.claim("order-1"))

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
