"""
Tests for the price-drop fulfillment matcher
"""
import threading
from decimal import Decimal
from unittest.mock import Mock

import pytest

from core.exceptions import (
    CollaboratorUnavailableError,
    InvalidOfferError,
    InvalidPriceError,
    OrderStoreError,
    ProductNotFoundError,
)
from core.models import AttemptOutcome, CaptureResult, DiscountResult, OrderStatus, PaymentStatus
from orchestrator.fulfillment import FulfillmentMatcher


class TestSelection:
    """Which orders a price drop picks up"""

    def test_only_orders_with_target_at_or_above_new_price(self, matcher, make_order, order_store):
        low = make_order(80)
        high = make_order(90)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert [a.order_id for a in report.attempts] == [high.id]
        assert order_store.get_order(high.id).status == OrderStatus.FULFILLED
        assert order_store.get_order(low.id).status == OrderStatus.MONITORING

    def test_target_equal_to_new_price_is_eligible(self, matcher, make_order):
        order = make_order("85.00")

        report = matcher.match_and_fulfill("prod-1", Decimal("85"))

        assert report.fulfilled_count == 1
        assert report.attempts[0].order_id == order.id

    def test_no_orders_gives_empty_report(self, matcher, product):
        report = matcher.match_and_fulfill("prod-1", "50")

        assert report.attempts == []
        assert report.to_dict()["fulfilledCount"] == 0

    def test_price_finer_than_currency_is_not_rounded_down(self, matcher, make_order, order_store, discounts):
        order = make_order("89.99")

        report = matcher.match_and_fulfill("prod-1", "89.994")

        assert report.attempts == []
        assert discounts.calls == []
        assert order_store.get_order(order.id).status == OrderStatus.MONITORING

    def test_offer_finer_than_currency_is_not_rounded_down(self, matcher, make_order):
        make_order("89.99")

        report = matcher.push_offer("prod-1", "89.991")

        assert report.attempts == []


class TestValidation:
    """Inputs are rejected before anything is mutated"""

    @pytest.mark.parametrize("bad", ["-1", "abc", "NaN", "Infinity", None, True])
    def test_invalid_price(self, matcher, make_order, order_store, payments, bad):
        order = make_order(90)

        with pytest.raises(InvalidPriceError):
            matcher.match_and_fulfill("prod-1", bad)

        assert order_store.get_order(order.id).status == OrderStatus.MONITORING
        assert payments.calls == []

    def test_unknown_product(self, matcher, product):
        with pytest.raises(ProductNotFoundError):
            matcher.match_and_fulfill("nope", "10")

    def test_product_store_failure_is_collaborator_unavailable(self, order_store, payments, discounts, sink):
        products = Mock()
        products.get_product.side_effect = OrderStoreError("disk I/O error")
        matcher = FulfillmentMatcher(order_store, products, payments, discounts, sink)

        with pytest.raises(CollaboratorUnavailableError):
            matcher.match_and_fulfill("prod-1", "10")

    def test_selection_failure_is_collaborator_unavailable(self, product_store, product, payments, discounts, sink):
        orders = Mock()
        orders.find_monitoring_orders.side_effect = OrderStoreError("database is locked")
        matcher = FulfillmentMatcher(orders, product_store, payments, discounts, sink)

        with pytest.raises(CollaboratorUnavailableError):
            matcher.match_and_fulfill("prod-1", "10")


class TestEscrowModel:
    """Orders holding a manual-capture payment"""

    def test_capture_success_records_fulfillment(self, matcher, make_order, order_store, payments, sink):
        order = make_order(90, escrow_reference="pi_1")

        report = matcher.match_and_fulfill("prod-1", "85")

        attempt = report.attempts[0]
        assert attempt.outcome == AttemptOutcome.FULFILLED
        assert attempt.side_effects[:2] == ["transitioned", "captured"]
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.FULFILLED
        assert stored.payment_status == PaymentStatus.CAPTURED
        assert stored.fulfilled_price == Decimal("85.00")
        assert stored.fulfilled_at is not None
        assert stored.escrow_reference == "pi_1"
        assert payments.calls[0]["escrow_reference"] == "pi_1"
        assert payments.calls[0]["amount"] == Decimal("85")

    def test_capture_failure_rolls_back(self, matcher, make_order, order_store, payments):
        order = make_order(90, escrow_reference="pi_1")
        payments.configure(should_succeed=False, failure_reason="card_declined")

        report = matcher.match_and_fulfill("prod-1", "85")

        attempt = report.attempts[0]
        assert attempt.outcome == AttemptOutcome.FAILED
        assert attempt.reason == "payment_capture_failed: card_declined"
        assert "reverted" in attempt.side_effects
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.MONITORING
        assert stored.payment_status == PaymentStatus.AUTHORIZED
        assert stored.fulfilled_at is None

    def test_failed_order_is_retried_on_next_price(self, matcher, make_order, order_store, payments):
        order = make_order(90, escrow_reference="pi_1")
        payments.configure(should_succeed=False)
        matcher.match_and_fulfill("prod-1", "85")

        payments.configure(should_succeed=True)
        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.fulfilled_count == 1
        assert order_store.get_order(order.id).status == OrderStatus.FULFILLED

    def test_partial_success_when_second_capture_raises(self, order_store, product_store, make_order, discounts, sink):
        orders = [make_order(90, escrow_reference=f"pi_{i}") for i in range(3)]
        payments = Mock()
        payments.capture.side_effect = [
            CaptureResult(success=True, reference="pi_0"),
            TimeoutError("gateway timed out"),
            CaptureResult(success=True, reference="pi_2"),
        ]
        matcher = FulfillmentMatcher(order_store, product_store, payments, discounts, sink)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.fulfilled_count == 2
        assert report.failed_count == 1
        outcomes = {a.order_id: a.outcome for a in report.attempts}
        assert outcomes[orders[0].id] == AttemptOutcome.FULFILLED
        assert outcomes[orders[1].id] == AttemptOutcome.FAILED
        assert outcomes[orders[2].id] == AttemptOutcome.FULFILLED
        assert order_store.get_order(orders[1].id).status == OrderStatus.MONITORING

    def test_record_failure_after_capture_keeps_order_fulfilled(self, matcher, make_order, order_store, payments, monkeypatch):
        order = make_order(90, escrow_reference="pi_1")

        def locked(*args, **kwargs):
            raise OrderStoreError("database is locked")

        monkeypatch.setattr(order_store, "record_fulfillment", locked)

        report = matcher.match_and_fulfill("prod-1", "85")

        attempt = report.attempts[0]
        assert attempt.outcome == AttemptOutcome.FULFILLED
        assert attempt.reason == "record_failed: database is locked"
        assert attempt.side_effects[:3] == ["transitioned", "captured", "record_failed"]
        assert "notified:order_fulfilled" in attempt.side_effects
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.FULFILLED
        assert stored.payment_status == PaymentStatus.CAPTURED

        # Captured orders are never selected again
        assert matcher.match_and_fulfill("prod-1", "85").attempts == []
        assert len([c for c in payments.calls if c["method"] == "capture"]) == 1

    def test_revert_failure_marks_payment_failed(self, matcher, make_order, order_store, payments, monkeypatch):
        order = make_order(90, escrow_reference="pi_1")
        payments.configure(should_succeed=False)

        def locked(*args, **kwargs):
            raise OrderStoreError("database is locked")

        monkeypatch.setattr(order_store, "revert_transition", locked)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].outcome == AttemptOutcome.FAILED
        assert "reverted" not in report.attempts[0].side_effects
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.FULFILLED
        assert stored.payment_status == PaymentStatus.FAILED


class TestDiscountModel:
    """Orders without escrow get a storefront discount code"""

    def test_code_issued(self, matcher, make_order, order_store, discounts):
        order = make_order(90)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].side_effects[:2] == ["transitioned", "code_issued"]
        stored = order_store.get_order(order.id)
        assert stored.payment_status == PaymentStatus.CODE_ISSUED
        assert stored.discount_code.startswith("FAKE-")
        assert discounts.calls == [
            {"product_id": "prod-1", "customer_id": order.customer_id, "target_price": Decimal("90.00")}
        ]

    def test_issue_failure_rolls_back(self, matcher, make_order, order_store, discounts):
        order = make_order(90)
        discounts.configure(should_succeed=False, failure_reason="rate limited")

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].reason == "discount_issuance_failed: rate limited"
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.MONITORING
        assert stored.payment_status == PaymentStatus.NONE

    def test_issue_exception_rolls_back(self, order_store, product_store, make_order, payments, sink):
        order = make_order(90)
        discounts = Mock()
        discounts.issue.side_effect = ConnectionError("reset by peer")
        matcher = FulfillmentMatcher(order_store, product_store, payments, discounts, sink)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].reason.startswith("discount_issuance_failed: ")
        assert order_store.get_order(order.id).status == OrderStatus.MONITORING

    def test_no_code_when_price_already_meets_target(self, order_store, product_store, make_order, payments, sink):
        order = make_order(90)
        discounts = Mock()
        discounts.issue.return_value = DiscountResult(success=True, code=None, platform="shopify")
        matcher = FulfillmentMatcher(order_store, product_store, payments, discounts, sink)

        report = matcher.match_and_fulfill("prod-1", "85")

        attempt = report.attempts[0]
        assert attempt.outcome == AttemptOutcome.FULFILLED
        assert attempt.reason == "no_code_needed"
        assert attempt.side_effects[:2] == ["transitioned", "no_code_needed"]
        stored = order_store.get_order(order.id)
        assert stored.status == OrderStatus.FULFILLED
        assert stored.payment_status == PaymentStatus.NONE
        assert stored.discount_code is None

    def test_record_failure_without_code_reverts(self, order_store, product_store, make_order, payments, sink, monkeypatch):
        order = make_order(90)
        discounts = Mock()
        discounts.issue.return_value = DiscountResult(success=True, code=None, platform="shopify")
        matcher = FulfillmentMatcher(order_store, product_store, payments, discounts, sink)

        def locked(*args, **kwargs):
            raise OrderStoreError("database is locked")

        monkeypatch.setattr(order_store, "record_fulfillment", locked)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].outcome == AttemptOutcome.FAILED
        assert "reverted" in report.attempts[0].side_effects
        assert order_store.get_order(order.id).status == OrderStatus.MONITORING


class TestNotifications:

    def test_customer_and_merchant_notified(self, matcher, make_order, sink):
        order = make_order(90)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert "notified:order_fulfilled" in report.attempts[0].side_effects
        assert "notified:demand_realized" in report.attempts[0].side_effects
        [customer_msg] = sink.list_for_user(order.customer_id)
        assert customer_msg["kind"] == "order_fulfilled"
        assert customer_msg["payload"]["fulfilledPrice"] == "85"
        [merchant_msg] = sink.list_for_user(order.merchant_id)
        assert merchant_msg["kind"] == "demand_realized"

    def test_notification_failure_does_not_change_outcome(self, order_store, product_store, make_order, payments, discounts):
        order = make_order(90)
        sink = Mock()
        sink.enqueue.side_effect = RuntimeError("queue down")
        matcher = FulfillmentMatcher(order_store, product_store, payments, discounts, sink)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.fulfilled_count == 1
        assert order_store.get_order(order.id).status == OrderStatus.FULFILLED


class TestRetrySafety:
    """Repeated and concurrent passes fulfill each order once"""

    def test_second_call_fulfills_nothing(self, matcher, make_order, payments):
        make_order(90, escrow_reference="pi_1")

        first = matcher.match_and_fulfill("prod-1", "85")
        second = matcher.match_and_fulfill("prod-1", "85")

        assert first.fulfilled_count == 1
        assert second.fulfilled_count == 0
        assert len([c for c in payments.calls if c["method"] == "capture"]) == 1

    def test_claimed_order_is_skipped(self, order_store, product_store, make_order, payments, discounts, sink):
        order = make_order(90)
        stale = Mock(wraps=order_store)
        # Selection returns the order, but another pass already claimed it
        stale.find_monitoring_orders.return_value = [order]
        order_store.try_transition_to_fulfilled(order.id)
        matcher = FulfillmentMatcher(stale, product_store, payments, discounts, sink)

        report = matcher.match_and_fulfill("prod-1", "85")

        assert report.attempts[0].outcome == AttemptOutcome.SKIPPED
        assert report.attempts[0].reason == "already_handled"
        assert discounts.calls == []

    def test_concurrent_transition_has_one_winner(self, order_store, make_order):
        order = make_order(90)
        barrier = threading.Barrier(2)
        results = []

        def claim():
            barrier.wait()
            results.append(order_store.try_transition_to_fulfilled(order.id))

        threads = [threading.Thread(target=claim) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == [False, True]

    def test_concurrent_passes_capture_once(self, matcher, make_order, payments):
        make_order(90, escrow_reference="pi_1")
        barrier = threading.Barrier(2)
        reports = []

        def run():
            barrier.wait()
            reports.append(matcher.match_and_fulfill("prod-1", "85"))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(r.fulfilled_count for r in reports) == 1
        assert len([c for c in payments.calls if c["method"] == "capture"]) == 1


class TestPushOffer:
    """Merchant-initiated offers below the listed price"""

    def test_offer_fulfills_eligible_orders_without_changing_price(self, matcher, make_order, product_store, discounts):
        eligible = make_order(90)
        make_order(70)

        report = matcher.push_offer("prod-1", "88")

        assert [a.order_id for a in report.attempts] == [eligible.id]
        assert report.fulfilled_count == 1
        assert discounts.calls[0]["target_price"] == Decimal("88")
        assert product_store.get_product("prod-1").current_price == Decimal("100.00")

    def test_offer_restricted_to_order_ids(self, matcher, make_order):
        first = make_order(95)
        make_order(95)

        report = matcher.push_offer("prod-1", "90", order_ids=[first.id])

        assert [a.order_id for a in report.attempts] == [first.id]

    def test_offer_must_be_below_current_price(self, matcher, product):
        with pytest.raises(InvalidOfferError):
            matcher.push_offer("prod-1", "100.00")
