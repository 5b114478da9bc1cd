"""Tests for subscription sampling and condition filters."""

import pytest

from eventrelay.exceptions import ValidationError
from eventrelay.filters import (
    PredicateEvaluator,
    SimpleConditionEvaluator,
    condition_admits,
    sample_admits,
)


class TestSampling:
    """Tests for deterministic sampling."""

    def test_full_and_empty_rates(self):
        assert sample_admits(None, "evt_1", "whk_1")
        assert sample_admits(1.0, "evt_1", "whk_1")
        assert not sample_admits(0.0, "evt_1", "whk_1")

    def test_deterministic_per_pair(self):
        """The same event and subscription always get the same decision."""
        decisions = {sample_admits(0.5, "evt_42", "whk_a") for _ in range(20)}
        assert len(decisions) == 1

    def test_rate_is_roughly_honoured(self):
        admitted = sum(sample_admits(0.25, f"evt_{i}", "whk_a") for i in range(4000))
        assert 800 < admitted < 1200


class TestSimpleConditionEvaluator:
    """Tests for the default condition language."""

    @pytest.fixture
    def evaluator(self):
        return SimpleConditionEvaluator()

    @pytest.fixture
    def payload(self):
        return {
            "amount": 1500,
            "currency": "usd",
            "status": "open",
            "customer": {"vip": True, "tier": "gold"},
            "lines": [{"sku": "A1"}],
            "archived": False,
        }

    @pytest.mark.parametrize(
        "expression",
        [
            "amount >= 1000",
            'currency == "usd"',
            "currency == 'usd'",
            "status != 'draft'",
            "customer.vip",
            "customer.tier == 'gold' and amount > 100",
            "lines.0.sku == 'A1'",
            "not archived",
            "missing != 1",
        ],
    )
    def test_true_conditions(self, evaluator, payload, expression):
        assert evaluator.evaluate(expression, payload)

    @pytest.mark.parametrize(
        "expression",
        [
            "amount < 1000",
            "currency == 'eur'",
            "archived",
            "not customer.vip",
            "missing == 1",
            "missing",
            "amount > 'text'",
            "customer.tier == 'gold' and amount > 5000",
        ],
    )
    def test_false_conditions(self, evaluator, payload, expression):
        assert not evaluator.evaluate(expression, payload)

    @pytest.mark.parametrize("expression", ["amount >=", "== 5", "amount == {bad", "a and"])
    def test_validate_rejects_garbage(self, evaluator, expression):
        with pytest.raises(ValidationError):
            evaluator.validate(expression)


class TestConditionAdmits:
    def test_no_condition_admits(self):
        assert condition_admits(SimpleConditionEvaluator(), None, {})
        assert condition_admits(SimpleConditionEvaluator(), "", {})

    def test_evaluation_error_drops_event(self):
        """A condition that cannot be evaluated is treated as a non-match."""

        def explode(expression, payload):
            raise RuntimeError("evaluator down")

        assert not condition_admits(PredicateEvaluator(explode), "anything", {})

    def test_custom_predicate(self):
        evaluator = PredicateEvaluator(lambda expr, payload: payload.get("region") == expr)
        assert condition_admits(evaluator, "eu", {"region": "eu"})
        assert not condition_admits(evaluator, "eu", {"region": "us"})
