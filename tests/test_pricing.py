"""Tests for cost estimation (ccsync/core/pricing.py)."""

import pytest

from ccsync.core.pricing import MODEL_PRICING, calculate_cost, lookup_pricing


class TestLookupPricing:
    """Tests for model name lookup."""

    def test_exact_match(self):
        assert lookup_pricing("claude-3-5-haiku-20241022") is MODEL_PRICING["claude-3-5-haiku-20241022"]

    def test_name_contains_known_id(self):
        pricing = lookup_pricing("anthropic/claude-sonnet-4-20250514")
        assert pricing is MODEL_PRICING["claude-sonnet-4-20250514"]

    def test_known_id_contains_name(self):
        pricing = lookup_pricing("claude-3-opus")
        assert pricing is MODEL_PRICING["claude-3-opus-20240229"]

    @pytest.mark.parametrize("model", [None, "", "gpt-4o", "llama-3-70b"])
    def test_unknown(self, model):
        assert lookup_pricing(model) is None

    def test_every_entry_has_all_rates(self):
        for model, pricing in MODEL_PRICING.items():
            assert set(pricing) == {"input", "output", "cache_write", "cache_read"}, model
            assert all(rate >= 0 for rate in pricing.values())


class TestCalculateCost:
    """Tests for calculate_cost."""

    def test_haiku_input_output(self):
        cost = calculate_cost("claude-3-5-haiku-20241022", input_tokens=100, output_tokens=50)
        assert cost == pytest.approx(0.00028)

    def test_cache_categories(self):
        # 300*3 + 1000*3.75 + 2000*0.30 + 70*15 = 6300
        cost = calculate_cost(
            "claude-sonnet-4-20250514",
            input_tokens=300,
            output_tokens=70,
            cache_write_tokens=1000,
            cache_read_tokens=2000,
        )
        assert cost == pytest.approx(0.0063)

    @pytest.mark.parametrize("model", [None, "", "gpt-4o", "mistral-large"])
    def test_unknown_model_is_zero(self, model):
        assert calculate_cost(model, input_tokens=1_000_000, output_tokens=1_000_000) == 0.0

    def test_no_tokens_is_zero(self):
        assert calculate_cost("claude-opus-4-20250514") == 0.0

    def test_negative_and_none_counts_clamped(self):
        assert calculate_cost("claude-opus-4-20250514", input_tokens=-500, output_tokens=None) == 0.0

    def test_million_output_tokens_is_output_rate(self):
        assert calculate_cost("claude-opus-4-5-20251101", output_tokens=1_000_000) == pytest.approx(25.0)
