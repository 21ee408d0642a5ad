"""Tests for hashing, weighted allocation and active test resolution."""

import random
import string

import pytest

from ab_testing import ABTest, ABTestConfig, ActiveTest, Variant, hash_user_id, select_variant
from errors import NoActiveTest


def _variants(*weights):
    return [Variant(id=chr(ord("A") + i), name=f"v{i}", weight=w) for i, w in enumerate(weights)]


class TestHashUserId:
    def test_deterministic(self):
        assert hash_user_id("user_1700000000000_abc123xyz") == hash_user_id("user_1700000000000_abc123xyz")

    def test_matches_31x_rolling_hash(self):
        assert hash_user_id("hello") == 99162322
        assert hash_user_id("") == 0

    def test_order_sensitive(self):
        assert hash_user_id("ab") != hash_user_id("ba")

    def test_wraps_at_32_bits(self):
        # Wraps to -2**31, whose absolute value is returned
        assert hash_user_id("polygenelubricants") == 2 ** 31

    def test_negative_wrapped_values_are_made_positive(self):
        value = hash_user_id("user_1700000000000_zzzzzzzzz")
        assert 0 <= value <= 2 ** 31

    def test_uses_utf16_code_units(self):
        # U+1F600 is the surrogate pair D83D DE00
        assert hash_user_id("\U0001F600") == (0xD83D * 31 + 0xDE00)


class TestSelectVariant:
    def test_even_split_boundaries(self):
        variants = _variants(50, 50)
        assert select_variant(3000, variants).id == "A"
        assert select_variant(7000, variants).id == "B"

    def test_hash_is_folded_into_buckets(self):
        variants = _variants(50, 50)
        assert select_variant(123_453_000, variants).id == "A"
        assert select_variant(123_457_000, variants).id == "B"

    def test_weight_scale_does_not_matter(self):
        for weights in [(50, 50), (0.5, 0.5), (1, 1)]:
            assert select_variant(4999, _variants(*weights)).id == "A"
            assert select_variant(5000, _variants(*weights)).id == "B"

    def test_order_breaks_ties(self):
        variants = _variants(1, 1, 1)
        assert select_variant(0, variants).id == "A"
        assert select_variant(9999, variants).id == "C"

    def test_empty_variants_raise(self):
        with pytest.raises(NoActiveTest):
            select_variant(42, [])

    def test_distribution_follows_weights(self):
        rng = random.Random(7)
        alphabet = string.ascii_lowercase + string.digits
        variants = _variants(70, 20, 10)
        counts = {"A": 0, "B": 0, "C": 0}
        n = 5000
        for i in range(n):
            user_id = f"user_{1700000000000 + i}_{''.join(rng.choices(alphabet, k=9))}"
            counts[select_variant(hash_user_id(user_id), variants).id] += 1

        assert counts["A"] / n == pytest.approx(0.7, abs=0.05)
        assert counts["B"] / n == pytest.approx(0.2, abs=0.05)
        assert counts["C"] / n == pytest.approx(0.1, abs=0.05)


class TestActiveTest:
    def test_first_active_test_wins(self, sample_config):
        config = ABTestConfig.model_validate(sample_config)
        active = ActiveTest.resolve(config.active_tests)
        assert active.id == "ad_placement_v1"
        assert set(active.variants_by_id) == {"A", "B"}

    def test_none_when_nothing_active(self):
        tests = [ABTest(id="t1", status="inactive", variants=_variants(1))]
        assert ActiveTest.resolve(tests) is None

    def test_assign_is_stable(self, sample_config):
        active = ActiveTest.resolve(ABTestConfig.model_validate(sample_config).active_tests)
        assert active.assign("user_42").id == active.assign("user_42").id

    def test_find_variant_unknown(self, sample_config):
        active = ActiveTest.resolve(ABTestConfig.model_validate(sample_config).active_tests)
        assert active.find_variant("Z") is None
        assert active.find_variant(None) is None

    def test_global_settings_defaults(self):
        config = ABTestConfig.model_validate({"activeTests": []})
        assert config.global_settings.user_id_cookie == "ab_user_id"
        assert config.global_settings.tracking_endpoint == "/api/ab-track"
        assert config.global_settings.analytics.enabled is True
