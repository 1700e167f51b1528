"""
Tests for Bayesian surprise scoring
"""

import itertools
import math
import unittest

from autodiscovery.search.belief import BetaBelief
from autodiscovery.search.surprise import (
    RewardMode,
    SurpriseEvaluator,
    belief_shift,
    kl_divergence_beta,
)

SHAPES = [0.1, 0.5, 1.0, 2.5, 10.0, 75.0]


class TestKLDivergence(unittest.TestCase):
    def test_zero_for_identical_distributions(self):
        for a, b in itertools.product(SHAPES, SHAPES):
            with self.subTest(a=a, b=b):
                self.assertAlmostEqual(kl_divergence_beta(a, b, a, b), 0.0, places=12)

    def test_non_negative(self):
        for a1, b1, a2, b2 in itertools.product(SHAPES, repeat=4):
            with self.subTest(p=(a1, b1), q=(a2, b2)):
                self.assertGreaterEqual(kl_divergence_beta(a1, b1, a2, b2), 0.0)

    def test_known_value(self):
        # KL(Beta(2, 1) || Uniform) = ln 2 - 1/2
        self.assertAlmostEqual(kl_divergence_beta(2.0, 1.0, 1.0, 1.0), math.log(2.0) - 0.5, places=9)


class TestSurpriseEvaluator(unittest.TestCase):
    def setUp(self):
        self.belief = BetaBelief(0.5, 0.5, 3.5, 0.5)

    def test_belief_mode(self):
        evaluator = SurpriseEvaluator(RewardMode.BELIEF)
        self.assertAlmostEqual(evaluator.score(self.belief), 0.375)
        self.assertAlmostEqual(belief_shift(self.belief), 0.375)

    def test_kl_mode_is_default(self):
        evaluator = SurpriseEvaluator()
        self.assertEqual(evaluator.reward_mode, RewardMode.KL)
        self.assertAlmostEqual(evaluator.score(self.belief), kl_divergence_beta(3.5, 0.5, 0.5, 0.5))

    def test_belief_and_kl_uses_explicit_weight(self):
        evaluator = SurpriseEvaluator("belief_and_kl", belief_kl_weight=0.25)
        kl = kl_divergence_beta(3.5, 0.5, 0.5, 0.5)
        self.assertAlmostEqual(evaluator.score(self.belief), 0.25 * 0.375 + 0.75 * kl)

    def test_threshold_is_inclusive(self):
        evaluator = SurpriseEvaluator(surprisal_threshold=0.5)
        self.assertTrue(evaluator.is_surprising(0.5))
        self.assertFalse(evaluator.is_surprising(0.4999))

    def test_evaluate_breakdown(self):
        evaluator = SurpriseEvaluator(surprisal_threshold=0.5)
        score = evaluator.evaluate(self.belief)
        self.assertAlmostEqual(score.belief_shift, 0.375)
        self.assertGreater(score.kl_divergence, 0.5)
        self.assertTrue(score.surprising)

        unchanged = evaluator.evaluate(BetaBelief(0.5, 0.5, 0.5, 0.5))
        self.assertEqual(unchanged.score, 0.0)
        self.assertFalse(unchanged.surprising)

    def test_invalid_settings(self):
        with self.assertRaises(ValueError):
            SurpriseEvaluator("entropy")
        with self.assertRaises(ValueError):
            SurpriseEvaluator(RewardMode.BELIEF_AND_KL, belief_kl_weight=1.5)


if __name__ == "__main__":
    unittest.main()
