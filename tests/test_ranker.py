import math
import unittest

import numpy as np

from dish_kit.errors import DegenerateDistribution, ShapeMismatch
from dish_kit.ranker import rank, softmax, top_k


class TestRanker(unittest.TestCase):
    def test_top1_example(self) -> None:
        result = rank([2.0, 1.0, 0.1], top_k=1)
        self.assertEqual(len(result.top), 1)
        self.assertEqual(result.top[0].index, 0)
        self.assertAlmostEqual(result.top[0].probability, 0.659, places=3)
        self.assertTrue(np.allclose(result.probabilities, [0.659, 0.242, 0.099], atol=1e-3))

    def test_probabilities_sum_to_one(self) -> None:
        rng = np.random.default_rng(7)
        for _ in range(20):
            scores = rng.normal(scale=10.0, size=rng.integers(1, 50))
            probs = rank(scores, top_k=5).probabilities
            self.assertLess(abs(probs.sum() - 1.0), 1e-6)

    def test_large_scores_are_stable(self) -> None:
        probs = softmax(np.array([1000.0, 1000.0, -1000.0]))
        self.assertTrue(np.allclose(probs, [0.5, 0.5, 0.0]))

    def test_non_finite_scores_get_zero_probability(self) -> None:
        probs = softmax(np.array([1.0, math.nan, math.inf, 2.0, -math.inf]))
        self.assertEqual(probs[1], 0.0)
        self.assertEqual(probs[2], 0.0)
        self.assertEqual(probs[4], 0.0)
        self.assertLess(abs(probs.sum() - 1.0), 1e-6)
        self.assertGreater(probs[3], probs[0])

    def test_all_non_finite_is_degenerate(self) -> None:
        with self.assertRaises(DegenerateDistribution):
            rank([math.nan, math.inf, -math.inf], top_k=1)

    def test_ties_break_by_ascending_index(self) -> None:
        scores = [1.0, 3.0, 3.0, 1.0, 3.0]
        first = [s.index for s in top_k(scores, 5)]
        self.assertEqual(first, [1, 2, 4, 0, 3])
        self.assertEqual([s.index for s in top_k(scores, 5)], first)

    def test_k_is_clamped_to_class_count(self) -> None:
        self.assertEqual(len(top_k([0.3, 0.1], 5)), 2)
        with self.assertRaises(ValueError):
            top_k([0.3, 0.1], 0)

    def test_accepts_batched_output(self) -> None:
        scores = np.array([[0.1, 4.0, 0.2]], dtype=np.float32)
        self.assertEqual(top_k(scores, 1)[0].index, 1)
        with self.assertRaises(ShapeMismatch):
            top_k(np.zeros((2, 3)), 1)

    def test_topk_is_prefix_of_full_order(self) -> None:
        scores = [0.5, 2.5, -1.0, 2.0, 0.0, 1.0]
        top5 = [s.index for s in top_k(scores, 5)]
        self.assertEqual(top5, [1, 3, 5, 0, 4])
        self.assertEqual(top_k(scores, 1)[0].index, top5[0])


if __name__ == "__main__":
    unittest.main()
