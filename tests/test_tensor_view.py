import unittest

import numpy as np

from dish_kit.errors import ShapeMismatch
from dish_kit.tensor import TensorView


class TestTensorView(unittest.TestCase):
    def test_buffer_length_must_match_shape(self) -> None:
        with self.assertRaises(ShapeMismatch):
            TensorView(np.arange(5), (2, 3))

    def test_flat_and_multi_index_access(self) -> None:
        t = TensorView(np.arange(6, dtype=np.float32), (1, 2, 3))
        self.assertEqual(t.shape, (1, 2, 3))
        self.assertEqual(t.flat(4), 4.0)
        self.assertEqual(t.at(0, 1, 2), 5.0)
        with self.assertRaises(IndexError):
            t.flat(6)
        with self.assertRaises(ShapeMismatch):
            t.at(0, 1)

    def test_reshape_checks_element_count(self) -> None:
        t = TensorView(np.arange(6), (6,))
        self.assertEqual(t.reshape((2, 3)).at(1, 0), 3)
        with self.assertRaises(ShapeMismatch):
            t.reshape((4, 2))

    def test_swap_last_axes_is_a_view(self) -> None:
        t = TensorView(np.arange(24, dtype=np.float32), (1, 4, 6))
        s = t.swap_last_axes()
        self.assertEqual(s.shape, (1, 6, 4))
        self.assertTrue(s.shares_memory(t))
        for i in range(4):
            for j in range(6):
                self.assertEqual(s.at(0, j, i), t.at(0, i, j))
        # Flat access follows the logical order of the transposed view.
        self.assertEqual(s.flat(1), t.at(0, 1, 0))

    def test_swap_last_axes_requires_rank_three(self) -> None:
        with self.assertRaises(ShapeMismatch):
            TensorView(np.arange(6), (2, 3)).swap_last_axes()

    def test_transpose_requires_permutation(self) -> None:
        t = TensorView(np.arange(6), (1, 2, 3))
        with self.assertRaises(ShapeMismatch):
            t.transpose((0, 1, 1))

    def test_view_is_read_only(self) -> None:
        src = np.arange(4, dtype=np.float32)
        t = TensorView.from_array(src)
        with self.assertRaises(ValueError):
            t.numpy()[0] = 10.0
        # The caller's array stays writable.
        src[0] = 1.0
        self.assertEqual(t.flat(0), 1.0)


if __name__ == "__main__":
    unittest.main()
