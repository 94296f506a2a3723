from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from cert_sync.names import calculate_similarity, skeleton_key, strip_diacritics, word_overlap_score


class SkeletonKeyTests(unittest.TestCase):
    def test_legal_suffixes_and_punctuation_are_dropped(self):
        self.assertEqual(skeleton_key("ACME Co., Ltd."), "acme")
        self.assertEqual(skeleton_key("Beta Films GmbH & Co. KG"), "beta films")

    def test_word_order_and_case_do_not_matter(self):
        self.assertEqual(skeleton_key("Nordic Paper Mills"), skeleton_key("MILLS nordic"))
        self.assertEqual(skeleton_key("Global Organics Ltd"), skeleton_key("Organics Global"))

    def test_key_of_a_key_is_unchanged(self):
        for name in ("Global Organics Ltd", "Müller Verpackung GmbH", "ACME Co., Ltd.", "Kağıt Sanayi A.Ş."):
            key = skeleton_key(name)
            self.assertEqual(skeleton_key(key), key)

    def test_diacritics_and_special_letters_are_folded(self):
        self.assertEqual(skeleton_key("Müller Verpackung GmbH"), "muller verpackung")
        self.assertEqual(strip_diacritics("straße łódź"), "strasse lodz")
        self.assertEqual(skeleton_key("Kağıt Sanayi ve Ticaret A.Ş."), "kagit ve")

    def test_noise_words_single_letters_and_numbers_are_removed(self):
        self.assertEqual(skeleton_key("Omega Packaging Industries 2000 Sp. z o.o."), "omega")

    def test_empty_and_none_give_empty_key(self):
        self.assertEqual(skeleton_key(None), "")
        self.assertEqual(skeleton_key("   "), "")
        self.assertEqual(skeleton_key("Ltd."), "")


class SimilarityTests(unittest.TestCase):
    def test_identical_keys_score_one(self):
        self.assertEqual(calculate_similarity("alpha", "alpha"), 1.0)

    def test_containment_scores_point_nine_regardless_of_length(self):
        self.assertEqual(calculate_similarity("ab", "abcdefghijkl"), 0.9)

    def test_edit_distance_is_normalised_by_longer_key(self):
        self.assertAlmostEqual(calculate_similarity("kitten", "sitting"), 1 - 3 / 7)

    def test_empty_key_scores_zero(self):
        self.assertEqual(calculate_similarity("", "alpha"), 0.0)

    def test_word_overlap_measures_shorter_key_against_longer(self):
        raw, adjusted = word_overlap_score("alpha beta", "alpha beta gamma")
        self.assertEqual(raw, 1.0)
        self.assertAlmostEqual(adjusted, 0.85)

    def test_word_overlap_gives_partial_credit_for_near_tokens(self):
        raw, adjusted = word_overlap_score("cartonage gamma", "cartonnage gamma")
        self.assertAlmostEqual(raw, 0.9)
        self.assertAlmostEqual(adjusted, 0.765)

    def test_word_overlap_of_empty_key_is_zero(self):
        self.assertEqual(word_overlap_score("", "alpha"), (0.0, 0.0))


if __name__ == "__main__":
    unittest.main()
