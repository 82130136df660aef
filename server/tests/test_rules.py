from __future__ import annotations

import unittest

from longwalk.sim.rules import text_sentiment


class TextSentimentTests(unittest.TestCase):
    def test_keywords_count_as_whole_words(self) -> None:
        self.assertGreater(text_sentiment("Thanks, friend. Glad you're here."), 0.0)
        self.assertLess(text_sentiment("I hate this road. I'll die out here."), 0.0)

    def test_keywords_inside_other_words_are_ignored(self) -> None:
        self.assertEqual(text_sentiment("My diet was all shutters and kindling."), 0.0)
        self.assertEqual(text_sentiment("The wind whipped the shutter."), 0.0)

    def test_balanced_or_empty_text_is_neutral(self) -> None:
        self.assertEqual(text_sentiment(""), 0.0)
        self.assertEqual(text_sentiment("Good luck, you idiot."), 0.0)

    def test_score_is_clamped(self) -> None:
        self.assertEqual(text_sentiment("thank friend glad home together help love hope"), 1.0)


if __name__ == "__main__":
    unittest.main()
