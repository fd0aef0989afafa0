from src.docstream.services.dedupe import DISABLED, DedupePolicy, overlap_length, strip_overlap


def test_redelivered_prefix_is_stripped():
    assert strip_overlap("The cat sat", "cat sat on the mat") == " on the mat"


def test_longest_overlap_wins():
    # both "abab" and "ab" are suffixes of the buffer; the longer one is used
    assert overlap_length("xxabab", "ababab!", DedupePolicy(min_overlap=2)) == 4


def test_no_overlap_leaves_fragment_alone():
    assert strip_overlap("The cat sat", " on the mat") == " on the mat"
    assert overlap_length("", "anything") == 0
    assert overlap_length("anything", "") == 0


def test_short_repeats_are_kept():
    # "the the" written on purpose across a fragment boundary
    assert strip_overlap("I saw the", "the end") == "the end"


def test_false_positive_repeated_phrase_is_eaten():
    # a genuinely repeated phrase longer than min_overlap looks exactly like a redelivery
    assert strip_overlap("we said that ", "that was fine", DedupePolicy(min_overlap=4)) == "was fine"


def test_raising_min_overlap_avoids_that_false_positive():
    assert strip_overlap("we said that ", "that was fine", DedupePolicy(min_overlap=32)) == "that was fine"


def test_false_negative_overlap_below_minimum():
    # a real redelivery of three characters is missed
    assert overlap_length("The cat", "cat nap") == 0


def test_false_negative_overlap_outside_window():
    policy = DedupePolicy(window=5, min_overlap=4)
    assert overlap_length("The cat sat", "cat sat on", policy) == 0
    assert overlap_length("The cat sat", "cat sat on", DedupePolicy(window=100, min_overlap=4)) == 7


def test_disabled_policy_never_strips():
    assert overlap_length("aaaaaaaa", "aaaaaaaa", DISABLED) == 0


def test_whole_fragment_can_be_a_duplicate():
    assert strip_overlap("Hello world", "world") == ""
