from matcher import QuestionMatcher

from conftest import NOW, make_question


def test_exact_question_matches():
    q = make_question()
    assert QuestionMatcher().match("where are my keys", NOW, [q]) is q


def test_question_in_cooldown_is_skipped():
    q = make_question(last_triggered_at=NOW - 5000)
    assert QuestionMatcher().match("where are my keys", NOW, [q]) is None


def test_question_after_cooldown_matches_again():
    q = make_question(last_triggered_at=NOW - 9000)
    assert QuestionMatcher().match("where are my keys", NOW, [q]) is q


def test_unrelated_question_is_not_matched():
    dinner = make_question("dinner", "When is dinner?")
    keys = make_question()
    assert QuestionMatcher().match("where are my keys", NOW, [dinner, keys]) is keys


def test_first_qualifying_question_wins():
    mine = make_question("mine", "Where are my keys?")
    car = make_question("car", "Where are the car keys?")
    matcher = QuestionMatcher()
    assert matcher.match("where are my keys", NOW, [mine, car]) is mine
    assert matcher.match("where are my keys", NOW, [car, mine]) is car


def test_runaway_candidate_is_rejected():
    q = make_question()
    candidate = "where are my keys " + "really " * 13
    assert QuestionMatcher().match(candidate, NOW, [q]) is None


def test_keys_synonyms_count_as_matching():
    q = make_question()
    assert QuestionMatcher().match("where is the car", NOW, [q]) is q
    assert QuestionMatcher(synonyms={}).match("where is the car", NOW, [q]) is None


def test_short_key_phrase_matches():
    q = make_question(text="Where did I leave my keys")
    ev = QuestionMatcher().evaluate("my keys", q)
    assert ev.short_key_phrase
    assert ev.matching_tokens == ("keys",)
    assert ev.accepted


def test_core_structure_score():
    matcher = QuestionMatcher()
    assert matcher.core_score(["where", "are", "my", "keys"]) == 4
    assert matcher.core_score(["what", "time"]) == 0


def test_custom_core_words():
    matcher = QuestionMatcher(core_words=("when", "dinner"))
    assert matcher.core_score(["when", "is", "dinner"]) == 2


def test_nothing_in_common_is_no_match():
    q = make_question()
    assert QuestionMatcher().match("what time is it", NOW, [q]) is None
    assert QuestionMatcher().match("", NOW, [q]) is None


def test_short_key_phrase_counts_tokens_not_words():
    matcher = QuestionMatcher()
    dinner = make_question("dinner", "When is dinner?")
    ev = matcher.evaluate("is it my car key", dinner)
    assert ev.short_key_phrase
    assert ev.accepted
    assert not matcher.evaluate("where did you put my spare house key", dinner).short_key_phrase
