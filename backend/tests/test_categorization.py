"""Tests for the keyword/override transaction categorizer."""

from decimal import Decimal

from backend.app.bank_integration import categorization
from backend.app.bank_integration.categorization import (
    CategorizationRule,
    TransactionCategorizer,
    get_categorizer,
    UNCATEGORIZED,
)


class TestRuleScoring:
    """Tests for CategorizationRule.score."""

    def test_exact_word_gets_full_weight(self):
        rule = CategorizationRule(["coffee", "cafe"], "Dining", 0.8)
        assert rule.score("coffee shop") == 0.8 / 2

    def test_substring_gets_partial_weight(self):
        rule = CategorizationRule(["coffee"], "Dining", 1.0)
        assert rule.score("coffeehouse") == 0.7

    def test_no_match_scores_zero(self):
        rule = CategorizationRule(["coffee"], "Dining", 1.0)
        assert rule.score("train ticket") == 0.0

    def test_score_capped_at_one(self):
        rule = CategorizationRule(["a"], "Test", 1.0)
        assert rule.score("a") <= 1.0


class TestCategorize:
    """Tests for TransactionCategorizer.categorize."""

    def test_tesco_is_groceries(self):
        categorizer = TransactionCategorizer()
        category, confidence = categorizer.categorize("TESCO EXPRESS", Decimal("-12.50"))
        assert category == "Groceries"
        assert 0 < confidence <= 1

    def test_repeated_calls_are_deterministic(self):
        categorizer = TransactionCategorizer()
        first = categorizer.categorize("TESCO EXPRESS", Decimal("-12.50"))
        second = categorizer.categorize("TESCO EXPRESS", Decimal("-12.50"))
        assert first == second

    def test_unknown_description_is_uncategorized(self):
        categorizer = TransactionCategorizer()
        assert categorizer.categorize("ZZZ QQQ", Decimal("-5")) == (UNCATEGORIZED, 0.0)

    def test_large_deposit_becomes_income(self):
        categorizer = TransactionCategorizer()
        category, confidence = categorizer.categorize("UNKNOWN DESC", 5000)
        assert category == "Income"
        assert confidence >= 0.8

    def test_deposit_at_threshold_is_not_promoted(self):
        categorizer = TransactionCategorizer()
        category, _ = categorizer.categorize("ZZZ QQQ", Decimal("1000"))
        assert category == UNCATEGORIZED

    def test_best_scoring_rule_wins(self):
        categorizer = TransactionCategorizer()
        category, _ = categorizer.categorize("NETFLIX.COM", Decimal("-9.99"))
        assert category == "Entertainment"


class TestOverrides:
    """Tests for learned overrides."""

    def test_override_beats_rules(self):
        categorizer = TransactionCategorizer()
        categorizer.learn_from_override("Tesco Express", "Shopping")

        category, confidence = categorizer.categorize("TESCO EXPRESS LONDON", Decimal("-4.00"))
        assert category == "Shopping"
        assert confidence == 1.0

    def test_override_key_normalizes_and_truncates(self):
        assert TransactionCategorizer.override_key("Caffe Nero, High St. #42") == "caffe nero high"

    def test_override_does_not_match_different_leading_words(self):
        categorizer = TransactionCategorizer()
        categorizer.learn_from_override("Tesco Express", "Shopping")

        category, _ = categorizer.categorize("SAINSBURYS LOCAL", Decimal("-4.00"))
        assert category == "Groceries"

    def test_learning_extends_existing_rule(self):
        categorizer = TransactionCategorizer()
        categorizer.learn_from_override("Greggs Bakery", "Dining")

        dining = next(rule for rule in categorizer.rules if rule.category == "Dining")
        assert "greggs" in dining.keywords
        assert "bakery" in dining.keywords

    def test_learning_new_category_creates_rule(self):
        categorizer = TransactionCategorizer()
        categorizer.learn_from_override("Vet Clinic Payment", "Pets")

        assert "Pets" in categorizer.get_categories()
        pets = next(rule for rule in categorizer.rules if rule.category == "Pets")
        assert pets.weight == 0.6

    def test_categories_sorted_with_uncategorized(self):
        categories = TransactionCategorizer().get_categories()
        assert categories == sorted(categories)
        assert UNCATEGORIZED in categories


class TestWarmUp:
    """Tests for replaying stored overrides into the shared categorizer."""

    def test_warm_up_replays_manual_overrides(self, db_session, make_transaction):
        make_transaction(-12, description="Pret A Manger", category="Lunch", is_manually_overridden=True)
        make_transaction(-3, description="Random Shop", category="Shopping", is_manually_overridden=False)

        categorizer = get_categorizer(db_session)

        assert categorizer.warmed
        assert categorizer.categorize("PRET A MANGER LONDON")[0] == "Lunch"
        assert categorizer.find_override("Random Shop") is None

    def test_warm_up_runs_once(self, db_session, make_transaction):
        get_categorizer(db_session)
        make_transaction(-12, description="Pret A Manger", category="Lunch", is_manually_overridden=True)

        assert get_categorizer(db_session) is categorization._categorizer
        assert get_categorizer(db_session).find_override("Pret A Manger") is None
