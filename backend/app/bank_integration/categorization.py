"""
Transaction Categorization Module

Keyword-rule categorizer with a learned override table:
1. Exact override on the normalized leading words (confidence 1.0)
2. Weighted keyword rules (best score wins)
3. Large-deposit heuristic (promotes to Income)

Learned overrides and rules live in process memory only. The durable record of a
user's choice is the transaction's own category and override flag, which is
replayed into the categorizer the first time it is used against a database.
"""

import re
import logging
from decimal import Decimal
from typing import Dict, List, Iterable, Tuple, Optional, Union
from sqlalchemy.orm import Session

from backend.app.models import Transaction

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
INCOME = "Income"

# Positive amounts above this are treated as salary-like
LARGE_DEPOSIT_THRESHOLD = Decimal("1000")
LARGE_DEPOSIT_CONFIDENCE = 0.8

OVERRIDE_KEY_WORDS = 3
EXACT_WORD_FACTOR = 1.0
PARTIAL_WORD_FACTOR = 0.7
LEARNED_RULE_WEIGHT = 0.6

_NON_ALPHANUMERIC = re.compile(r'[^a-z0-9\s]')


class CategorizationRule:
    """A set of keywords mapping to one category with a weight in (0, 1]."""

    def __init__(self, keywords: List[str], category: str, weight: float):
        self.keywords = list(keywords)
        self.category = category
        self.weight = weight

    def score(self, description: str) -> float:
        """
        Score a lowercased description against this rule.

        Each keyword found as a substring adds the full weight when it is also
        a standalone word, 70% of it otherwise. The total is divided by the
        keyword count and capped at 1.0.
        """
        words = description.split(' ')
        score = 0.0
        matches = 0

        for keyword in self.keywords:
            if keyword in description:
                matches += 1
                factor = EXACT_WORD_FACTOR if keyword in words else PARTIAL_WORD_FACTOR
                score += self.weight * factor

        if matches:
            score = score / len(self.keywords)

        return min(score, 1.0)


def default_rules() -> List[CategorizationRule]:
    return [
        CategorizationRule(["salary", "payroll", "deposit", "income", "wage"], "Income", 1.0),
        CategorizationRule(
            ["whole foods", "trader joe", "safeway", "kroger", "walmart", "target", "grocery",
             "tesco", "sainsbury", "asda", "morrisons", "aldi", "lidl"],
            "Groceries", 0.9
        ),
        CategorizationRule(
            ["shell", "exxon", "chevron", "gas", "fuel", "uber", "lyft", "metro", "parking"],
            "Transportation", 0.9
        ),
        CategorizationRule(
            ["netflix", "spotify", "hulu", "disney", "movie", "theater", "concert", "entertainment"],
            "Entertainment", 0.9
        ),
        CategorizationRule(
            ["restaurant", "cafe", "coffee", "starbucks", "mcdonalds", "burger", "pizza", "doordash", "grubhub"],
            "Dining", 0.8
        ),
        CategorizationRule(["amazon", "ebay", "mall", "store", "shop", "retail"], "Shopping", 0.7),
        CategorizationRule(
            ["electric", "water", "gas", "internet", "phone", "utility", "bill", "insurance"],
            "Bills & Utilities", 0.9
        ),
        CategorizationRule(
            ["hospital", "doctor", "pharmacy", "medical", "health", "dental"],
            "Healthcare", 0.9
        ),
        CategorizationRule(["fee", "charge", "interest", "transfer", "atm"], "Banking", 0.8),
    ]


def _normalized_words(description: str) -> List[str]:
    return _NON_ALPHANUMERIC.sub('', description.lower()).split()


class TransactionCategorizer:
    """
    Assign a category and confidence to a transaction description.

    Example:
        >>> categorizer = TransactionCategorizer()
        >>> categorizer.categorize("TESCO EXPRESS", Decimal("-12.50"))
        ('Groceries', 0.069...)
        >>> categorizer.learn_from_override("Tesco Express", "Shopping")
        >>> categorizer.categorize("TESCO EXPRESS LONDON", Decimal("-4.00"))
        ('Shopping', 1.0)
    """

    def __init__(self, rules: Optional[List[CategorizationRule]] = None):
        self.rules = rules if rules is not None else default_rules()
        self.overrides: Dict[str, str] = {}
        self.warmed = False

    @staticmethod
    def override_key(description: str) -> str:
        """Lowercase, strip non-alphanumerics, keep the first three words."""
        return ' '.join(_normalized_words(description)[:OVERRIDE_KEY_WORDS])

    def find_override(self, description: str) -> Optional[str]:
        """
        Look up a learned override for the description's leading words.

        The three-word key is tried first, then shorter prefixes, so an
        override learned from "Tesco Express" also covers "TESCO EXPRESS LONDON".
        """
        words = _normalized_words(description)[:OVERRIDE_KEY_WORDS]
        for length in range(len(words), 0, -1):
            category = self.overrides.get(' '.join(words[:length]))
            if category:
                return category
        return None

    def categorize(
        self,
        description: str,
        amount: Union[Decimal, float, int] = 0
    ) -> Tuple[str, float]:
        """
        Categorize a transaction.

        Args:
            description: Transaction description text
            amount: Signed amount (positive = credit)

        Returns:
            (category, confidence) with confidence in [0, 1]
        """
        override = self.find_override(description)
        if override:
            return override, 1.0

        normalized = description.lower().strip()
        best_category = UNCATEGORIZED
        best_confidence = 0.0

        for rule in self.rules:
            score = rule.score(normalized)
            if score > best_confidence:
                best_category = rule.category
                best_confidence = score

        if Decimal(str(amount)) > LARGE_DEPOSIT_THRESHOLD:
            best_category = INCOME
            best_confidence = max(best_confidence, LARGE_DEPOSIT_CONFIDENCE)

        return best_category, best_confidence

    def learn_from_override(self, description: str, category: str) -> None:
        """
        Remember a user's manual categorization.

        Stores the override key for instant future matches and folds the
        description's words (longer than two characters) into the category's
        rule, creating a low-weight rule if none exists yet.
        """
        key = self.override_key(description)
        if key:
            self.overrides[key] = category

        words = [word for word in _normalized_words(description) if len(word) > 2]
        existing = next((rule for rule in self.rules if rule.category == category), None)

        if existing:
            for word in words:
                if word not in existing.keywords:
                    existing.keywords.append(word)
        elif words:
            self.rules.append(CategorizationRule(words, category, LEARNED_RULE_WEIGHT))

    def load_overrides(self, overrides: Iterable[Tuple[str, str]]) -> int:
        """Replay stored (description, category) overrides. Returns how many were loaded."""
        count = 0
        for description, category in overrides:
            if description and category:
                self.learn_from_override(description, category)
                count += 1
        self.warmed = True
        return count

    def get_categories(self) -> List[str]:
        categories = {rule.category for rule in self.rules}
        categories.add(UNCATEGORIZED)
        return sorted(categories)


_categorizer = TransactionCategorizer()


def get_categorizer(db: Optional[Session] = None) -> TransactionCategorizer:
    """
    Return the process-wide categorizer.

    The first call made with a database session replays every manually
    overridden transaction into the override table.
    """
    if db is not None and not _categorizer.warmed:
        rows = db.query(Transaction.description, Transaction.category).filter(
            Transaction.is_manually_overridden == True
        ).order_by(Transaction.id).all()
        loaded = _categorizer.load_overrides(rows)
        logger.info(f"Categorizer warmed with {loaded} stored overrides")
    return _categorizer
