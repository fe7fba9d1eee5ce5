"""
Fuzzy matching utilities for supplier-to-contact resolution.
Uses rapidfuzz for high-performance string matching.
"""

from rapidfuzz import fuzz, process
from typing import List, Sequence, Tuple
import re

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.models.platform import Contact

logger = setup_logger("FuzzyMatcher", "fuzzy_matcher.log")

LEGAL_SUFFIXES = [
    " b.v.", " bv", " n.v.", " nv", " v.o.f.", " vof", " c.v.", " cv",
    " ltd", " limited", " inc", " gmbh", " llc", " plc", " sa", " sarl",
]


class FuzzyMatcher:
    """Ranks platform contacts against a supplier name."""

    def __init__(self, threshold: float = 70.0):
        """
        Args:
            threshold: Minimum similarity score (0-100) to consider a match
        """
        self.threshold = threshold

    def normalize(self, text: str) -> str:
        """Lowercase, collapse whitespace and drop legal-form suffixes."""
        if not text:
            return ""
        text = text.lower().strip()
        text = re.sub(r"\s+", " ", text)
        for suffix in LEGAL_SUFFIXES:
            if text.endswith(suffix):
                text = text[: -len(suffix)]
        return text.strip(" .,")

    def score(self, left: str, right: str) -> float:
        norm_left = self.normalize(left)
        norm_right = self.normalize(right)
        if not norm_left or not norm_right:
            return 0.0
        return max(
            fuzz.ratio(norm_left, norm_right),
            fuzz.token_sort_ratio(norm_left, norm_right),
            fuzz.token_set_ratio(norm_left, norm_right),
        )

    def match_name(self, left: str, right: str) -> Tuple[bool, float]:
        """
        Returns:
            Tuple of (is_match, score 0-100)
        """
        best = self.score(left, right)
        return best >= self.threshold, best

    def rank_contacts(
        self,
        supplier_name: str,
        contacts: Sequence[Contact],
        limit: int = 25,
    ) -> List[Tuple[Contact, float]]:
        """
        Order contacts by similarity to ``supplier_name``, best first.

        With no supplier name the first ``limit`` contacts are returned
        unscored, in platform order.
        """
        if not contacts:
            return []
        if not supplier_name:
            return [(contact, 0.0) for contact in list(contacts)[:limit]]

        choices = {index: self.normalize(contact.display_name) for index, contact in enumerate(contacts)}
        ranked = process.extract(
            self.normalize(supplier_name),
            choices,
            scorer=fuzz.token_set_ratio,
            limit=limit,
        )
        result = [(contacts[index], float(score)) for _, score, index in ranked]
        logger.debug(f"Ranked {len(result)} contacts for '{supplier_name}'")
        return result
