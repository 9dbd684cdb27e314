"""
Product name normalization and matching.

The same product is named three different ways: on the supplier invoice
(origin), in reference list A and in reference list B. A mapping table
ties known names to a canonical key; everything else goes through fuzzy
matching against the canonical keys.

Matching pipeline (in order of confidence):
  1. Exact match of the name within its own naming system     -> 1.00
  2. Exact match against a known alternate name               -> 0.95
  3. Fuzzy match of the normalized name against every key:
       normalized exact                                       -> 0.90
       substring containment / longest common substring       -> score x 0.85
       word overlap                                           -> score x 0.80
       edit-distance similarity (Levenshtein)                 -> score x 0.75

A fuzzy result is only returned as a match above the confidence
threshold (0.85 by default); below it the candidates are returned as
suggestions for a human reviewer.
"""

import logging
import re
import unicodedata
from collections import defaultdict

from rapidfuzz.distance import Levenshtein
from thefuzz import fuzz, process

from config import DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_MAX_FUZZY_CANDIDATES
from models import AliasEntry, MatchResult, System
from reference_data import (
    ALIAS_CONFIDENCE, EDIT_DISTANCE_MIN_SCORE, EDIT_DISTANCE_WEIGHT,
    EXACT_CONFIDENCE, FOLD_MAP, MAX_SUGGESTIONS, NORMALIZED_EXACT_CONFIDENCE,
    QUALITY_WORDS, SUBSTRING_MIN_SCORE, SUBSTRING_WEIGHT, UNIT_WORDS,
    UNMATCHED_SUGGESTION_MIN_SCORE, WORD_OVERLAP_MIN_SCORE, WORD_OVERLAP_WEIGHT,
)

logger = logging.getLogger(__name__)

_FOLD_TABLE = str.maketrans(FOLD_MAP)
_STOP_WORDS = re.compile(r"\b(?:%s)\b" % "|".join(UNIT_WORDS + QUALITY_WORDS))


# ── Normalization ───────────────────────────────────────────────────

def normalize_product_name(name: str) -> str:
    """
    Canonical string form of a product name.

    "Domates (Salkım) 1 KG Taze" -> "domates_1"
    Idempotent: normalizing a normalized name returns it unchanged.
    """
    if not name:
        return ""

    text = name.translate(_FOLD_TABLE).lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch)).lower()

    text = re.sub(r"\([^)]*\)", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    text = re.sub(r"\s+", " ", text)
    text = _STOP_WORDS.sub(" ", text)
    return "_".join(text.split())


# ── Scoring ─────────────────────────────────────────────────────────

def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit cost insertion, deletion and substitution."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """1 - levenshtein / longer length. Symmetric; 1.0 for two empty strings."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


def _longest_common_substring(a: str, b: str) -> int:
    best = 0
    previous = [0] * (len(b) + 1)
    for ca in a:
        current = [0]
        for j, cb in enumerate(b, 1):
            length = previous[j - 1] + 1 if ca == cb else 0
            current.append(length)
            if length > best:
                best = length
        previous = current
    return best


def substring_score(a: str, b: str) -> float:
    """
    Containment ratio shorter/longer, or the longest common substring
    over the longer length when neither contains the other.
    """
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if not longer:
        return 0.0
    if shorter in longer:
        return len(shorter) / len(longer)
    return _longest_common_substring(shorter, longer) / len(longer)


def word_overlap_score(a: str, b: str) -> float:
    """Share of a's words (3+ chars) found in b, over the larger word count."""
    words_a = [w for w in a.split("_") if len(w) > 2]
    words_b = [w for w in b.split("_") if len(w) > 2]
    if not words_a or not words_b:
        return 0.0

    matching = 0
    for wa in words_a:
        for wb in words_b:
            if wa == wb or wa in wb or wb in wa:
                matching += 1
                break
    return matching / max(len(words_a), len(words_b))


# ── Matcher ─────────────────────────────────────────────────────────

class ProductMatcher:
    """
    Alias cache plus fuzzy scoring, built once per reconciliation run.

    Holds run-scoped mutable state (normalization memo and the unmatched
    accumulator), so one instance must not be shared by concurrent runs.
    """

    def __init__(self, mappings: list[dict],
                 confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
                 max_candidates: int = DEFAULT_MAX_FUZZY_CANDIDATES):
        self.confidence_threshold = confidence_threshold
        self.max_candidates = max_candidates
        self.entries: list[AliasEntry] = []
        self._cache: dict[tuple, str] = {}
        self._display: dict[str, str] = {}
        self._normalized: dict[str, str] = {}
        self._unmatched: dict[str, dict] = {}
        self._word_index = defaultdict(set)
        self._prefix_index = defaultdict(set)
        self._build_cache(mappings or [])

    def _build_cache(self, mappings: list[dict]):
        for mapping in mappings:
            origin = mapping.get("originName")
            list_a = mapping.get("listAName")
            list_b = mapping.get("listBName")
            key = mapping.get("canonicalKey") or self.normalize(origin or list_a or list_b or "")
            if not key:
                logger.warning("Skipping mapping row without names: %r", mapping)
                continue

            for system, raw in ((System.ORIGIN, origin), (System.LIST_A, list_a), (System.LIST_B, list_b)):
                if raw:
                    self._add(system, raw, key)
            for alias in mapping.get("alternateNames") or []:
                if alias:
                    self._add(System.ALTERNATE, alias, key)

            if key not in self._display:
                self._display[key] = origin or list_a or list_b or key
                self._index_key(key)

        logger.info("Product mapping cache built: %d entries, %d canonical keys",
                    len(self._cache), len(self._display))

    def _add(self, system: System, raw_name: str, key: str):
        self.entries.append(AliasEntry(system, raw_name, key))
        self._cache[(system, raw_name.strip().lower())] = key

    def _index_key(self, key: str):
        normalized = self.normalize(key)
        for word in normalized.split("_"):
            if len(word) > 2:
                self._word_index[word].add(key)
        self._prefix_index[normalized[:3]].add(key)

    @property
    def canonical_keys(self) -> list[str]:
        return list(self._display)

    def display_name(self, key: str) -> str:
        return self._display.get(key, key)

    def normalize(self, name: str) -> str:
        """normalize_product_name, memoized for the life of this run."""
        if name not in self._normalized:
            self._normalized[name] = normalize_product_name(name)
        return self._normalized[name]

    def find_match_with_confidence(self, name: str, system: System = System.ORIGIN) -> MatchResult:
        """
        Resolve a product name from the given naming system to a canonical key.

        Returns a MatchResult whose key is None when nothing clears the
        confidence threshold; candidates are still listed as suggestions.
        """
        if not name or not name.strip():
            return MatchResult(None, 0.0, "empty")

        clean = name.strip()
        lower = clean.lower()

        key = self._cache.get((system, lower))
        if key is not None:
            return MatchResult(key, EXACT_CONFIDENCE, "exact")

        key = self._cache.get((System.ALTERNATE, lower))
        if key is not None:
            return MatchResult(key, ALIAS_CONFIDENCE, "alias")

        normalized = self.normalize(clean)
        results = self._fuzzy_match(normalized)

        if results:
            best_key, best_confidence, best_strategy = results[0]
            if best_confidence >= self.confidence_threshold:
                return MatchResult(
                    best_key, best_confidence, best_strategy,
                    tuple(self.display_name(k) for k, _, _ in results[1:4]),
                )
            return MatchResult(
                None, best_confidence, "low_confidence",
                tuple(self.display_name(k) for k, _, _ in results[:MAX_SUGGESTIONS]),
            )

        if system == System.ORIGIN and clean not in self._unmatched:
            self._unmatched[clean] = {
                "source_system": system.value,
                "source_name": clean,
                "normalized_name": normalized,
            }
            logger.info("Origin product not matched: %r", clean)

        return MatchResult(None, 0.0, "no_match", self._suggest(clean))

    def find_match(self, name: str, system: System = System.ORIGIN) -> str:
        """Canonical key, or the normalized name when nothing matches."""
        result = self.find_match_with_confidence(name, system)
        return result.canonical_key or self.normalize(name)

    def unmatched_products(self) -> list[dict]:
        """Origin names that matched nothing, one entry per raw name."""
        return list(self._unmatched.values())

    def _candidates(self, normalized: str) -> list[str]:
        keys = self.canonical_keys
        if len(keys) <= self.max_candidates:
            return keys

        bucket = set(self._prefix_index.get(normalized[:3], ()))
        for word in normalized.split("_"):
            if len(word) > 2:
                bucket |= self._word_index.get(word, set())
        return [key for key in keys if key in bucket]

    def _fuzzy_match(self, normalized: str) -> list[tuple]:
        """(key, confidence, strategy) for every accepted candidate, best first."""
        results = []
        for key in self._candidates(normalized):
            target = self.normalize(key)

            if target == normalized:
                results.append((key, NORMALIZED_EXACT_CONFIDENCE, "normalized_exact"))
                continue

            score = substring_score(normalized, target)
            if score > SUBSTRING_MIN_SCORE:
                results.append((key, score * SUBSTRING_WEIGHT, "substring"))
                continue

            score = word_overlap_score(normalized, target)
            if score > WORD_OVERLAP_MIN_SCORE:
                results.append((key, score * WORD_OVERLAP_WEIGHT, "word_overlap"))
                continue

            # Length ratio bounds the similarity from above
            shorter, longer = sorted((len(normalized), len(target)))
            if not longer or shorter / longer <= EDIT_DISTANCE_MIN_SCORE:
                continue
            score = similarity(normalized, target)
            if score > EDIT_DISTANCE_MIN_SCORE:
                results.append((key, score * EDIT_DISTANCE_WEIGHT, "levenshtein"))

        results.sort(key=lambda r: r[1], reverse=True)
        return results

    def _suggest(self, name: str) -> tuple:
        """Closest display names for a name no strategy accepted."""
        choices = list(dict.fromkeys(self._display.values()))
        if not choices:
            return ()
        ranked = process.extract(name, choices, scorer=fuzz.ratio, limit=MAX_SUGGESTIONS)
        return tuple(choice for choice, score in ranked if score > UNMATCHED_SUGGESTION_MIN_SCORE)
