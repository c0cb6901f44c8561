"""Dictionary-driven transcript correction and rule learning."""
from __future__ import annotations

from .applier import apply_rules
from .corrector import DictionaryCorrector
from .exceptions import (
    ApiError,
    ConflictError,
    DictionaryServiceError,
    ErrorKind,
    RateLimitError,
    StorageError,
    UnknownError,
    ValidationError,
)
from .learner import DictionaryLearner
from .llm_client import OpenAIChatClient
from .models import CorrectionResult, DictionaryRule, LearnResult, RuleApplication, TextDiffPair
from .prompt import format_rules, parse_correction_reply
from .similarity import are_similar, extract_rule_candidates, levenshtein_distance
from .store import BaseDictionaryStore, InMemoryDictionaryStore, SqlDictionaryStore
from .tokenizer import tokenize

__all__ = [
    "DictionaryCorrector",
    "DictionaryLearner",
    "OpenAIChatClient",
    "BaseDictionaryStore",
    "SqlDictionaryStore",
    "InMemoryDictionaryStore",
    "DictionaryRule",
    "TextDiffPair",
    "RuleApplication",
    "CorrectionResult",
    "LearnResult",
    "apply_rules",
    "format_rules",
    "parse_correction_reply",
    "tokenize",
    "are_similar",
    "levenshtein_distance",
    "extract_rule_candidates",
    "ErrorKind",
    "DictionaryServiceError",
    "ValidationError",
    "ConflictError",
    "RateLimitError",
    "ApiError",
    "StorageError",
    "UnknownError",
]
