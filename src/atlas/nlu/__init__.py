"""
Natural language understanding for the command pipeline.

Usage:
    from atlas.nlu import IntentClassifier

    classifier = IntentClassifier()
    intent = classifier.classify("play despacito on spotify")
    # Intent(name='play_music', entities={'query': 'despacito', 'platform': 'spotify'}, confidence=1.0)
"""

from atlas.nlu.classifier import ClassifierConfig, IntentClassifier
from atlas.nlu.guessers import KeywordGuesser, LLMIntentGuesser
from atlas.nlu.normalizer import Normalizer
from atlas.nlu.rules import CommandRule, PatternRule, RuleTable, default_rule_table
from atlas.nlu.types import ConfidenceLevel, EntityKind, Intent

__all__ = [
    "ClassifierConfig",
    "CommandRule",
    "ConfidenceLevel",
    "EntityKind",
    "Intent",
    "IntentClassifier",
    "KeywordGuesser",
    "LLMIntentGuesser",
    "Normalizer",
    "PatternRule",
    "RuleTable",
    "default_rule_table",
]
