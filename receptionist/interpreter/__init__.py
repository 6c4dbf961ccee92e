from receptionist.interpreter.classifier import (
    Classification,
    IntentClassifier,
    KeywordIntentClassifier,
    LLMIntentClassifier,
)
from receptionist.interpreter.interpreter import Interpretation, UtteranceInterpreter
from receptionist.interpreter.time_preference import (
    extract_time_preference,
    preference_window,
)

__all__ = [
    "Classification",
    "IntentClassifier",
    "Interpretation",
    "KeywordIntentClassifier",
    "LLMIntentClassifier",
    "UtteranceInterpreter",
    "extract_time_preference",
    "preference_window",
]
