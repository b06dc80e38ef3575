# Domain exceptions raised by the collection, scoring and registry services.
# The HTTP layer maps them onto the {"error": ..., "meta": ...} envelope.

from typing import List, Optional


class MindscreenError(Exception):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MindscreenError): # recoverable: respondent stays on the offending question
    def __init__(
        self,
        message: str,
        code: str = "INVALID_ANSWER",
        question_id: Optional[str] = None,
        index: Optional[int] = None,
        missing: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.question_id = question_id
        self.index = index
        self.missing = list(missing or [])


class TransitionError(MindscreenError):
    code = "INVALID_TRANSITION"


class ConfigurationError(MindscreenError):
    code = "BROKEN_CONFIG"


class ConfigurationNotFound(ConfigurationError):
    code = "CONFIG_NOT_FOUND"


class ScoreOutOfRange(MindscreenError):
    code = "SCORE_OUT_OF_RANGE"

    def __init__(self, score, config_key: str) -> None:
        super().__init__(f"Score {score} is outside every risk range of '{config_key}'")
        self.score = score
        self.config_key = config_key
