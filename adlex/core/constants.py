from enum import Enum


class CheckStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckStatus.COMPLETED, CheckStatus.FAILED)


class OcrStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InputType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class DictionaryCategory(str, Enum):
    NG = "NG"
    ALLOW = "ALLOW"


# Function-calling tool the detection model is forced to call
DETECTION_TOOL_NAME = "apply_yakukiho_rules"

# Combined score weights for hybrid dictionary search
TRGM_WEIGHT = 0.3
VECTOR_WEIGHT = 0.7
