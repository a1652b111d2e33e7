from typing import Union

from adlex.core.constants import InputType
from adlex.core.exceptions import (
    AppError,
    ChatCompletionError,
    CheckCancelledError,
    EmbeddingServiceError,
    ImageProcessingError,
    OCRError,
    PipelineTimeoutError,
    RepositoryError,
)

CANCELLED_MESSAGE = "Check was cancelled by the user"


def classify_error(error: BaseException, input_type: Union[InputType, str] = InputType.TEXT) -> str:
    """Map a pipeline failure to the message stored on the failed check.

    Args:
        error: The exception that ended the pipeline
        input_type: Check input type, which selects the timeout wording

    Returns:
        Human-readable error message
    """
    is_image = InputType(input_type) == InputType.IMAGE

    if isinstance(error, PipelineTimeoutError):
        if is_image:
            return "Image processing timed out. Try a smaller image or one with less text."
        return "Processing timed out. Try splitting the text into shorter parts."
    if isinstance(error, CheckCancelledError):
        return error.message or CANCELLED_MESSAGE
    if isinstance(error, ImageProcessingError):
        return "The image could not be loaded. Check the file format and try again."
    if isinstance(error, OCRError):
        return "Text extraction from the image failed. Try a clearer image."
    if isinstance(error, EmbeddingServiceError):
        return "Embedding generation failed. Please try again later."
    if isinstance(error, ChatCompletionError):
        return "AI analysis failed. Please try again later."
    if isinstance(error, RepositoryError):
        return "Saving the check results failed. Please try again."

    detail = error.message if isinstance(error, AppError) else str(error)
    return f"Processing error: {detail or error.__class__.__name__}"
