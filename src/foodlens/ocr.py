"""Boundary around the OCR text recognizer.

Recognizers may raise or return nothing; callers always get back either
the recognized text or one of the sentinel strings below.
"""

import asyncio
from typing import Any, Iterable, List, Protocol

from foodlens.common.logger import create_logger

logger = create_logger(__name__)

NO_TEXT_DETECTED = "No text detected in image"
FAILED_TO_PROCESS = "Failed to process image"


class TextRecognizer(Protocol):
    def recognize(self, image: Any) -> List[str]:
        """Returns recognized lines in detection order."""
        ...


def extract_text(image: Any, recognizer: TextRecognizer) -> str:
    if image is None:
        return FAILED_TO_PROCESS
    try:
        lines = recognizer.recognize(image)
    except Exception as e:
        logger.error(f"Text recognition error: {e}")
        return f"{FAILED_TO_PROCESS}: {e}"

    combined = "\n".join(line for line in (lines or []) if line and line.strip())
    return combined if combined else NO_TEXT_DETECTED


async def extract_texts(images: Iterable[Any], recognizer: TextRecognizer) -> List[str]:
    loop = asyncio.get_running_loop()
    texts = []
    for image in images:
        texts.append(await loop.run_in_executor(None, extract_text, image, recognizer))
    return texts
