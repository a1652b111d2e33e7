"""Heuristic confidence score for Japanese OCR output.

The score is a weighted blend of four factors, each in [0, 1]:

- text quality: penalizes mojibake and implausible character runs
- Japanese text quality: rewards a natural kana/kanji mix
- structural quality: rewards punctuation, sane line lengths and spacing
- image quality: resolution and file size, when known
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

HIRAGANA = re.compile(r"[\u3040-\u309f]")
KATAKANA = re.compile(r"[\u30a0-\u30ff]")
KANJI = re.compile(r"[\u4e00-\u9faf]")
JAPANESE_PUNCTUATION = re.compile(r"[。、！？「」『』（）]")
WHITESPACE = re.compile(r"\s")

CORRUPTION_PATTERNS: Dict[str, re.Pattern] = {
    "unicode-replacement-chars": re.compile(r"\ufffd"),
    "non-japanese-chars": re.compile(
        r"[^\x00-\x7f\u3040-\u309f\u30a0-\u30ff\u4e00-\u9faf\u3000-\u303f\uff00-\uffef]"
    ),
    "repeated-chars": re.compile(r"(.)\1{5,}"),
    "long-alphabet-strings": re.compile(r"[a-zA-Z]{20,}"),
    "long-number-strings": re.compile(r"\d{15,}"),
}

FACTOR_WEIGHTS = {
    "text_quality": 0.3,
    "japanese_text_quality": 0.3,
    "structural_quality": 0.2,
    "image_quality_impact": 0.2,
}

NEUTRAL_IMAGE_SCORE = 0.5


@dataclass
class ImageInfo:
    size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    processing_time_ms: Optional[int] = None


@dataclass
class ConfidenceFactors:
    text_quality: float
    japanese_text_quality: float
    structural_quality: float
    image_quality_impact: float


@dataclass
class ConfidenceResult:
    overall_score: float
    level: str
    factors: ConfidenceFactors
    character_count: int = 0
    japanese_character_ratio: float = 0.0
    corruption_indicators: List[str] = field(default_factory=list)
    structural_indicators: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def japanese_character_ratio(text: str) -> float:
    if not text:
        return 0.0
    count = sum(
        len(pattern.findall(text)) for pattern in (HIRAGANA, KATAKANA, KANJI, JAPANESE_PUNCTUATION)
    )
    return count / len(text)


def text_quality(text: str) -> float:
    length = len(text)
    score = 1.0
    for pattern in CORRUPTION_PATTERNS.values():
        matched = sum(len(m.group(0)) for m in pattern.finditer(text))
        if matched:
            score -= (matched / length) * 0.5
    if length < 5:
        score *= 0.5
    if length > 5000:
        score *= 0.9
    return _clamp(score)


def japanese_text_quality(text: str) -> float:
    ratio = japanese_character_ratio(text)
    if ratio == 0:
        # Latin-only output can still be a correct transcription
        return 0.3

    score = ratio
    hiragana = len(HIRAGANA.findall(text))
    katakana = len(KATAKANA.findall(text))
    kanji = len(KANJI.findall(text))
    total = hiragana + katakana + kanji
    if total:
        hiragana_ratio = hiragana / total
        katakana_ratio = katakana / total
        kanji_ratio = kanji / total
        if 0.3 < hiragana_ratio < 0.8:
            score += 0.1
        if 0.1 < kanji_ratio < 0.6:
            score += 0.1
        if max(hiragana_ratio, katakana_ratio, kanji_ratio) > 0.95:
            score -= 0.2
    return _clamp(score)


def structural_quality(text: str) -> float:
    score = 0.5
    if JAPANESE_PUNCTUATION.search(text):
        score += 0.2

    lines = text.split("\n")
    average_line_length = sum(len(line) for line in lines) / len(lines)
    if 5 < average_line_length < 100:
        score += 0.1

    empty_ratio = sum(1 for line in lines if not line.strip()) / len(lines)
    if 0 < empty_ratio < 0.5:
        score += 0.1

    space_ratio = len(WHITESPACE.findall(text)) / len(text)
    if 0.05 < space_ratio < 0.3:
        score += 0.1
    return _clamp(score)


def image_quality_impact(image_info: Optional[ImageInfo]) -> float:
    if image_info is None:
        return NEUTRAL_IMAGE_SCORE

    score = NEUTRAL_IMAGE_SCORE
    if image_info.width and image_info.height:
        pixels = image_info.width * image_info.height
        if pixels > 1_000_000:
            score += 0.2
        elif pixels < 100_000:
            score -= 0.2

    if image_info.size_bytes is not None:
        size_mb = image_info.size_bytes / (1024 * 1024)
        if 1 < size_mb < 10:
            score += 0.1
        elif size_mb > 20:
            score -= 0.1

    if image_info.processing_time_ms and image_info.processing_time_ms > 10_000:
        score -= 0.1
    return _clamp(score)


def confidence_level(score: float) -> str:
    if score >= 0.9:
        return "very-high"
    if score >= 0.75:
        return "high"
    if score >= 0.5:
        return "medium"
    if score >= 0.25:
        return "low"
    return "very-low"


def _structural_indicators(text: str) -> List[str]:
    indicators = []
    if "\n" in text:
        indicators.append("multi-line")
    if JAPANESE_PUNCTUATION.search(text):
        indicators.append("punctuation-present")
    if re.search(r"[a-zA-Z]", text):
        indicators.append("mixed-scripts")
    if re.search(r"\d", text):
        indicators.append("contains-numbers")
    return indicators


def estimate_ocr_confidence(text: str, image_info: Optional[ImageInfo] = None) -> ConfidenceResult:
    """Estimate how trustworthy an OCR transcription is.

    Args:
        text: Extracted text
        image_info: Source image properties, if known

    Returns:
        ConfidenceResult with the overall score, level and per-factor scores
    """
    if not text:
        return ConfidenceResult(
            overall_score=0.0,
            level="very-low",
            factors=ConfidenceFactors(0.0, 0.0, 0.0, NEUTRAL_IMAGE_SCORE),
            corruption_indicators=["empty-text"],
            structural_indicators=["no-structure"],
        )

    factors = ConfidenceFactors(
        text_quality=text_quality(text),
        japanese_text_quality=japanese_text_quality(text),
        structural_quality=structural_quality(text),
        image_quality_impact=image_quality_impact(image_info),
    )
    overall = _clamp(sum(getattr(factors, name) * weight for name, weight in FACTOR_WEIGHTS.items()))

    return ConfidenceResult(
        overall_score=round(overall, 4),
        level=confidence_level(overall),
        factors=factors,
        character_count=len(text),
        japanese_character_ratio=japanese_character_ratio(text),
        corruption_indicators=[
            name for name, pattern in CORRUPTION_PATTERNS.items() if pattern.search(text)
        ],
        structural_indicators=_structural_indicators(text),
    )
