# src/analysis/normalizer.py
"""
Flattens heterogeneous feedback submissions into a single text blob.

Order is fixed: NPS annotation, root text, then question responses in their
stored order. A spoken answer wins over a structured value for the same
response. Records that flatten to nothing are excluded, never raised on.
"""

from typing import Dict, Iterable, List, Optional

from src.models.schemas import FeedbackRecord, NormalizedFeedbackItem, QuestionResponse


def nps_annotation(score: int) -> str:
    return f"NPS Score: {score}/10."


def _value_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def response_text(response: QuestionResponse) -> str:
    """Text of a single question response, or "" when it carries nothing usable."""
    if response.voice_transcription and response.voice_transcription.strip():
        return response.voice_transcription.strip()
    return _value_text(response.value)


def response_texts(
    record: FeedbackRecord,
    question_labels: Optional[Dict[str, str]] = None,
) -> List[str]:
    texts = []
    for response in record.question_responses:
        text = response_text(response)
        if not text:
            continue
        label = (question_labels or {}).get(response.question_id)
        if label:
            text = f'Question: "{label}" Answer: {text}'
        texts.append(text)
    return texts


def normalize(
    record: FeedbackRecord,
    question_labels: Optional[Dict[str, str]] = None,
    include_score: bool = True,
) -> Optional[NormalizedFeedbackItem]:
    """
    Flatten one feedback record.

    Args:
        record: Raw submission
        question_labels: Optional {question_id: question text} used to label answers
        include_score: Prefix the NPS annotation when the record has a score

    Returns:
        The normalized item, or None when the record carries no usable text
    """
    parts = []

    if include_score and record.nps_score is not None:
        parts.append(nps_annotation(record.nps_score))

    if record.root_text and record.root_text.strip():
        parts.append(record.root_text.strip())

    parts.extend(response_texts(record, question_labels))

    text = " ".join(parts).strip()
    if not text:
        return None

    return NormalizedFeedbackItem(id=record.id, text=text)


def normalize_all(
    records: Iterable[FeedbackRecord],
    question_labels: Optional[Dict[str, str]] = None,
    include_score: bool = True,
) -> List[NormalizedFeedbackItem]:
    """Normalize records in order, dropping the ones with no usable text."""
    items = []
    for record in records:
        item = normalize(record, question_labels=question_labels, include_score=include_score)
        if item is not None:
            items.append(item)
    return items


def free_text(record: FeedbackRecord) -> str:
    """Written or spoken content of a record, without the NPS annotation."""
    item = normalize(record, include_score=False)
    return item.text if item else ""
