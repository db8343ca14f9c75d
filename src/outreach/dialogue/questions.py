"""
Fixed questionnaire and prompt wording.

Prompts never include member details; a callback message may be left on
an answering machine.
"""

PERSON_DETECTION_PROMPT = (
    "Hello, this is an automated call from your healthcare program. "
    "If you are a person and can hear this message, please press 1 now."
)

QUESTIONS: tuple[str, ...] = (
    "Press 1 to confirm your identity. Press 2 if you cannot confirm.",
    "Press 1 if you are aware of your enrollment in your healthcare program. "
    "Press 2 if you are not aware.",
    "Press 1 if you need assistance with your program. "
    "Press 2 if you do not need assistance.",
)

CALLBACK_MESSAGE = (
    "We were unable to reach you. Please call us back at your convenience "
    "to discuss your healthcare enrollment. Thank you."
)

INVALID_INPUT_NOTICE = "Invalid input. Please press 1 for yes or 2 for no."
TIMEOUT_NOTICE = "We didn't receive your response. Let me repeat the question."
COMPLETION_MESSAGE = "Thank you for your time. Your responses have been recorded. Goodbye."

AFFIRMATIVE_TONE = "1"
NEGATIVE_TONE = "2"


def question_text(number: int, questions: tuple[str, ...] = QUESTIONS) -> str:
    """Return the wording of 1-based question ``number``."""
    if not 1 <= number <= len(questions):
        raise IndexError(f"Question {number} out of range 1..{len(questions)}")
    return questions[number - 1]


def parse_answer(tone: str) -> bool | None:
    """Map a DTMF tone to an answer: True for yes, False for no, None if invalid."""
    if tone == AFFIRMATIVE_TONE:
        return True
    if tone == NEGATIVE_TONE:
        return False
    return None
