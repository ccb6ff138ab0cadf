"""AI-authored chat narrative over the computed loop data."""
import asyncio
import logging
from typing import Optional

from talentbrain.config import LLM_TIMEOUT
from talentbrain.llm import ChatModel, LLMError
from talentbrain.models import ChatResponse
from talentbrain.results import StepResult

logger = logging.getLogger(__name__)

FOLLOW_UP_MARKER = "Follow-up question:"

APOLOGY_MESSAGE = (
    "I encountered an error while analyzing the opportunities. "
    "Please try again or contact support if the issue persists."
)
GENERIC_FOLLOW_UP = "Would you like me to focus on specific aspects of your career interests?"

DEGRADED_MESSAGE = (
    "I was unable to generate a detailed analysis for this request right now. "
    "Some of the underlying data could not be loaded, so the results below may be incomplete."
)

ERROR_MESSAGES = {
    "VALIDATION_ERROR": "I couldn't process that request because some required information was missing or invalid.",
    "RETRY_EXCEEDED": "This conversation has hit its retry limit. Please start a new request in a moment.",
}
DEFAULT_ERROR_MESSAGE = "Something went wrong while processing your request. Please try again shortly."

SYSTEM_PROMPTS = {
    "candidate": "You are an AI career advisor. Help the person understand which roles fit them and what to develop next.",
    "hiring": "You are an AI hiring advisor. Help the hiring manager understand which people best fit the role and why.",
    "analyst": "You are an AI workforce analyst. Explain capability distribution findings clearly, using the data provided.",
    "general": "You are an AI workforce assistant. Answer questions about roles, skills and capabilities using the data provided.",
}

RESPONSE_RULES = f"""
Guidelines:
- Be concise and specific; reference the data provided
- Use short paragraphs or bullet points
- End with one line starting with "{FOLLOW_UP_MARKER}" suggesting a useful next question"""


def split_follow_up(content: str) -> ChatResponse:
    """Separate the trailing follow-up question from the narrative body."""
    body, marker, follow_up = content.partition(FOLLOW_UP_MARKER)
    if not marker:
        return ChatResponse(message=content.strip())
    return ChatResponse(
        message=body.strip() or content.strip(),
        follow_up_question=follow_up.strip() or None,
    )


def apology() -> ChatResponse:
    return ChatResponse(message=APOLOGY_MESSAGE, follow_up_question=GENERIC_FOLLOW_UP)


def error_message(error_type: str) -> str:
    return ERROR_MESSAGES.get(error_type, DEFAULT_ERROR_MESSAGE)


class Narrator:
    def __init__(self, chat_model: ChatModel, timeout: float = LLM_TIMEOUT):
        self.chat_model = chat_model
        self.timeout = timeout

    async def narrate(
        self,
        mode: str,
        data_text: str,
        last_message: Optional[str] = None,
        history_text: str = "",
    ) -> StepResult[ChatResponse]:
        """Never raises; falls back to a fixed apology and follow-up."""
        sections = []
        if history_text:
            sections.append(f"Recent conversation:\n{history_text}")
        sections.append(f"User question: {last_message or 'Give me an overview of the results.'}")
        sections.append(f"Data:\n{data_text}")
        user_prompt = "\n\n".join(sections)

        try:
            content = await asyncio.wait_for(
                self.chat_model.complete(
                    SYSTEM_PROMPTS.get(mode, SYSTEM_PROMPTS["general"]) + RESPONSE_RULES,
                    user_prompt,
                    temperature=0.7,
                    max_tokens=1000,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️  Narrative timed out for {mode} mode, using apology")
            return StepResult.fallback(apology(), reason="narrative timed out")
        except LLMError as e:
            logger.warning(f"⚠️  Narrative failed for {mode} mode: {e}")
            return StepResult.fallback(apology(), reason=str(e))

        return StepResult.ok(split_follow_up(content))
