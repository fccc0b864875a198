import logging
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

logger = logging.getLogger(__name__)

FALLBACK_ADVICE = (
    "Focus on consistency over perfection. "
    "Small daily actions compound into remarkable results over time!"
)
DEFAULT_TIP = (
    "Start small and be consistent. "
    "Focus on building one habit at a time for lasting success!"
)
FALLBACK_CHAT_REPLY = (
    "I'm having trouble connecting right now, but I'm here to support you! "
    "What specific habit challenge are you facing today?"
)

ADVICE_SYSTEM_PROMPT = (
    "You are a motivational habit coach. Provide personalized, encouraging advice "
    "based on the user's habit data. Keep responses concise (2-3 sentences), "
    "practical, and motivating. Focus on specific actionable tips."
)


class CoachingService:
    """Coaching texts from OpenAI, with fixed fallbacks when it is unavailable."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o"):
        self.model = model
        self.client = None
        self.enabled = bool(api_key)

        if self.enabled:
            self.client = AsyncOpenAI(api_key=api_key)
            logger.info(f"Coaching enabled with model {model}")
        else:
            logger.warning("Coaching generation disabled (no OPENAI_API_KEY), fallback texts will be used")

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"Coaching generation failed: {e}", exc_info=True)
            return None
        return response.choices[0].message.content

    async def advice(self, habit_names: List[str], recent_progress: List[str]) -> str:
        user_prompt = (
            f"My habits: {', '.join(habit_names)}. "
            f"Recent 7-day completion: {', '.join(recent_progress)}. "
            "Give me personalized coaching advice."
        )
        text = await self.generate(ADVICE_SYSTEM_PROMPT, user_prompt, max_tokens=150)
        return text or FALLBACK_ADVICE

    async def chat(
            self,
            message: str,
            habit_names: List[str],
            completed_today: int,
            total_habits: int,
            average_mood: Optional[float] = None
    ) -> str:
        mood_context = f"Recent average mood: {average_mood:.1f}/5." if average_mood is not None else ""
        system_prompt = (
            f"You are a supportive, knowledgeable habit coach. The user has these habits: "
            f"{', '.join(habit_names)}. Today they completed {completed_today}/{total_habits} habits. "
            f"{mood_context}\n\n"
            "Provide personalized, empathetic responses. Be encouraging, practical, and specific. "
            "Ask follow-up questions when appropriate. Keep responses conversational but "
            "professional, around 2-4 sentences."
        )
        text = await self.generate(system_prompt, message, max_tokens=200)
        return text or FALLBACK_CHAT_REPLY
