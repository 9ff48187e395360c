"""
Rule-based shortcut answers.

Greetings, "what can you do", date/time questions and simple weather lookups are answered without
calling a model.  The chat service consults :class:`RuleMatcher` before the agent loop; ``None``
means "no rule applies, ask the model".
"""

import logging
import re
from datetime import datetime
from typing import (
    Callable,
    List,
    NamedTuple,
    Sequence,
)
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

WTTR_URL = "https://wttr.in/"
_PUNCTUATION = re.compile(r"[?!.,]")
_CITY = re.compile(r"(?:in|at|for)\s+([a-zA-Z\s]{3,20})", re.IGNORECASE)
_MAX_RULE_MESSAGE = 60


class Rule(NamedTuple):
    """Static keyword rule: any keyword (word or phrase) triggers *response*."""

    keywords: Sequence[str]
    response: str


DEFAULT_RULES: List[Rule] = [
    Rule(
        ["hi", "hii", "hello", "hey", "greetings", "yo", "hi there"],
        "Hello! I'm NextGen AI. How can I assist you today? 🚀",
    ),
    Rule(
        ["who are you", "your name", "what are you", "tell me about yourself"],
        "I am NextGen AI, a chatbot designed to help you with reasoning, coding, search, and "
        "image generation. 🤖",
    ),
    Rule(
        ["how are you", "how s it going", "how are things"],
        "I'm doing great and ready to help! What's on your mind? ✨",
    ),
    Rule(["bye", "goodbye", "see ya", "take care"], "Goodbye! Have a productive day! 👋"),
    Rule(
        ["help", "commands", "what can you do", "menu"],
        "I can help you with:\n"
        "- 🧠 **Complex Reasoning**\n"
        "- 💻 **Coding**: writing and debugging scripts.\n"
        "- 🔍 **Web Search**: real-time information access.\n"
        "- 🎨 **Image Generation**: just use the `/image` command!\n"
        "- 📁 **File Analysis**: upload PDFs or text files.",
    ),
]


class RuleMatcher:
    """Answers a message from rules, or returns None."""

    def __init__(
        self,
        rules: Sequence[Rule] = tuple(DEFAULT_RULES),
        client: httpx.AsyncClient | None = None,
        weather_timeout: float = 5.0,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.rules = list(rules)
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self.weather_timeout = weather_timeout
        self._now = now

    async def match(self, message: str) -> str | None:
        """Return the canned answer for *message*, if a rule applies."""
        clean = _PUNCTUATION.sub("", message.lower().strip())
        words = set(clean.split())

        if words & {"weather", "temperature", "temp"}:
            weather = await self._weather(message)
            if weather:
                return weather

        now = self._now()
        if "today" in clean or "current" in clean:
            if words & {"date", "day"}:
                return f"Today's date is **{now.strftime('%A, %B %d, %Y')}**. 📅"
            if "time" in words:
                return f"The current time is **{now.strftime('%H:%M:%S')}**. 🕒"
        if clean == "date":
            return f"Today's date is **{now.strftime('%Y-%m-%d')}**. 📅"
        if clean == "time":
            return f"The current time is **{now.strftime('%H:%M:%S')}**. 🕒"

        if len(clean) < _MAX_RULE_MESSAGE:
            for rule in self.rules:
                if any((k in clean) if " " in k else (k in words) for k in rule.keywords):
                    return rule.response
        return None

    async def _weather(self, message: str) -> str | None:
        match = _CITY.search(message)
        city = match.group(1).strip() if match else ""
        url = f"{WTTR_URL}{quote(city)}" if city else WTTR_URL
        params = {"format": "3" if city else "4"}
        try:
            response = await self.client.get(url, params=params, timeout=self.weather_timeout)
        except httpx.HTTPError as exc:
            logger.warning("Weather lookup failed: %s", exc)
            return None
        text = response.text.strip()
        if response.status_code != 200 or not text or "404" in text:
            return None
        return f"🌤️ **Current Weather**:\n{text}\n\n_Fetched instantly via Rules Engine_"

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
