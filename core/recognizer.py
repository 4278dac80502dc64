"""
Intent Recognizer Adapter — wraps the external NLU classifier.

recognize(utterance) → [Intent] sorted by descending score.

Backends:
  - LuisRecognizer     — hosted recognizer over HTTP (v2 endpoint, verbose)
  - KeywordRecognizer  — offline keyword matching for development and tests

Both produce canonical `Entity` records, so dialogs never depend on the
recognizer's wire format.
"""
from __future__ import annotations

import abc
import re
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import RecognizerConfig, get_settings
from core.entities import ActionValue, EntityType, entity_from_luis
from core.errors import RecognitionFailure
from models.schemas import Entity, Intent

logger = structlog.get_logger()

NONE_INTENT = "None"


class IntentRecognizer(abc.ABC):

    @abc.abstractmethod
    async def recognize(self, utterance: str) -> list[Intent]:
        ...

    async def close(self) -> None:
        pass


def select_intent(candidates: list[Intent], min_confidence: float) -> Optional[Intent]:
    """Top candidate at or above the threshold; None means 'route to fallback'."""
    if not candidates:
        return None
    top = max(candidates, key=lambda i: i.score)
    if top.score < min_confidence or top.name == NONE_INTENT:
        return None
    return top


# ──────────────────────────────────────────────────────────────
#  Hosted recognizer
# ──────────────────────────────────────────────────────────────

class LuisRecognizer(IntentRecognizer):
    """
    Calls GET {endpoint}/{app_id}?q=...&verbose=true.

    Response shape:
      {"query": "...",
       "topScoringIntent": {"intent": "AddEntry", "score": 0.93},
       "intents": [{"intent": "AddEntry", "score": 0.93}, ...],
       "entities": [{"entity": "lunch", "type": "Title", "startIndex": 4,
                     "endIndex": 8, "score": 0.8}, ...]}
    """

    def __init__(self, config: RecognizerConfig = None):
        self.config = config or get_settings().recognizer
        self.client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self.client

    @property
    def url(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/{self.config.app_id}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _query(self, utterance: str) -> httpx.Response:
        return await self._get_client().get(self.url, params={
            "subscription-key": self.config.subscription_key,
            "q": utterance,
            "verbose": "true",
            "timezoneOffset": "0",
        })

    async def recognize(self, utterance: str) -> list[Intent]:
        try:
            response = await self._query(utterance)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("recognizer_request_failed", error=str(e))
            raise RecognitionFailure(f"Recognizer unavailable: {e}", utterance) from e

        candidates = self.parse_response(body, utterance)
        logger.debug("utterance_recognized",
                     top=candidates[0].name if candidates else None,
                     score=candidates[0].score if candidates else 0.0)
        return candidates

    @staticmethod
    def parse_response(body: dict[str, Any], utterance: str = "") -> list[Intent]:
        entities = [entity_from_luis(raw) for raw in body.get("entities", [])]
        raw_intents = body.get("intents") or []
        if not raw_intents and body.get("topScoringIntent"):
            raw_intents = [body["topScoringIntent"]]

        candidates = [
            Intent(
                name=raw.get("intent", NONE_INTENT),
                entities=list(entities),
                score=float(raw.get("score") or 0.0),
                text=body.get("query", utterance),
            )
            for raw in raw_intents
        ]
        candidates.sort(key=lambda i: i.score, reverse=True)
        return candidates

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()


# ──────────────────────────────────────────────────────────────
#  Offline recognizer
# ──────────────────────────────────────────────────────────────

# Keyword-based intent classification (fast, no network needed)
INTENT_KEYWORDS: dict[str, list[str]] = {
    "AddEntry": ["add", "schedule", "create", "book", "new event", "new entry"],
    "RemoveEntry": ["remove", "delete", "cancel"],
    "EditEntry": ["move", "reschedule", "change", "edit"],
    "CheckAvailability": ["free", "available", "availability", "busy"],
    "Summarize": ["summary", "summarize", "agenda", "what's on", "what is on", "my day"],
    "PrimaryCalendar": ["primary calendar", "which calendar", "use my calendar", "default calendar"],
    "Login": ["login", "log in", "sign in", "connect"],
    "Logout": ["logout", "log out", "sign out", "disconnect"],
    "Help": ["help", "what can you do"],
}

_SET_WORDS = ("set", "use", "switch", "make")
_GET_WORDS = ("which", "what", "show")
_QUOTED = re.compile(r'["“]([^"”]+)["”]')
_DATETIME = re.compile(r'(\d{4}-\d{2}-\d{2})(?:[ T](\d{1,2}:\d{2}))?')


class KeywordRecognizer(IntentRecognizer):
    """
    Keyword matcher. Scores are the share of an utterance's keyword hits that
    went to each intent, so a single unambiguous hit scores 1.0.

    Entities: Action (set/get words), Title (quoted text), datetimes written
    as YYYY-MM-DD or YYYY-MM-DD HH:MM.
    """

    def __init__(self, keywords: dict[str, list[str]] = None):
        self.keywords = keywords or INTENT_KEYWORDS

    async def recognize(self, utterance: str) -> list[Intent]:
        text = utterance.lower().strip()
        hits: dict[str, int] = {}
        for intent, keywords in self.keywords.items():
            count = sum(1 for kw in keywords if re.search(rf"\b{re.escape(kw)}\b", text))
            if count:
                hits[intent] = count

        entities = self.extract_entities(utterance)
        total = sum(hits.values())
        if not total:
            return [Intent(name=NONE_INTENT, entities=entities, score=0.0, text=utterance)]

        candidates = [
            Intent(name=name, entities=list(entities), score=count / total, text=utterance)
            for name, count in hits.items()
        ]
        candidates.sort(key=lambda i: i.score, reverse=True)
        return candidates

    @staticmethod
    def extract_entities(utterance: str) -> list[Entity]:
        entities: list[Entity] = []
        lowered = utterance.lower()

        words = set(re.findall(r"[a-z']+", lowered))
        if words & set(_SET_WORDS):
            entities.append(Entity(type=EntityType.ACTION, value=ActionValue.SET,
                                   normalized_value=ActionValue.SET))
        elif words & set(_GET_WORDS):
            entities.append(Entity(type=EntityType.ACTION, value=ActionValue.GET,
                                   normalized_value=ActionValue.GET))

        quoted = _QUOTED.search(utterance)
        if quoted:
            entities.append(Entity(
                type=EntityType.TITLE, value=quoted.group(1),
                start_index=quoted.start(1), end_index=quoted.end(1) - 1,
            ))

        when = _DATETIME.search(utterance)
        if when:
            day, clock = when.group(1), when.group(2)
            if clock:
                hour, minute = clock.split(":")
                entities.append(Entity(
                    type=EntityType.DATETIME, value=when.group(0),
                    normalized_value=f"{day} {int(hour):02d}:{minute}:00",
                    start_index=when.start(), end_index=when.end() - 1,
                ))
            else:
                entities.append(Entity(
                    type=EntityType.DATE, value=day, normalized_value=day,
                    start_index=when.start(), end_index=when.end() - 1,
                ))
        return entities


def create_recognizer(config: RecognizerConfig = None) -> IntentRecognizer:
    config = config or get_settings().recognizer
    if config.backend == "luis":
        logger.info("recognizer_created", backend="luis", app_id=config.app_id)
        return LuisRecognizer(config)
    if config.backend != "keyword":
        logger.warning("unknown_recognizer_backend", backend=config.backend, using="keyword")
    logger.info("recognizer_created", backend="keyword")
    return KeywordRecognizer()
