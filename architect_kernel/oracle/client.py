"""
Oracle transports — the LLM boundary.

A DecisionOracle turns an OracleRequest into the raw JSON object the
model produced. Validation and repair of that object happen in the
adapter, not here. Transports raise OracleError for anything that
prevents them from returning a JSON object.
"""

import json
import logging
from typing import Optional, Protocol

import requests

from architect_kernel.models.decision import OracleRequest
from architect_kernel.models.simulation import OracleConfig

logger = logging.getLogger(__name__)


KNOWLEDGE_CATEGORIES = ["Infrastructure", "Energy", "Environment", "Architecture", "Synthesis"]

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": ["PLACE", "MOVE", "WAIT"]},
        "objectType": {"type": "string"},
        "position": {"type": "array", "items": {"type": "number"}},
        "reason": {"type": "string"},
        "reasoningSteps": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 3,
            "maxItems": 5,
        },
        "learningNote": {"type": "string"},
        "knowledgeCategory": {"type": "string", "enum": KNOWLEDGE_CATEGORIES},
        "taskLabel": {"type": "string"},
        "groundingLinks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "uri": {"type": "string"},
                    "title": {"type": "string"},
                },
                "required": ["uri"],
            },
        },
        "plan": {
            "type": "object",
            "properties": {
                "objective": {"type": "string"},
                "planId": {"type": "string"},
                "currentStepIndex": {"type": "number"},
                "steps": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "type": {"type": "string"},
                            "position": {"type": "array", "items": {"type": "number"}},
                            "status": {
                                "type": "string",
                                "enum": ["pending", "active", "completed"],
                            },
                        },
                        "required": ["label", "type", "position", "status"],
                    },
                },
            },
        },
    },
    "required": [
        "action",
        "reason",
        "reasoningSteps",
        "learningNote",
        "knowledgeCategory",
        "taskLabel",
    ],
}


class OracleError(Exception):
    """Raised when the oracle cannot produce a JSON object."""
    pass


class DecisionOracle(Protocol):
    """Protocol for decision oracles — pluggable backend."""

    def complete(self, request: OracleRequest) -> dict: ...


def parse_oracle_json(text: str) -> dict:
    """Parse model output into a JSON object, tolerating markdown fences."""
    content = (text or "").strip()
    if content.startswith("```"):
        content = content.strip("`")
        if content.lower().startswith("json"):
            content = content[4:]
        content = content.strip()

    if not content:
        raise OracleError("Oracle returned an empty response")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Oracle response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise OracleError(
            f"Oracle response is a {type(data).__name__}, expected a JSON object"
        )
    return data


class OllamaOracle:
    """
    Decision oracle backed by an Ollama chat endpoint.

    The response schema is passed as the ``format`` constraint so the model
    emits a single JSON object.
    """

    def __init__(
        self,
        config: Optional[OracleConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or OracleConfig()
        self._session = session or requests.Session()
        self._available: Optional[bool] = None

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    def check_available(self) -> bool:
        """Check that Ollama is reachable and serves the configured model."""
        try:
            resp = self._session.get(f"{self.base_url}/api/tags", timeout=3)
            resp.raise_for_status()
            models = [m.get("name", "") for m in resp.json().get("models", [])]
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Ollama unavailable at %s: %s", self.base_url, exc)
            self._available = False
            return False

        if self.config.model in models:
            self._available = True
        else:
            # Accept a tagged variant of the configured model name
            matches = [m for m in models if m.startswith(self.config.model)]
            self._available = bool(matches)
            if matches:
                self.config = self.config.model_copy(update={"model": matches[0]})
        return self._available

    def complete(self, request: OracleRequest) -> dict:
        """Send the prompts to the model and return its JSON object."""
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.prompt},
            ],
            "format": RESPONSE_SCHEMA,
            "stream": False,
            "options": {"temperature": self.config.temperature},
        }

        logger.debug("Oracle request to %s (model=%s)", self.base_url, self.config.model)
        try:
            resp = self._session.post(
                f"{self.base_url}/api/chat",
                json=body,
                timeout=self.config.request_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise OracleError(f"Oracle transport failed: {exc}") from exc

        try:
            content = resp.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as exc:
            raise OracleError(f"Unexpected oracle envelope: {exc}") from exc

        logger.debug("Oracle raw response: %s", content)
        return parse_oracle_json(content)
