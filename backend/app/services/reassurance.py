import logging
import os
from pathlib import Path
from typing import Optional

from openai import OpenAI

from app.models import ServiceRequestRecord

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "requested": "Requested",
    "assigned": "Runner Assigned",
    "in_progress": "In Progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

FALLBACK_MESSAGES = {
    "assigned": "Your request is being handled with the utmost care by our local team.",
    "in_progress": "Our team is currently on the ground in Lebanon ensuring everything goes smoothly.",
}
DEFAULT_FALLBACK = "Your request is being handled with the utmost care by our local team."


class ReassuranceGenerationError(RuntimeError):
    pass


def fallback_message(status: str) -> str:
    return FALLBACK_MESSAGES.get(status, DEFAULT_FALLBACK)


class ReassuranceWriter:
    """Short, warm status updates for the customer, generated by an LLM when configured."""

    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self.model = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
        if client is None:
            api_key = self._load_openai_api_key()
            client = OpenAI(api_key=api_key) if api_key else None
        self.client = client
        self.llm_available = self.client is not None
        if not self.llm_available:
            logger.warning("Reassurance LLM disabled: set OPENAI_API_KEY (or OPENAI_API_KEY_FILE).")

    @staticmethod
    def _normalize_env_value(value: str) -> str:
        normalized = value.strip()
        if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in {"'", '"'}:
            normalized = normalized[1:-1].strip()
        return normalized

    def _load_openai_api_key(self) -> str:
        api_key = self._normalize_env_value(os.getenv("OPENAI_API_KEY", ""))
        if not api_key:
            key_file = self._normalize_env_value(os.getenv("OPENAI_API_KEY_FILE", ""))
            if key_file:
                try:
                    api_key = self._normalize_env_value(Path(key_file).read_text(encoding="utf-8"))
                except OSError:
                    logger.warning("OPENAI_API_KEY_FILE is set but unreadable.")
        if api_key.lower() in {"replace-with-openai-key", "your-openai-api-key"}:
            return ""
        return api_key

    def generate(self, request: ServiceRequestRecord, status: str) -> str:
        """Raise ``ReassuranceGenerationError`` when no usable text comes back."""
        if not self.client:
            raise ReassuranceGenerationError("LLM not configured")
        prompt = (
            "Generate a short, very reassuring, and warm status update for a Lebanese expat whose parent "
            f"({request.parent_name}) in {request.location} has a service request for "
            f'"{request.service_title}". The current status is "{STATUS_LABELS.get(status, status)}". '
            "Make it sound professional, caring, and trustworthy. Maximum 2 sentences."
        )
        try:
            response = self.client.responses.create(
                model=self.model,
                input=[{"role": "user", "content": prompt}],
                temperature=0.7,
            )
        except Exception as exc:
            raise ReassuranceGenerationError(str(exc)) from exc
        text = (getattr(response, "output_text", "") or "").strip()
        if not text:
            raise ReassuranceGenerationError("Empty completion")
        return text

    def write(self, request: ServiceRequestRecord, status: str) -> str:
        """Never fails: any generation problem yields the static fallback."""
        try:
            return self.generate(request, status)
        except ReassuranceGenerationError as exc:
            if self.llm_available:
                logger.warning("Reassurance generation failed for %s: %s", request.id, exc)
            return fallback_message(status)


reassurance_writer = ReassuranceWriter()
