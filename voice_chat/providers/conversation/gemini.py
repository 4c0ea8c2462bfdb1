"""Gemini conversation service."""

import asyncio
import os
import time
from typing import Dict, List, Optional
import google.generativeai as genai
import structlog

from ...exceptions import ProviderError, SubmissionError
from .base import AssistantTurn, ConversationService, ModelInfo


logger = structlog.get_logger()


class GeminiConversationService(ConversationService):
    """
    Gemini conversation service using direct API calls.

    History is kept locally and sent with every request, so the model can
    be switched between turns.
    """

    def __init__(
        self,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 2048,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        super().__init__(system_prompt)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.is_initialized = False
        self._models: Dict[str, genai.GenerativeModel] = {}

    def initialize(self) -> None:
        """Configure the Gemini API client."""
        logger.info("Initializing Gemini service")

        api_key = os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ProviderError("gemini", "GOOGLE_API_KEY environment variable not set")

        genai.configure(api_key=api_key)
        self.is_initialized = True
        logger.info("Gemini client initialized")

    def _model(self, model_id: str) -> genai.GenerativeModel:
        if model_id not in self._models:
            self._models[model_id] = genai.GenerativeModel(
                model_name=model_id,
                system_instruction=self.system_prompt or None,
            )
        return self._models[model_id]

    def _contents(self, content: str) -> List[dict]:
        contents = [
            {
                "role": "model" if message["role"] == "assistant" else "user",
                "parts": [message["content"]],
            }
            for message in self.conversation_history
        ]
        contents.append({"role": "user", "parts": [content]})
        return contents

    async def send_message(self, content: str, model_id: str) -> AssistantTurn:
        if not self.is_initialized:
            raise RuntimeError("Gemini not initialized")

        model = self._model(model_id)
        generation_config = genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )
        contents = self._contents(content)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            start_time = time.time()
            try:
                response = await asyncio.wait_for(
                    model.generate_content_async(contents, generation_config=generation_config),
                    timeout=self.timeout,
                )
                text = response.text
            except Exception as e:
                last_error = e
                logger.warning(f"Gemini attempt {attempt + 1} failed", error=str(e))
                if attempt < self.max_retries - 1:
                    wait_time = 2**attempt
                    logger.info(f"Retrying Gemini in {wait_time}s", attempt=attempt + 1)
                    await asyncio.sleep(wait_time)
                continue

            self.add_to_history("user", content)
            self.add_to_history("assistant", text, model_id)
            logger.info(
                "Gemini reply received",
                model=model_id,
                latency_ms=round((time.time() - start_time) * 1000),
                length=len(text),
            )
            return AssistantTurn(content=text, model_id=model_id)

        logger.error("All Gemini retry attempts failed", error=str(last_error))
        raise SubmissionError(f"Gemini request failed: {last_error}")

    async def list_models(self) -> List[ModelInfo]:
        models = await asyncio.to_thread(lambda: list(genai.list_models()))
        return [
            ModelInfo(id=model.name, name=model.display_name or model.name)
            for model in models
            if "generateContent" in model.supported_generation_methods
        ]

    def stop(self) -> None:
        """Stop Gemini service."""
        logger.info("Stopping Gemini service")
        self._models.clear()
        self.is_initialized = False

    def get_status(self) -> dict:
        """Get Gemini service status."""
        return {
            "provider": "gemini",
            "initialized": self.is_initialized,
            "models_loaded": list(self._models),
            "history_length": len(self.conversation_history),
        }
