# src/agents/llm_agent.py
from openai import OpenAI, APIError, APIConnectionError, APITimeoutError
from typing import List, Optional
from src.config.settings import Settings
from src.errors import UpstreamServiceError
import logging

logger = logging.getLogger(__name__)


class ChatAgent:
    """OpenAI chat client used as the text-understanding service."""

    def __init__(self, config: Settings, model: Optional[str] = None):
        self.config = config
        # Retries are left to the caller; one bounded call per analysis run
        self.client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.extraction_timeout_seconds,
            max_retries=0,
        )
        self.model = model or config.openai_llm_model

    def chat(self, messages: List[dict], json_mode: bool = False,
             temperature: Optional[float] = None) -> str:
        """
        Send a list of messages to the OpenAI chat model and get the response.

        Args:
            messages: List of message dicts (e.g., [{"role": "user", "content": "Hello"}])
            json_mode: Ask the model for a single JSON object
            temperature: Sampling temperature, model default when None

        Returns:
            The assistant's reply as a string ("" when the reply has no content).

        Raises:
            UpstreamServiceError: The call failed, timed out or could not connect.
        """
        kwargs = {"model": self.model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = self.client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            logger.error(f"Chat completion timed out after {self.config.extraction_timeout_seconds}s")
            raise UpstreamServiceError("request timed out") from e
        except APIConnectionError as e:
            logger.error(f"Could not reach chat completion endpoint: {e}")
            raise UpstreamServiceError("connection failed") from e
        except APIError as e:
            logger.error(f"Chat completion failed: {e}")
            raise UpstreamServiceError(str(e)) from e

        return response.choices[0].message.content or ""

    def chat_single(self, prompt: str) -> str:
        """
        Send a single prompt to the OpenAI chat model and get the response.

        Args:
            prompt: The user's prompt as a string.

        Returns:
            The assistant's reply as a string.
        """
        messages = [{"role": "user", "content": prompt}]
        return self.chat(messages)

    def chat_with_system(self, system: str, user: str, json_mode: bool = False,
                         temperature: Optional[float] = None) -> str:
        """System instruction plus one user payload, the shape every analysis flow sends."""
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        return self.chat(messages, json_mode=json_mode, temperature=temperature)
