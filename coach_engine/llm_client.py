"""
Coach LLM Client Interface
==========================

Provider-agnostic LLM interface.
Supports OpenAI and Gemini (extensible). Request parameters come from
model_router.get_model_parameters so model-family quirks stay in one place.
"""

from typing import Protocol, Optional, Dict, Any
from dataclasses import dataclass
import logging

import google.generativeai as genai
import openai
from openai import OpenAI


class LLMError(Exception):
    """No text could be produced. retryable marks rate limits and provider outages."""

    def __init__(self, message: str, model: str = "", retryable: bool = False):
        super().__init__(message)
        self.model = model
        self.retryable = retryable


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    input_tokens: int
    output_tokens: int
    model: str
    metadata: Optional[Dict[str, Any]] = None


class LLMClient(Protocol):
    """
    Protocol for LLM clients.
    All implementations must provide generate() method.
    """

    def generate(
        self,
        prompt: str,
        model: str,
        system_instruction: Optional[str] = None,
        **params
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        ...


class OpenAIClient:
    """OpenAI chat-completions client."""

    def __init__(self, api_key: str):
        self.client = OpenAI(api_key=api_key)

    def generate(
        self,
        prompt: str,
        model: str,
        system_instruction: Optional[str] = None,
        **params
    ) -> LLMResponse:
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                **params
            )
        except openai.RateLimitError as e:
            raise LLMError(f"Rate limited: {e}", model=model, retryable=True) from e
        except openai.APIStatusError as e:
            raise LLMError(f"OpenAI error {e.status_code}: {e}", model=model,
                           retryable=e.status_code >= 500) from e
        except openai.APIConnectionError as e:
            raise LLMError(f"OpenAI connection failed: {e}", model=model, retryable=True) from e

        if not response.choices or response.choices[0].message.content is None:
            finish_reason = response.choices[0].finish_reason if response.choices else "UNKNOWN"
            raise LLMError(f"Empty completion (finish_reason: {finish_reason})", model=model)

        usage = response.usage
        return LLMResponse(
            text=response.choices[0].message.content,
            input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            model=model
        )


class GeminiClient:
    """Gemini LLM client implementation."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        genai.configure(api_key=api_key)

    def generate(
        self,
        prompt: str,
        model: str,
        system_instruction: Optional[str] = None,
        **params
    ) -> LLMResponse:
        """Generate response using Gemini. Token cap keys are mapped to max_output_tokens."""
        max_tokens = params.get("max_completion_tokens") or params.get("max_tokens") or 500
        config_kwargs = {"max_output_tokens": max_tokens}
        if "temperature" in params:
            config_kwargs["temperature"] = params["temperature"]

        gemini_model = genai.GenerativeModel(
            model_name=model,
            system_instruction=system_instruction
        )

        try:
            response = gemini_model.generate_content(
                prompt,
                generation_config=genai.GenerationConfig(**config_kwargs)
            )
        except Exception as e:
            logging.error(f"Gemini call failed for {model}: {e}")
            raise LLMError(f"Gemini error: {e}", model=model, retryable=True) from e

        # Blocked responses or empty candidates
        if not response.candidates or not response.candidates[0].content.parts:
            finish_reason = response.candidates[0].finish_reason if response.candidates else "UNKNOWN"
            raise LLMError(f"Gemini returned no content (finish_reason: {finish_reason})", model=model)

        input_tokens = 0
        output_tokens = 0
        if hasattr(response, 'usage_metadata'):
            input_tokens = getattr(response.usage_metadata, 'prompt_token_count', 0)
            output_tokens = getattr(response.usage_metadata, 'candidates_token_count', 0)

        return LLMResponse(
            text=response.text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model
        )


class MockLLMClient:
    """Mock LLM client for testing."""

    def __init__(self, text: str = "Mock-Antwort vom Coach.", fail_models: Optional[set] = None):
        self.text = text
        self.fail_models = fail_models or set()
        self.last_prompt = None
        self.last_system_instruction = None
        self.calls = []

    def generate(
        self,
        prompt: str,
        model: str,
        system_instruction: Optional[str] = None,
        **params
    ) -> LLMResponse:
        """Return mock response, or fail for the configured models."""
        self.last_prompt = prompt
        self.last_system_instruction = system_instruction
        self.calls.append({"model": model, "params": params})

        if model in self.fail_models:
            raise LLMError(f"Mock failure for {model}", model=model, retryable=True)

        return LLMResponse(
            text=self.text,
            input_tokens=len(prompt) // 4,
            output_tokens=len(self.text) // 4,
            model=model
        )


def get_llm_client(provider: str, api_key: Optional[str]) -> LLMClient:
    """Build the configured provider client."""
    if not api_key:
        raise LLMError(f"No API key configured for provider {provider}")
    if provider == "gemini":
        return GeminiClient(api_key)
    return OpenAIClient(api_key)
