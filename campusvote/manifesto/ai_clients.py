# campusvote/manifesto/ai_clients.py

import logging
from typing import List

import requests

from campusvote.exceptions import AIServiceError

# HTTP clients for the external embedding and chat-completion providers.
# Both are injected into the manifesto services; URLs, keys and models come
# from configuration.

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Sentence embeddings from a HuggingFace feature-extraction endpoint."""

    def __init__(self, api_url, api_key=None, timeout=30):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout

    def embed_query(self, text: str) -> List[float]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        try:
            response = requests.post(
                self.api_url,
                headers=headers,
                json={'inputs': text, 'options': {'wait_for_model': True}},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AIServiceError(f'Embedding request failed: {e}') from e

        if response.status_code != 200:
            raise AIServiceError(f'Embedding service returned {response.status_code}')
        try:
            payload = response.json()
        except ValueError as e:
            raise AIServiceError('Embedding service returned invalid JSON') from e
        return self._as_vector(payload)

    @staticmethod
    def _as_vector(payload) -> List[float]:
        # A single input may come back as [v1, v2, ...] or [[v1, v2, ...]]
        if isinstance(payload, list) and len(payload) == 1 and isinstance(payload[0], list):
            payload = payload[0]
        if not isinstance(payload, list) or not payload:
            raise AIServiceError('Embedding service returned an empty vector')
        try:
            return [float(v) for v in payload]
        except (TypeError, ValueError) as e:
            raise AIServiceError('Embedding service returned a non-numeric vector') from e


class ChatClient:
    """Chat completions from an OpenAI-compatible endpoint."""

    def __init__(self, api_url, api_key=None, model='google/gemini-pro', temperature=0.3,
                 timeout=30, max_tokens=1024):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens

    def complete(self, prompt: str) -> str:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        try:
            response = requests.post(
                self.api_url,
                headers=headers,
                json={
                    'model': self.model,
                    'messages': [{'role': 'user', 'content': prompt}],
                    'temperature': self.temperature,
                    'max_tokens': self.max_tokens,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AIServiceError(f'Chat completion request failed: {e}') from e

        if response.status_code != 200:
            raise AIServiceError(f'Chat completion service returned {response.status_code}')
        try:
            content = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIServiceError('Chat completion service returned an unexpected payload') from e
        if not isinstance(content, str):
            raise AIServiceError('Chat completion service returned no text')
        return content.strip()
