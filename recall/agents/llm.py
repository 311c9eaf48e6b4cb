"""
Language model capability consumed by the memory manager.
The core only needs chat completion; providers live behind ILanguageModel.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import ollama

from ..core.errors import LanguageModelError
from ..util.logging import logger

Message = Dict[str, str]


@dataclass
class ChatResult:
    """Response from a language model call."""
    text: str
    model_used: str = ""
    processing_time_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ILanguageModel(ABC):
    """Abstract chat-completion capability."""

    def __init__(self, model_name: str):
        self.model_name = model_name

    @abstractmethod
    def chat(self, messages: List[Message], options: Optional[Dict[str, Any]] = None) -> ChatResult:
        """Run one completion over a role/content message list."""
        pass

    def stream_chat(self, messages: List[Message], options: Optional[Dict[str, Any]] = None,
                    on_token: Optional[Callable[[str], None]] = None) -> ChatResult:
        """Streamed completion; the default delivers the whole reply as one token."""
        result = self.chat(messages, options)
        if on_token and result.text:
            on_token(result.text)
        return result


class OllamaLanguageModel(ILanguageModel):
    """
    Chat completion against a local or remote Ollama server.
    Every call is bounded by the client timeout.
    """

    def __init__(self, model_name: str = "llama3.1:8b", host: Optional[str] = None,
                 timeout: float = 60.0, temperature: float = 0.3):
        super().__init__(model_name)
        self.host = host
        self.timeout = timeout
        self.temperature = temperature
        self._client = None

    @property
    def client(self) -> ollama.Client:
        if self._client is None:
            self._client = ollama.Client(host=self.host, timeout=self.timeout)
        return self._client

    def _options(self, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = {'temperature': self.temperature}
        if options:
            merged.update(options)
        return merged

    def chat(self, messages: List[Message], options: Optional[Dict[str, Any]] = None) -> ChatResult:
        start_time = datetime.now()
        try:
            response = self.client.chat(model=self.model_name, messages=messages, options=self._options(options))
        except ollama.ResponseError as e:
            logger.error(f"Ollama API error for model {self.model_name}: {e}")
            raise LanguageModelError(f"Ollama API error: {e}") from e
        except Exception as e:
            logger.error(f"Ollama call failed for model {self.model_name}: {e}")
            raise LanguageModelError(f"Ollama call failed: {e}") from e

        processing_time = int((datetime.now() - start_time).total_seconds() * 1000)
        content = response['message']['content'] or ''
        return ChatResult(text=content, model_used=self.model_name, processing_time_ms=processing_time)

    def stream_chat(self, messages: List[Message], options: Optional[Dict[str, Any]] = None,
                    on_token: Optional[Callable[[str], None]] = None) -> ChatResult:
        start_time = datetime.now()
        parts = []
        try:
            for part in self.client.chat(model=self.model_name, messages=messages,
                                         options=self._options(options), stream=True):
                token = part['message']['content'] or ''
                if token:
                    parts.append(token)
                    if on_token:
                        on_token(token)
        except ollama.ResponseError as e:
            logger.error(f"Ollama API error for model {self.model_name}: {e}")
            raise LanguageModelError(f"Ollama API error: {e}") from e
        except Exception as e:
            logger.error(f"Ollama stream failed for model {self.model_name}: {e}")
            raise LanguageModelError(f"Ollama stream failed: {e}") from e

        processing_time = int((datetime.now() - start_time).total_seconds() * 1000)
        return ChatResult(text="".join(parts), model_used=self.model_name, processing_time_ms=processing_time,
                          metadata={'streamed': True})

    def is_available(self) -> bool:
        """Check that the server answers and has this model."""
        try:
            models = self.client.list()
            return any(m.get('model', '').startswith(self.model_name) for m in models.get('models', []))
        except Exception:
            return False
