"""
Mock language model that answers without external dependencies.
Used for testing, development, and offline runs.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Union

from .llm import ChatResult, ILanguageModel, Message

Scripted = Union[str, Exception]


class MockLanguageModel(ILanguageModel):
    """
    Deterministic language model.

    Scripted replies are returned in order; an Exception in the script is raised
    instead. Once the script is exhausted, replies are generated from the JSON
    keys the prompt asks for, so compression, folding, profile and assistant
    fact prompts all receive contract-valid JSON.
    """

    def __init__(self, responses: Optional[Iterable[Scripted]] = None, model_name: str = "mock-model"):
        super().__init__(model_name)
        self.responses: List[Scripted] = list(responses or [])
        self.calls: List[List[Message]] = []

    def queue(self, *responses: Scripted):
        self.responses.extend(responses)

    def chat(self, messages: List[Message], options: Optional[Dict[str, Any]] = None) -> ChatResult:
        self.calls.append([dict(m) for m in messages])

        if self.responses:
            reply = self.responses.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return ChatResult(text=reply, model_used=self.model_name, metadata={'scripted': True})

        return ChatResult(text=self._generate(messages), model_used=self.model_name, metadata={'scripted': False})

    def _generate(self, messages: List[Message]) -> str:
        prompt = "\n".join(m.get('content', '') for m in messages)
        last = messages[-1].get('content', '') if messages else ''
        excerpt = " ".join(last.split())[:120]

        if '"key_facts"' in prompt:
            return json.dumps({
                "summary": f"Conversation excerpt: {excerpt}",
                "key_facts": [],
                "user_intent": "general conversation",
                "emotional_tone": "neutral",
                "importance_score": 5,
                "action_items": [],
            })
        if '"key_points"' in prompt:
            return json.dumps({
                "summary": f"Long-term summary: {excerpt}",
                "key_points": [],
                "emotional_tone": "neutral",
                "importance_score": 10,
            })
        if '"personality_summary"' in prompt:
            return json.dumps({
                "personality_summary": "Curious and direct.",
                "communication_style": "concise",
                "interests": [],
                "key_topics": [],
                "emotional_baseline": "neutral",
            })
        if '"has_important_content"' in prompt:
            return json.dumps({"has_important_content": False, "items": []})

        return f"I understand. ({excerpt})" if excerpt else "I understand."
