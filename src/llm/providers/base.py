from __future__ import annotations
from abc import ABC, abstractmethod


class LLMProvider(ABC):
    """One chat-completion backend answering a single system + user exchange."""

    name: str = "base"

    @abstractmethod
    def generate(self, *, system: str, user: str) -> str:
        """
        Return the assistant message as raw TEXT; the normalizer does the parsing.
        Raise UpstreamError when no answer could be obtained.
        """
        raise NotImplementedError
