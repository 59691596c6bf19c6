"""Token counting and estimation utilities."""

from dataclasses import dataclass


# Rough estimate for token counting of prompt text
CHARS_PER_TOKEN = 4

# Vision models bill an image as a block of tokens; this is a typical figure for a ~1024px tile
ESTIMATED_IMAGE_TOKENS = 765


@dataclass
class TokenUsage:
    """Tracks token usage across multiple LLM calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    llm_calls: int = 0

    def add_call(self, input_tokens: int, output_tokens: int) -> None:
        """Record a single LLM call's token usage."""
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.llm_calls += 1

    @property
    def total_tokens(self) -> int:
        """Total tokens used across all calls."""
        return self.input_tokens + self.output_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string.

    This is a rough estimate based on character count.
    For more accurate counts, use a tokenizer specific to the model.
    """
    return len(text) // CHARS_PER_TOKEN


def usage_from_metadata(usage_metadata: dict | None, prompt: str, completion: str) -> tuple[int, int]:
    """Pick reported token counts when the provider sends them, estimates otherwise."""
    if usage_metadata:
        input_tokens = usage_metadata.get("input_tokens")
        output_tokens = usage_metadata.get("output_tokens")
        if input_tokens is not None and output_tokens is not None:
            return int(input_tokens), int(output_tokens)
    return estimate_tokens(prompt) + ESTIMATED_IMAGE_TOKENS, estimate_tokens(completion)
