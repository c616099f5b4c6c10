"""Cost calculation for LLM API calls."""

from typing import Optional


# Pricing per 1M tokens (USD, adjust as needed)
PRICING = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4": {"input": 30.00, "output": 60.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    "text-embedding-3-small": {"input": 0.02, "output": 0.00},
    "text-embedding-3-large": {"input": 0.13, "output": 0.00},
    # Default fallback
    "default": {"input": 0.50, "output": 1.50},
}


def calculate_llm_cost(
    model: str,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
    total_tokens: Optional[int] = None,
) -> float:
    """
    Calculate cost for an OpenAI API call.

    Args:
        model: Model name
        prompt_tokens: Input tokens
        completion_tokens: Output tokens
        total_tokens: Total tokens (if prompt/completion not available)

    Returns:
        Cost in USD
    """
    model_pricing = PRICING.get(model, PRICING["default"])

    if prompt_tokens is not None and completion_tokens is not None:
        input_cost = (prompt_tokens / 1_000_000) * model_pricing["input"]
        output_cost = (completion_tokens / 1_000_000) * model_pricing["output"]
        return input_cost + output_cost
    elif total_tokens is not None:
        # Estimate: 70% input, 30% output (rough approximation)
        input_tokens = int(total_tokens * 0.7)
        output_tokens = int(total_tokens * 0.3)
        input_cost = (input_tokens / 1_000_000) * model_pricing["input"]
        output_cost = (output_tokens / 1_000_000) * model_pricing["output"]
        return input_cost + output_cost

    return 0.0
