"""LLM integration: prompts, response parsing and provider backends."""
