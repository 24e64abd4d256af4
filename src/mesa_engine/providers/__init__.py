from .openai_compat import OpenAICompatibleModel, extract_retry_after

__all__ = ["OpenAICompatibleModel", "extract_retry_after"]
