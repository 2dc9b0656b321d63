"""
LLM Providers
=============
Builds the LangChain chat model from environment variables.

Provider auto-detection priority: Groq → Azure OpenAI → OpenAI
Override with LLM_PROVIDER=groq|azure|openai to force a specific provider.

OPENAI_BASE_URL points the OpenAI provider at any OpenAI-compatible
chat-completions endpoint (a self-hosted or third-party model server).

Sampling settings come from shopping_agent.config: LLM_TEMPERATURE (0.7) and
LLM_MAX_TOKENS (5000).
"""
import logging
import os

from .config import get_max_tokens, get_temperature

logger = logging.getLogger(__name__)


def detect_provider() -> str:
    """
    Return which LLM provider to use.

    Checks LLM_PROVIDER env var first (explicit override), then falls back
    to whichever API key is present in the environment.
    """
    forced = os.getenv("LLM_PROVIDER", "").lower()
    if forced in ("groq", "azure", "openai"):
        return forced
    if os.getenv("GROQ_API_KEY"):
        return "groq"
    if os.getenv("AZURE_OPENAI_API_KEY"):
        return "azure"
    return "openai"


def build_llm():
    """
    Return a LangChain chat model for the detected provider.

    Groq   → ChatGroq  (llama-3.3-70b-versatile by default)
    Azure  → AzureChatOpenAI (temperature omitted — o-series rejects it)
    OpenAI → ChatOpenAI (gpt-4o-mini by default, OPENAI_BASE_URL honoured)
    """
    provider = detect_provider()
    logger.info("[LLM] Provider: %s", provider)

    if provider == "groq":
        from langchain_groq import ChatGroq
        return ChatGroq(
            model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            api_key=os.getenv("GROQ_API_KEY"),
            temperature=get_temperature(),
            max_tokens=get_max_tokens(),
        )

    if provider == "azure":
        from langchain_openai import AzureChatOpenAI
        return AzureChatOpenAI(
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
            azure_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o"),
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview"),
            api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            max_tokens=get_max_tokens(),
        )

    from langchain_openai import ChatOpenAI
    return ChatOpenAI(
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        api_key=os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        temperature=get_temperature(),
        max_tokens=get_max_tokens(),
    )
