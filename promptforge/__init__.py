"""PromptForge - multi-provider prompt enhancement engine.

Routes generative-text work across OpenAI, Anthropic, Google and Groq with
failover, response caching and an iterative quality-improvement loop.

Note: Imports are lazy so that importing a submodule does not pull in the
HTTP client and web stack. Use explicit imports where possible:
`from promptforge.service import build_service`
"""

__version__ = "0.1.0"

__all__ = ["PromptService", "build_service", "END_OF_STREAM"]


def __getattr__(name: str):
    """Lazy import of the façade."""
    if name in __all__:
        from . import service

        return getattr(service, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
