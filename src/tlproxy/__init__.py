"""tlproxy: local HTTP translation proxy that forwards game text to an OpenAI-compatible LLM."""

from .config import ProxyConfig, load_config, save_config
from .events import EventBus
from .server import TranslationServer
from .translator import TranslationPipeline

__all__ = [
    "EventBus",
    "ProxyConfig",
    "TranslationPipeline",
    "TranslationServer",
    "load_config",
    "save_config",
]
