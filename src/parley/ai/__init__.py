"""Model client, stream assembly, orchestration and built-in tools."""

from .client import ChatClient, build_headers, build_request_body
from .config import GenerationConfig
from .streaming import StreamAssembler

__all__ = ["ChatClient", "GenerationConfig", "StreamAssembler", "build_headers", "build_request_body"]
