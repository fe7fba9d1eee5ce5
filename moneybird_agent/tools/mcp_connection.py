"""
Synchronous facade over the MCP streamable-HTTP client.

The pipeline stages are plain synchronous callables, while the ``mcp`` SDK
is asyncio based. The connection runs one long-lived session coroutine on
a private event loop thread and hands it requests through a queue, so the
SDK's context managers are always entered and exited by the same task.
"""

import asyncio
import concurrent.futures
import json
import threading
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from moneybird_agent.config.exception import PlatformToolError, StateConflictError, is_state_conflict
from moneybird_agent.config.logger import setup_logger

logger = setup_logger("MCPConnection", "mcp_connection.log")

_STOP = object()


def decode_tool_result(result: Any, tool_name: str) -> Any:
    """
    Turn a ``CallToolResult`` into plain Python data.

    Text content holding JSON is parsed; other text is returned as-is.
    Error results raise ``PlatformToolError`` (``StateConflictError`` for
    lifecycle rejections).
    """
    texts = [
        getattr(item, "text", "")
        for item in (getattr(result, "content", None) or [])
        if getattr(item, "type", None) == "text"
    ]

    if getattr(result, "isError", False):
        message = " ".join(texts) or f"Tool {tool_name} returned an error"
        if is_state_conflict(message):
            raise StateConflictError(message, tool_name)
        raise PlatformToolError(message, tool_name)

    structured = getattr(result, "structuredContent", None)
    if structured is not None and not texts:
        return structured.get("result", structured) if isinstance(structured, dict) else structured

    values = []
    for text in texts:
        try:
            values.append(json.loads(text))
        except (TypeError, ValueError):
            values.append(text)

    if not values:
        return None
    return values[0] if len(values) == 1 else values


class MCPConnection:
    """Open one MCP session per run: ``with MCPConnection(url, token) as conn: ...``"""

    def __init__(self, url: str, auth_token: str, timeout: float = 120.0):
        self.url = url
        self.auth_token = auth_token
        self.timeout = timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._queue: Optional[asyncio.Queue] = None
        self._session_future: Optional[concurrent.futures.Future] = None
        self._ready: Optional[concurrent.futures.Future] = None
        self._tool_names: List[str] = []

    @property
    def is_open(self) -> bool:
        return self._session_future is not None and not self._session_future.done()

    def open(self) -> "MCPConnection":
        if self.is_open:
            return self

        logger.info(f"Opening MCP session to {self.url}")
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="mcp-session", daemon=True)
        self._thread.start()

        self._ready = concurrent.futures.Future()
        self._session_future = asyncio.run_coroutine_threadsafe(self._serve(), self._loop)

        try:
            self._tool_names = self._ready.result(timeout=self.timeout)
        except Exception as e:
            logger.error(f"Could not open MCP session: {e}")
            self._shutdown_loop()
            raise PlatformToolError(f"Could not connect to platform: {e}") from e

        logger.info(f"MCP session open, {len(self._tool_names)} tools available")
        return self

    async def _serve(self):
        self._queue = asyncio.Queue()
        headers = {"Authorization": f"Bearer {self.auth_token}"}
        try:
            async with streamablehttp_client(self.url, headers=headers) as (read_stream, write_stream, _):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    listed = await session.list_tools()
                    self._ready.set_result([tool.name for tool in listed.tools])

                    while True:
                        item = await self._queue.get()
                        if item is _STOP:
                            break
                        name, arguments, reply = item
                        try:
                            reply.set_result(await session.call_tool(name, arguments))
                        except Exception as e:
                            reply.set_exception(e)
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            raise

    def list_tools(self) -> List[str]:
        if not self.is_open:
            raise PlatformToolError("MCP connection is not open")
        return list(self._tool_names)

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        if not self.is_open:
            raise PlatformToolError("MCP connection is not open", name)

        reply: concurrent.futures.Future = concurrent.futures.Future()
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (name, arguments or {}, reply))
        try:
            result = reply.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as e:
            raise PlatformToolError(f"Tool {name} timed out after {self.timeout}s", name) from e
        except PlatformToolError:
            raise
        except Exception as e:
            message = str(e)
            if is_state_conflict(message):
                raise StateConflictError(message, name) from e
            raise PlatformToolError(f"Tool {name} failed: {message}", name) from e

        return decode_tool_result(result, name)

    def close(self):
        if self._loop is None:
            return
        logger.info("Closing MCP session")
        if self.is_open:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _STOP)
            try:
                self._session_future.result(timeout=self.timeout)
            except Exception as e:
                logger.warning(f"MCP session ended with error: {e}")
        self._shutdown_loop()

    def _shutdown_loop(self):
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._loop.close()
        self._loop = None
        self._thread = None
        self._queue = None
        self._session_future = None

    def __enter__(self) -> "MCPConnection":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
