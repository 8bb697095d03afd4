"""
MCP Protocol Engine

MCPServer validates canonical JSON-RPC requests, applies authentication and
rate limiting, routes by method name to the tool/resource/prompt registries,
runs the registered handler under a timeout and assembles the response
envelope. Servers are process-wide singletons addressed by name; each one is
fully isolated from the others.

Request lifecycle:
    Received -> Parsed -> Validated -> Authorized -> RateChecked
    -> Routed -> Executed -> Responded
Any stage can short-circuit to an error envelope. Nothing raised inside the
pipeline escapes dispatch().
"""

import asyncio
import functools
import inspect
import json
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from common.config import DuplicatePolicy, MCPSettings
from common.logging import get_logger
from .access_control import ApiKeyValidator, Authenticator, CorsPolicy, header
from .definitions import (
    ArgumentValidationError,
    PromptArgument,
    PromptDefinition,
    PromptHandler,
    ResourceDefinition,
    ResourceHandler,
    ToolDefinition,
    ToolHandler,
    ToolParameter,
)
from .jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    RATE_LIMIT_EXCEEDED,
    TIMEOUT_ERROR,
    JSONRPCHandler,
    JSONRPCNotification,
    MCPCapabilities,
    MCPContentTypes,
    MCPError,
    MCPImplementation,
    MCPInitializeResult,
    MCPListParams,
    MCPMethods,
    MCPPromptsGetParams,
    MCPResourcesReadParams,
    MCPToolsCallParams,
    batch_payload,
    error_payload,
    json_safe,
)
from .normalizer import CanonicalRequest, Payload, RequestNormalizer, Transport, client_identifier
from .rate_limiter import FixedWindowRateLimiter
from .registry import Registry
from .stats import StatsCollector

logger = get_logger(__name__)

# MCP Protocol version
MCP_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

NotificationListener = Callable[[JSONRPCNotification], None]
RouteHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class DispatchResult:
    """Outcome of one inbound message, ready for a transport to serialize."""

    response: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)


# Process defaults for newly created servers; main.py replaces them from config.yaml
_default_settings = MCPSettings()


def configure_defaults(settings: MCPSettings) -> None:
    """Set the settings used for servers created without explicit settings."""
    global _default_settings
    _default_settings = settings


class MCPServer:
    """
    A named MCP server instance.

    Owns a tool, resource and prompt registry, a statistics collector and
    the access-control gates. Configuration methods return the server so
    calls can be chained.
    """

    _instances: Dict[str, "MCPServer"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, name: str = "default", settings: Optional[MCPSettings] = None):
        self.name = name
        self.settings = settings or _default_settings.model_copy()

        s = self.settings
        self.description = s.description
        self.version = s.version
        self.tools: Registry[ToolDefinition] = Registry("tool", s.duplicate_policy)
        self.resources: Registry[ResourceDefinition] = Registry("resource", s.duplicate_policy)
        self.prompts: Registry[PromptDefinition] = Registry("prompt", s.duplicate_policy)
        self.stats = StatsCollector(enabled=s.stats_enabled)
        self.cors = CorsPolicy(s.cors)
        self.auth = Authenticator(s.basic_auth_username, s.basic_auth_password)
        self.rate_limiter = FixedWindowRateLimiter(s.rate_limit_per_minute)
        self.rate_limit_before_auth = s.rate_limit_before_auth
        self.normalizer = RequestNormalizer(s.max_request_body_size)
        self.request_timeout: Optional[float] = s.request_timeout or None
        self.page_size = s.page_size

        # One bounded pool per capability: hung handlers of one tool cannot starve the rest
        self._executors: Dict[Tuple[str, str], ThreadPoolExecutor] = {}
        self._executors_lock = threading.Lock()
        self._listeners: List[NotificationListener] = []

        self._routes: Dict[str, RouteHandler] = {
            MCPMethods.INITIALIZE: self._handle_initialize,
            MCPMethods.PING: self._handle_ping,
            MCPMethods.INITIALIZED: self._handle_initialized,
            MCPMethods.CANCEL: self._handle_cancel,
            MCPMethods.TOOLS_LIST: self._handle_tools_list,
            MCPMethods.TOOLS_CALL: self._handle_tools_call,
            MCPMethods.RESOURCES_LIST: self._handle_resources_list,
            MCPMethods.RESOURCES_READ: self._handle_resources_read,
            MCPMethods.PROMPTS_LIST: self._handle_prompts_list,
            MCPMethods.PROMPTS_GET: self._handle_prompts_get,
        }

        logger.info(
            event="mcp_server_initialized",
            server=name,
            cors_enabled=self.cors.enabled,
            auth_enabled=self.auth.enabled,
            rate_limit_per_minute=self.rate_limiter.limit_per_minute,
            request_timeout=self.request_timeout,
        )

    # Named instances

    @classmethod
    def get_instance(
        cls, name: str = "default", settings: Optional[MCPSettings] = None, force: bool = False
    ) -> "MCPServer":
        """Return the server registered under name, creating (or rebuilding) it."""
        with cls._instances_lock:
            existing = cls._instances.get(name)
            if existing is not None and not force:
                return existing

            server = cls(name, settings)
            cls._instances[name] = server

        if existing is not None:
            existing.shutdown()
            logger.info(event="mcp_server_rebuilt", server=name)
        return server

    @classmethod
    def find_instance(cls, name: str) -> Optional["MCPServer"]:
        """Existing server registered under name, without creating one."""
        return cls._instances.get(name)

    @classmethod
    def has_instance(cls, name: str) -> bool:
        return name in cls._instances

    @classmethod
    def remove_instance(cls, name: str) -> bool:
        with cls._instances_lock:
            server = cls._instances.pop(name, None)
        if server is None:
            return False
        server.shutdown()
        return True

    @classmethod
    def get_instance_names(cls) -> List[str]:
        return sorted(cls._instances)

    @classmethod
    def clear_all_instances(cls) -> None:
        with cls._instances_lock:
            servers = list(cls._instances.values())
            cls._instances.clear()
        for server in servers:
            server.shutdown()

    def shutdown(self) -> None:
        """Stop accepting handler work; running handler threads are not interrupted."""
        with self._executors_lock:
            executors = list(self._executors.values())
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=False, cancel_futures=True)

    # Configuration

    def set_description(self, description: str) -> "MCPServer":
        self.description = description
        return self

    def set_version(self, version: str) -> "MCPServer":
        self.version = version
        return self

    def with_cors(self, origins: Union[str, List[str]]) -> "MCPServer":
        self.cors = CorsPolicy(origins)
        return self

    def with_basic_auth(self, username: str, password: str) -> "MCPServer":
        self.auth.basic_username = username
        self.auth.basic_password = password
        return self

    def with_api_key_provider(self, validator: ApiKeyValidator) -> "MCPServer":
        self.auth.api_key_validator = validator
        return self

    def with_body_limit(self, max_bytes: int) -> "MCPServer":
        self.normalizer.max_body_size = max_bytes
        return self

    def with_rate_limit(
        self, per_minute: int, before_auth: Optional[bool] = None
    ) -> "MCPServer":
        self.rate_limiter = FixedWindowRateLimiter(per_minute)
        if before_auth is not None:
            self.rate_limit_before_auth = before_auth
        return self

    def with_timeout(self, seconds: Optional[float]) -> "MCPServer":
        self.request_timeout = seconds or None
        return self

    def set_duplicate_policy(self, policy: DuplicatePolicy) -> "MCPServer":
        for registry in (self.tools, self.resources, self.prompts):
            registry.duplicate_policy = DuplicatePolicy(policy)
        return self

    def enable_stats(self) -> "MCPServer":
        self.stats.enable()
        return self

    def disable_stats(self) -> "MCPServer":
        self.stats.disable()
        return self

    def reset_stats(self) -> "MCPServer":
        self.stats.reset()
        return self

    def is_stats_enabled(self) -> bool:
        return self.stats.enabled

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.get_stats()

    def get_stats_summary(self) -> Dict[str, Any]:
        return self.stats.get_summary()

    def has_basic_auth(self) -> bool:
        return self.auth.has_basic_auth

    def get_basic_auth_username(self) -> Optional[str]:
        return self.auth.basic_username

    def verify_basic_auth(self, authorization: Optional[str]) -> bool:
        return self.auth.verify_basic_auth(authorization)

    def has_api_key_provider(self) -> bool:
        return self.auth.has_api_key_validator

    def verify_api_key(self, api_key: str, request_data: Optional[Dict[str, Any]] = None) -> bool:
        return self.auth.verify_api_key(api_key, request_data or {})

    def is_cors_allowed(self, origin: str) -> bool:
        return self.cors.is_allowed(origin)

    def get_cors_allowed_origins(self) -> List[str]:
        return list(self.cors.origins)

    def get_max_request_body_size(self) -> int:
        return self.normalizer.max_body_size

    def server_info(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "description": self.description}

    def capabilities(self) -> MCPCapabilities:
        return MCPCapabilities(
            tools={"listChanged": True},
            resources={"subscribe": False, "listChanged": True},
            prompts={"listChanged": True},
        )

    async def health_check(self) -> Dict[str, Any]:
        """Health check for the MCP server."""
        return {
            "status": "healthy",
            "server": self.server_info(),
            "protocol_version": MCP_PROTOCOL_VERSION,
            "tools_count": self.tools.count(),
            "resources_count": self.resources.count(),
            "prompts_count": self.prompts.count(),
            "stats": self.stats.get_summary() if self.stats.enabled else None,
        }

    # Server-initiated notifications

    def add_notification_listener(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def remove_notification_listener(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        notification = JSONRPCHandler.create_notification(method, params)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.warning(event="notification_listener_error", method=method, error=str(e))

    # Tools

    def register_tool(
        self,
        tool: Optional[ToolDefinition] = None,
        *,
        name: Optional[str] = None,
        description: str = "",
        handler: Optional[ToolHandler] = None,
        parameters: Optional[List[Union[ToolParameter, Dict[str, Any]]]] = None,
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> "MCPServer":
        """
        Register a tool, either as a ToolDefinition or from keyword arguments.

        `parameters` takes ToolParameter objects (or dicts of their fields);
        `input_schema` takes a JSON Schema object instead.
        """
        if tool is None:
            if not name or handler is None:
                raise ValueError("register_tool needs a ToolDefinition or name and handler")
            if input_schema is not None:
                tool = ToolDefinition.from_schema(name, description, input_schema, handler)
            else:
                tool = ToolDefinition(
                    name=name,
                    description=description,
                    parameters=[
                        p if isinstance(p, ToolParameter) else ToolParameter(**p)
                        for p in (parameters or [])
                    ],
                    handler=handler,
                )

        self.tools.register(tool)
        self._notify(MCPMethods.TOOLS_LIST_CHANGED)
        return self

    def register_tools(self, tools: List[ToolDefinition]) -> "MCPServer":
        for tool in tools:
            self.register_tool(tool)
        return self

    def remove_tool(self, name: str) -> bool:
        removed = self.tools.remove(name)
        if removed:
            self._notify(MCPMethods.TOOLS_LIST_CHANGED)
        return removed

    def clear_tools(self) -> "MCPServer":
        self.tools.clear()
        self._notify(MCPMethods.TOOLS_LIST_CHANGED)
        return self

    def has_tool(self, name: str) -> bool:
        return self.tools.has(name)

    def get_tool_count(self) -> int:
        return self.tools.count()

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_mcp() for tool in self.tools.list()]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Validate arguments and run a tool.

        Raises:
            MCPError: METHOD_NOT_FOUND, INVALID_PARAMS, INTERNAL_ERROR or TIMEOUT_ERROR
        """
        tool = self.tools.get(name)
        if tool is None:
            raise MCPError(METHOD_NOT_FOUND, f"Tool '{name}' not found", data={"name": name})

        arguments = arguments or {}
        try:
            tool.validate_arguments(arguments)
        except ArgumentValidationError as e:
            raise MCPError(INVALID_PARAMS, f"Invalid arguments for tool '{name}'", data=str(e))

        self.stats.record_tool_invocation(name)
        result = await self._invoke("tool", name, tool.handler, arguments)
        return self._tool_result(result)

    @staticmethod
    def _tool_result(result: Any) -> Dict[str, Any]:
        """Wrap a handler return value as MCP tool content."""
        if isinstance(result, dict) and isinstance(result.get("content"), list):
            return {"isError": False, **result}

        structured = None
        if result is None:
            text = ""
        elif isinstance(result, str):
            text = result
        else:
            text = json.dumps(result, default=str)
            if isinstance(result, dict):
                structured = json.loads(text)

        payload: Dict[str, Any] = {
            "content": [{"type": MCPContentTypes.TEXT, "text": text}],
            "isError": False,
        }
        if structured is not None:
            payload["structuredContent"] = structured
        return payload

    # Resources

    def register_resource(
        self,
        resource: Optional[ResourceDefinition] = None,
        *,
        uri: Optional[str] = None,
        name: str = "",
        description: str = "",
        mime_type: str = "text/plain",
        handler: Optional[ResourceHandler] = None,
    ) -> "MCPServer":
        if resource is None:
            if not uri or handler is None:
                raise ValueError("register_resource needs a ResourceDefinition or uri and handler")
            resource = ResourceDefinition(
                uri=uri, name=name, description=description, mime_type=mime_type, handler=handler
            )

        self.resources.register(resource)
        self._notify(MCPMethods.RESOURCES_LIST_CHANGED)
        return self

    def remove_resource(self, uri: str) -> bool:
        removed = self.resources.remove(uri)
        if removed:
            self._notify(MCPMethods.RESOURCES_LIST_CHANGED)
        return removed

    def clear_resources(self) -> "MCPServer":
        self.resources.clear()
        self._notify(MCPMethods.RESOURCES_LIST_CHANGED)
        return self

    def has_resource(self, uri: str) -> bool:
        return self.resources.has(uri)

    def get_resource_count(self) -> int:
        return self.resources.count()

    def list_resources(self) -> List[Dict[str, Any]]:
        return [resource.to_mcp() for resource in self.resources.list()]

    async def read_resource(self, uri: str) -> Dict[str, Any]:
        resource = self.resources.get(uri)
        if resource is None:
            raise MCPError(METHOD_NOT_FOUND, f"Resource '{uri}' not found", data={"uri": uri})

        self.stats.record_resource_read(uri)
        content = await self._invoke("resource", uri, resource.handler)
        return resource.render_contents(content)

    # Prompts

    def register_prompt(
        self,
        prompt: Optional[PromptDefinition] = None,
        *,
        name: Optional[str] = None,
        description: str = "",
        arguments: Optional[List[Union[PromptArgument, Dict[str, Any]]]] = None,
        handler: Optional[PromptHandler] = None,
    ) -> "MCPServer":
        if prompt is None:
            if not name or handler is None:
                raise ValueError("register_prompt needs a PromptDefinition or name and handler")
            prompt = PromptDefinition(
                name=name,
                description=description,
                arguments=[
                    a if isinstance(a, PromptArgument) else PromptArgument(**a)
                    for a in (arguments or [])
                ],
                handler=handler,
            )

        self.prompts.register(prompt)
        self._notify(MCPMethods.PROMPTS_LIST_CHANGED)
        return self

    def remove_prompt(self, name: str) -> bool:
        removed = self.prompts.remove(name)
        if removed:
            self._notify(MCPMethods.PROMPTS_LIST_CHANGED)
        return removed

    def clear_prompts(self) -> "MCPServer":
        self.prompts.clear()
        self._notify(MCPMethods.PROMPTS_LIST_CHANGED)
        return self

    def has_prompt(self, name: str) -> bool:
        return self.prompts.has(name)

    def get_prompt_count(self) -> int:
        return self.prompts.count()

    def list_prompts(self) -> List[Dict[str, Any]]:
        return [prompt.to_mcp() for prompt in self.prompts.list()]

    async def get_prompt(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        prompt = self.prompts.get(name)
        if prompt is None:
            raise MCPError(METHOD_NOT_FOUND, f"Prompt '{name}' not found", data={"name": name})

        arguments = arguments or {}
        try:
            prompt.validate_arguments(arguments)
        except ArgumentValidationError as e:
            raise MCPError(INVALID_PARAMS, f"Invalid arguments for prompt '{name}'", data=str(e))

        self.stats.record_prompt_generation(name)
        messages = await self._invoke("prompt", name, prompt.handler, arguments)
        try:
            return prompt.render_messages(messages)
        except TypeError as e:
            raise MCPError(INTERNAL_ERROR, f"Prompt '{name}' failed", data=str(e))

    # Handler execution

    def _executor_for(self, kind: str, name: str) -> ThreadPoolExecutor:
        key = (kind, name)
        with self._executors_lock:
            executor = self._executors.get(key)
            if executor is None:
                executor = ThreadPoolExecutor(
                    max_workers=self.settings.max_workers,
                    thread_name_prefix=f"mcp-{self.name}-{kind}",
                )
                self._executors[key] = executor
            return executor

    async def _invoke(self, kind: str, name: str, handler: Callable[..., Any], *args: Any) -> Any:
        """
        Run a user handler under the request timeout.

        Sync handlers run on the capability's own worker pool so a slow one
        cannot stall the event loop or other capabilities. A timed-out sync
        handler keeps its worker thread until it returns; only the wait is
        abandoned.
        """
        loop = asyncio.get_running_loop()

        async def run() -> Any:
            if inspect.iscoroutinefunction(handler):
                return await handler(*args)
            result = await loop.run_in_executor(
                self._executor_for(kind, name), functools.partial(handler, *args)
            )
            if inspect.isawaitable(result):
                result = await result
            return result

        try:
            return await asyncio.wait_for(run(), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                event="handler_timeout", kind=kind, name=name, timeout=self.request_timeout
            )
            raise MCPError(
                TIMEOUT_ERROR,
                f"{kind.capitalize()} '{name}' timed out after {self.request_timeout}s",
                data={"timeout": self.request_timeout},
            )
        except MCPError:
            raise
        except Exception as e:
            logger.warning(event="handler_error", kind=kind, name=name, error=str(e))
            raise MCPError(INTERNAL_ERROR, f"{kind.capitalize()} '{name}' failed", data=str(e))

    # Request pipeline

    async def handle_request(
        self,
        payload: Payload,
        headers: Optional[Mapping[str, str]] = None,
        transport: Transport = Transport.DIRECT,
    ) -> Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]:
        """Process one payload and return only the response envelope (None for notifications)."""
        result = await self.dispatch(payload, transport=transport, headers=headers)
        return result.response

    async def dispatch(
        self,
        payload: Payload,
        transport: Transport = Transport.DIRECT,
        headers: Optional[Mapping[str, str]] = None,
        remote_addr: Optional[str] = None,
    ) -> DispatchResult:
        """Run a payload (single request or batch) through the full pipeline."""
        headers = dict(headers or {})
        cors_headers = self.cors.response_headers(header(headers, "Origin"))
        client_id = client_identifier(transport, headers, remote_addr)
        start = time.perf_counter()

        try:
            if transport == Transport.HTTP:
                self.normalizer.check_content_type(headers)
            message = self.normalizer.parse(payload)
            if JSONRPCHandler.is_batch(message) and not message:
                raise MCPError(INVALID_REQUEST, "Invalid Request: empty batch")
        except MCPError as e:
            self._record(None, start, e.code)
            return DispatchResult(
                error_payload(None, e), e.http_status, {**cors_headers, **e.headers}
            )

        if JSONRPCHandler.is_batch(message):
            results = await asyncio.gather(
                *(self._process(item, transport, headers, client_id) for item in message)
            )
            replies = [r.response for r in results if r.response is not None]
            batch_headers = dict(cors_headers)
            for r in results:
                batch_headers.update(r.headers)
            return DispatchResult(batch_payload(replies), 200 if replies else 202, batch_headers)

        result = await self._process(message, transport, headers, client_id)
        result.headers = {**cors_headers, **result.headers}
        return result

    async def _process(
        self,
        message: Any,
        transport: Transport,
        headers: Dict[str, str],
        client_id: str,
    ) -> DispatchResult:
        start = time.perf_counter()
        request: Optional[CanonicalRequest] = None

        try:
            request = self.normalizer.normalize(message, transport, headers, client_id)
            self._admit(request)
            result = await self._route(request)
        except MCPError as e:
            return self._error_result(request, message, start, e)
        except Exception as e:
            logger.error(
                event="request_handler_error",
                method=request.method if request else None,
                error=str(e),
            )
            return self._error_result(
                request, message, start, MCPError(INTERNAL_ERROR, "Internal error", data=str(e))
            )

        self._record(request.method, start, None)
        if request.is_notification:
            return DispatchResult(None, 202)

        response = JSONRPCHandler.dump(JSONRPCHandler.create_response(request.id, result))
        return DispatchResult(response, 200)

    def _error_result(
        self,
        request: Optional[CanonicalRequest],
        message: Any,
        start: float,
        error: MCPError,
    ) -> DispatchResult:
        method = request.method if request else None
        if method is None and isinstance(message, dict) and isinstance(message.get("method"), str):
            method = message["method"]
        self._record(method, start, error.code)

        if request is not None and request.is_notification:
            logger.debug(event="notification_failed", method=method, code=error.code)
            status = error.http_status if error.http_status >= 400 else 202
            return DispatchResult(None, status, error.headers)

        request_id = request.id if request is not None else error.request_id
        return DispatchResult(error_payload(request_id, error), error.http_status, error.headers)

    def _record(self, method: Optional[str], start: float, error_code: Optional[int]) -> None:
        duration_ms = (time.perf_counter() - start) * 1000
        self.stats.record_request(method, duration_ms, error_code)
        logger.debug(
            event="jsonrpc_request_completed",
            server=self.name,
            method=method,
            elapsed_ms=round(duration_ms, 2),
            error_code=error_code,
        )

    def _admit(self, request: CanonicalRequest) -> None:
        """Authentication and rate limiting, in the configured order."""
        if self.rate_limit_before_auth:
            self._check_rate_limit(request)
            self._check_auth(request)
        else:
            self._check_auth(request)
            self._check_rate_limit(request)

    def _check_auth(self, request: CanonicalRequest) -> None:
        # stdio and in-process callers are local; only HTTP requests carry credentials
        if request.transport != Transport.HTTP or not self.auth.enabled:
            return
        if not self.auth.authenticate(request.headers, request.request_data()):
            logger.warning(event="authentication_failed", server=self.name, client=request.client_id)
            raise MCPError(
                INVALID_REQUEST,
                "Unauthorized",
                http_status=401,
                headers=self.auth.challenge_headers(),
            )

    def _check_rate_limit(self, request: CanonicalRequest) -> None:
        result = self.rate_limiter.check(request.client_id)
        if not result.allowed:
            retry_after = math.ceil(result.retry_after or 0)
            raise MCPError(
                RATE_LIMIT_EXCEEDED,
                "Rate limit exceeded",
                data={"limit": self.rate_limiter.limit_per_minute, "retryAfter": retry_after},
                headers={"Retry-After": str(retry_after)},
            )

    async def _route(self, request: CanonicalRequest) -> Any:
        handler = self._routes.get(request.method)
        if handler is None:
            raise MCPError(METHOD_NOT_FOUND, f"Method '{request.method}' not found")
        result = await handler(request.params or {})
        try:
            return json_safe(result)
        except (TypeError, ValueError) as e:
            logger.warning(event="result_not_serializable", method=request.method, error=str(e))
            raise MCPError(INTERNAL_ERROR, "Result is not JSON serializable", data=str(e))

    @staticmethod
    def _parse_params(model: Type[BaseModel], params: Dict[str, Any]) -> Any:
        try:
            return model.model_validate(params)
        except ValidationError as e:
            raise MCPError(INVALID_PARAMS, "Invalid params", data=json.loads(e.json(include_url=False)))

    def _paginate(self, items: List[Any], params: Dict[str, Any]) -> Tuple[List[Any], Optional[str]]:
        """Cursor-based pagination; the cursor is the start offset."""
        list_params = self._parse_params(MCPListParams, params)
        start_index = 0
        if list_params.cursor:
            try:
                start_index = int(list_params.cursor)
            except ValueError:
                start_index = -1
            if start_index < 0:
                raise MCPError(INVALID_PARAMS, "Invalid cursor format")

        end_index = start_index + self.page_size
        next_cursor = str(end_index) if end_index < len(items) else None
        return items[start_index:end_index], next_cursor

    def _page(self, key: str, items: List[Any], params: Dict[str, Any]) -> Dict[str, Any]:
        page, next_cursor = self._paginate(items, params)
        result: Dict[str, Any] = {key: page}
        if next_cursor is not None:
            result["nextCursor"] = next_cursor
        return result

    # Method handlers

    async def _handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Capability negotiation."""
        client_version = params.get("protocolVersion")
        if client_version in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = client_version
        else:
            if client_version:
                logger.warning(
                    event="protocol_version_mismatch",
                    client_version=client_version,
                    server_version=MCP_PROTOCOL_VERSION,
                )
            protocol_version = MCP_PROTOCOL_VERSION

        result = MCPInitializeResult(
            protocolVersion=protocol_version,
            capabilities=self.capabilities(),
            serverInfo=MCPImplementation(name=self.name, version=self.version),
            instructions=self.description or None,
        )

        logger.info(
            event="client_initialized",
            server=self.name,
            client_info=params.get("clientInfo"),
            protocol_version=protocol_version,
        )
        return result.model_dump(exclude_none=True)

    async def _handle_ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _handle_initialized(self, params: Dict[str, Any]) -> None:
        logger.info(event="client_ready", server=self.name)

    async def _handle_cancel(self, params: Dict[str, Any]) -> None:
        # Handlers are not interruptible; the cancellation is only recorded
        logger.info(event="request_cancelled", request_id=params.get("requestId"))

    async def _handle_tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._page("tools", self.list_tools(), params)

    async def _handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        call = self._parse_params(MCPToolsCallParams, params)
        return await self.call_tool(call.name, call.arguments or {})

    async def _handle_resources_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._page("resources", self.list_resources(), params)

    async def _handle_resources_read(self, params: Dict[str, Any]) -> Dict[str, Any]:
        read = self._parse_params(MCPResourcesReadParams, params)
        return await self.read_resource(read.uri)

    async def _handle_prompts_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._page("prompts", self.list_prompts(), params)

    async def _handle_prompts_get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        get = self._parse_params(MCPPromptsGetParams, params)
        return await self.get_prompt(get.name, get.arguments or {})


def get_mcp_server(
    name: str = "default",
    force: bool = False,
    settings: Optional[MCPSettings] = None,
    **overrides: Any,
) -> MCPServer:
    """
    Get or create the named MCP server instance.

    Keyword overrides are applied on top of the default settings when the
    server is created; they are ignored when an existing instance is returned.
    """
    if settings is None and overrides:
        settings = _default_settings.model_copy(update=overrides)
    return MCPServer.get_instance(name, settings=settings, force=force)
