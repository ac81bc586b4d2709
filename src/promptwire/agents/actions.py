"""
Actions: the local handlers a model can call as tools.

ActionRegistry maps tool names to Python callables, advertises their JSON
schemas and renders a call's result as tool-message content. Schemas are
generated from the handler's signature and Google-style docstring unless
one is given explicitly.
"""

import difflib
import inspect
import json
import logging
import re
import threading
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Union, get_type_hints

from promptwire.agents.exceptions import ToolExecutionError
from promptwire.agents.messages import Action, Message, Role

logger = logging.getLogger(__name__)

_SECTION = re.compile(r"^(Args|Arguments|Parameters):$", re.IGNORECASE)
_END_SECTION = re.compile(r"^(Returns|Yields|Raises|Examples?):$", re.IGNORECASE)
_PARAM_LINE = re.compile(r"^\s*(\w+)\s*(?:\(([^)]+)\))?:\s*(.*)")


def parse_docstring(docstring: Optional[str]) -> Dict[str, Any]:
    """
    Split a Google-style docstring into the summary and per-parameter
    descriptions.

    Args:
        docstring: The raw docstring (may be None).

    Returns:
        ``{"description": str, "params": {name: description}}``
    """
    if not docstring:
        return {"description": "", "params": {}}

    lines = inspect.cleandoc(docstring).splitlines()
    summary: List[str] = []
    params: Dict[str, str] = {}

    index = 0
    while index < len(lines) and not _SECTION.match(lines[index].strip()):
        if _END_SECTION.match(lines[index].strip()):
            break
        summary.append(lines[index].strip())
        index += 1

    current: Optional[str] = None
    if index < len(lines) and _SECTION.match(lines[index].strip()):
        for line in lines[index + 1:]:
            if not line.strip():
                continue
            if _END_SECTION.match(line.strip()):
                break
            match = _PARAM_LINE.match(line)
            # Continuation lines are indented deeper than the parameter name
            if match and not line.startswith("        "):
                current = match.group(1)
                params[current] = match.group(3).strip()
            elif current is not None:
                params[current] = f"{params[current]} {line.strip()}".strip()

    # First paragraph only
    paragraph = []
    for line in summary:
        if not line and paragraph:
            break
        if line:
            paragraph.append(line)
    return {"description": " ".join(paragraph), "params": params}


def map_type_to_json_schema(py_type: Any) -> Dict[str, Any]:
    """JSON schema fragment for a Python type annotation."""
    origin = getattr(py_type, "__origin__", None)
    if py_type is str:
        return {"type": "string"}
    if py_type is bool:
        return {"type": "boolean"}
    if py_type is int:
        return {"type": "integer"}
    if py_type is float:
        return {"type": "number"}
    if py_type is list or origin is list:
        args = getattr(py_type, "__args__", ())
        items = map_type_to_json_schema(args[0]) if len(args) == 1 else {"type": "string"}
        return {"type": "array", "items": items}
    if py_type is dict or origin is dict:
        return {"type": "object", "additionalProperties": True}
    if origin is Literal:
        values = list(getattr(py_type, "__args__", ()))
        enum_type = "string"
        if values and isinstance(values[0], bool):
            enum_type = "boolean"
        elif values and isinstance(values[0], int):
            enum_type = "integer"
        elif values and isinstance(values[0], float):
            enum_type = "number"
        return {"type": enum_type, "enum": values}
    if origin is Union:
        non_none = [t for t in getattr(py_type, "__args__", ()) if t is not type(None)]
        if len(non_none) == 1:
            return map_type_to_json_schema(non_none[0])
        return {"anyOf": [map_type_to_json_schema(t) for t in non_none]}

    logger.warning(f"Unsupported type {py_type} for JSON schema mapping. Defaulting to 'string'.")
    return {"type": "string"}


def _is_optional(annotation: Any) -> bool:
    return getattr(annotation, "__origin__", None) is Union and type(None) in getattr(annotation, "__args__", ())


def generate_tool_schema(func: Callable, name: Optional[str] = None) -> Dict[str, Any]:
    """
    OpenAI-style tool schema for ``func``.

    Parameters without a default (and not Optional) are required;
    descriptions come from the docstring's Args section.
    """
    name = name or func.__name__
    signature = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError) as e:
        logger.warning(f"Could not resolve type hints for action '{name}': {e}. Using raw annotations.")
        hints = {param: p.annotation for param, p in signature.parameters.items()}

    doc = parse_docstring(inspect.getdoc(func))
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param_name, param in signature.parameters.items():
        if param_name in ("self", "cls") or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param_name, param.annotation)
        if annotation is inspect.Parameter.empty:
            logger.debug(f"No type hint for parameter '{param_name}' of action '{name}', using string")
            annotation = str
        properties[param_name] = {
            **map_type_to_json_schema(annotation),
            "description": doc["params"].get(param_name, f"Parameter '{param_name}'"),
        }
        if param.default is inspect.Parameter.empty and not _is_optional(annotation):
            required.append(param_name)

    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": doc["description"] or f"Executes the {name} action.",
            "parameters": parameters,
        },
    }


def render_result(result: Any) -> str:
    """Tool-message content for a handler's return value."""
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    if isinstance(result, (dict, list, tuple)):
        return json.dumps(result, ensure_ascii=False, default=str)
    return str(result)


def error_content(error: Any) -> str:
    return json.dumps({"error": str(error)}, ensure_ascii=False)


class ActionRegistry:
    """
    Named action handlers plus their tool schemas.

    Registration is expected at setup time; lookups are safe from
    concurrent conversations.
    """

    def __init__(self, handlers: Optional[Mapping[str, Callable]] = None):
        self._handlers: Dict[str, Callable] = {}
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        for name, handler in (handlers or {}).items():
            self.register(handler, name=name)

    def register(
        self,
        func: Optional[Callable] = None,
        *,
        name: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
    ):
        """
        Register ``func``. Usable directly or as a decorator, with or
        without arguments::

            @registry.register
            def add(a: float, b: float) -> float: ...
        """
        def decorator(handler: Callable) -> Callable:
            action_name = name or handler.__name__
            with self._lock:
                self._handlers[action_name] = handler
                self._schemas[action_name] = schema or generate_tool_schema(handler, action_name)
            logger.debug(f"Registered action '{action_name}'")
            return handler

        if func is not None:
            return decorator(func)
        return decorator

    @property
    def names(self) -> List[str]:
        with self._lock:
            return list(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def schema(self, name: str) -> Dict[str, Any]:
        return self._schemas[name]

    def schemas(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._schemas.values())

    def handler(self, name: str) -> Callable:
        handler = self._handlers.get(name)
        if handler is None:
            available = self.names
            suggestions = difflib.get_close_matches(name, available, n=1)
            hint = f" Did you mean '{suggestions[0]}'?" if suggestions else ""
            raise ToolExecutionError(
                f"Unknown action '{name}'.{hint}",
                tool_name=name,
                available_tools=available,
            )
        return handler

    def render(self, name: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """Run the handler for ``name`` and render its result as text."""
        handler = self.handler(name)
        if inspect.iscoroutinefunction(handler):
            raise ToolExecutionError(f"Action '{name}' is async; use arender", tool_name=name)
        try:
            result = handler(**dict(params or {}))
        except Exception as e:
            raise ToolExecutionError(
                f"Action '{name}' failed: {type(e).__name__}: {e}", tool_name=name
            ) from e
        return render_result(result)

    async def arender(self, name: str, params: Optional[Mapping[str, Any]] = None) -> str:
        handler = self.handler(name)
        try:
            result = handler(**dict(params or {}))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise ToolExecutionError(
                f"Action '{name}' failed: {type(e).__name__}: {e}", tool_name=name
            ) from e
        return render_result(result)

    def call(self, action: Action) -> Message:
        """
        Tool message answering ``action``. Failures become an error payload
        in the message content instead of an exception.
        """
        try:
            content = self.render(action.name, action.params)
        except ToolExecutionError as e:
            logger.warning(f"Action '{action.name}' ({action.id}) failed: {e.developer_message}")
            content = error_content(e.developer_message)
        return Message(role=Role.TOOL, content=content, action_id=action.id, action_name=action.name)

    async def acall(self, action: Action) -> Message:
        try:
            content = await self.arender(action.name, action.params)
        except ToolExecutionError as e:
            logger.warning(f"Action '{action.name}' ({action.id}) failed: {e.developer_message}")
            content = error_content(e.developer_message)
        return Message(role=Role.TOOL, content=content, action_id=action.id, action_name=action.name)
