"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_cycle_id: ContextVar[str] = ContextVar("cycle_id", default="")
_resource_class: ContextVar[str] = ContextVar("resource_class", default="")
_app_name: ContextVar[str] = ContextVar("app_name", default="")
_namespace: ContextVar[str] = ContextVar("namespace", default="")


def set_log_context(
    cycle_id: Optional[str] = None,
    resource_class: Optional[str] = None,
    app_name: Optional[str] = None,
    namespace: Optional[str] = None,
) -> None:
    if cycle_id is not None:
        _cycle_id.set(cycle_id)
    if resource_class is not None:
        _resource_class.set(resource_class)
    if app_name is not None:
        _app_name.set(app_name)
    if namespace is not None:
        _namespace.set(namespace)


def get_log_context() -> Dict[str, str]:
    return {
        "cycle_id": _cycle_id.get(),
        "resource_class": _resource_class.get(),
        "app_name": _app_name.get(),
        "namespace": _namespace.get(),
    }


def clear_log_context() -> None:
    _cycle_id.set("")
    _resource_class.set("")
    _app_name.set("")
    _namespace.set("")
