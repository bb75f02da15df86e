"""Injectable kind registry.

Loads the configured injectable kinds by name.  Supports the built-in
kinds (``validating_webhook``, ``mutating_webhook``, ``api_service``,
``crd_conversion``) and custom kinds via the ``ext:`` prefix.

Usage::

    from dynauth.authority.registry import load_injectables

    kinds = load_injectables(settings.authority.injectables)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from dynauth.authority.injectable import Injectable

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
BUILTIN_INJECTABLES: dict[str, tuple[str, str]] = {
    "validating_webhook": ("dynauth.authority.injectable", "ValidatingWebhookInjectable"),
    "mutating_webhook": ("dynauth.authority.injectable", "MutatingWebhookInjectable"),
    "api_service": ("dynauth.authority.injectable", "APIServiceInjectable"),
    "crd_conversion": ("dynauth.authority.injectable", "CRDConversionInjectable"),
}

_REQUIRED_METHODS = ("matches", "list", "inject_bundle")
_REQUIRED_ATTRIBUTES = ("kind", "api_version")


class InjectableLoadError(Exception):
    """An injectable kind could not be loaded or is incomplete."""


def load_injectables(names: Iterable[str]) -> list[Injectable]:
    """Load every kind in *names*, in order."""
    return [load_injectable(name) for name in names]


def load_injectable(name: str) -> Injectable:
    """Load and instantiate the injectable kind configured as *name*.

    Raises
    ------
    InjectableLoadError
        If the kind is unknown, cannot be imported or lacks a required
        capability.

    """
    if name in BUILTIN_INJECTABLES:
        mod_path, cls_name = BUILTIN_INJECTABLES[name]
        label = name
    elif name.startswith("ext:"):
        mod_path, _, cls_name = name[4:].rpartition(".")
        label = name
        if not mod_path:
            msg = (
                f"Invalid external injectable '{name[4:]}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise InjectableLoadError(msg)
    else:
        msg = (
            f"Unknown injectable kind '{name}'; "
            f"built-in options: {sorted(BUILTIN_INJECTABLES)}. "
            f"Use 'ext:mypackage.module.ClassName' for custom kinds."
        )
        raise InjectableLoadError(msg)

    try:
        module = importlib.import_module(mod_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load injectable '{label}': {exc}"
        raise InjectableLoadError(msg) from exc

    _validate_class(cls, label)
    injectable = cls()
    log.info("Loaded injectable kind %s (%s)", label, injectable.kind)
    return injectable


def _validate_class(cls: object, label: str) -> None:
    """Verify that an injectable class offers every capability."""
    if not isinstance(cls, type):
        msg = f"Injectable '{label}' is not a class"
        raise InjectableLoadError(msg)

    for method_name in _REQUIRED_METHODS:
        if not callable(getattr(cls, method_name, None)):
            msg = f"Injectable '{label}' does not implement '{method_name}()'"
            raise InjectableLoadError(msg)

    for attr in _REQUIRED_ATTRIBUTES:
        if not isinstance(getattr(cls, attr, None), str):
            msg = f"Injectable '{label}' does not define '{attr}'"
            raise InjectableLoadError(msg)
