"""
discovery.py - Sources that enumerate handler descriptors for a namespace.

The builder never looks for handler types itself; it only consumes the
descriptors produced here. Three sources are provided:

  - StaticRegistryDiscovery: an in-process registry filled explicitly or with
    a class decorator.
  - ModuleScanDiscovery: imports a module or package and reads either a
    module-level CHAIN_ELEMENTS declaration or the classes marked with
    `chain_element`.
  - ManifestDiscovery: reads a JSON manifest mapping namespaces to dotted
    handler type paths.

Every failure to read a namespace is reported as DiscoveryError.
"""

from __future__ import annotations

import importlib
import inspect
import json
import logging
import os
import pkgutil
from abc import ABC, abstractmethod
from types import ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from cor_chain.descriptor import Descriptor, element_marker
from cor_chain.errors import DiscoveryError
from cor_chain.handler import Handler

logger = logging.getLogger(__name__)

__all__ = [
    "Discovery",
    "StaticRegistryDiscovery",
    "ModuleScanDiscovery",
    "ManifestDiscovery",
    "ManifestElement",
    "DECLARATION_ATTR",
    "load_namespace",
    "resolve_type",
    "scan_handler_types",
]

T = TypeVar("T", bound=type)

# Module-level list of Descriptor objects that overrides class markers.
DECLARATION_ATTR = "CHAIN_ELEMENTS"


class Discovery(ABC):
    """Enumerates the descriptors that make up the chain of a namespace."""

    @abstractmethod
    def discover(self, namespace: str) -> List[Descriptor]:
        """
        :param namespace: Name of the source to enumerate.
        :return: Descriptors in discovery order (may be empty).
        :raises DiscoveryError: If the namespace is absent or unreadable.
        """


# ---------- Module helpers ----------

def load_namespace(namespace: str) -> List[ModuleType]:
    """
    Imports a module, or a package together with its direct submodules.

    Packages are not searched recursively. Submodules are returned in name order
    after the package itself.

    :param namespace: Absolute dotted module path.
    :return: The imported modules.
    :raises DiscoveryError: If the module or one of its submodules cannot be imported.
    """
    if not namespace or namespace.startswith("."):
        raise DiscoveryError(f"Invalid namespace: {namespace!r}", namespace=namespace)

    root = _import(namespace, namespace)
    modules = [root]
    search_path = getattr(root, "__path__", None)
    if search_path is not None:
        # A namespace package may span several directories; each name counts once.
        names = sorted({info.name for info in pkgutil.iter_modules(search_path)})
        modules.extend(_import(f"{namespace}.{name}", namespace) for name in names)
    return modules


def _import(module_path: str, namespace: str) -> ModuleType:
    try:
        return importlib.import_module(module_path)
    except ModuleNotFoundError as exc:
        raise DiscoveryError(f"Namespace not found: {module_path}", namespace=namespace, cause=exc) from exc
    except ImportError as exc:
        raise DiscoveryError(f"Import error loading {module_path}: {exc}", namespace=namespace, cause=exc) from exc
    except Exception as exc:
        # Syntax errors and anything raised by the module body.
        raise DiscoveryError(f"Loading {module_path} failed: {exc!r}", namespace=namespace, cause=exc) from exc


def _defined_classes(module: ModuleType) -> List[type]:
    """Classes defined (not merely imported) in the module, in definition order."""
    return [obj for obj in vars(module).values()
            if inspect.isclass(obj) and obj.__module__ == module.__name__]


def resolve_type(class_path: str) -> Any:
    """
    Imports a class from its fully qualified path (e.g. 'pkg.handlers.AuthHandler').

    :param class_path: Dotted module path followed by the class name.
    :return: The resolved class.
    :raises DiscoveryError: If the module or attribute cannot be found.
    """
    if "." not in class_path:
        raise DiscoveryError(f"Invalid class path '{class_path}': must be fully qualified")
    module_path, class_name = class_path.rsplit(".", 1)
    module = _import(module_path, module_path)
    try:
        return getattr(module, class_name)
    except AttributeError as exc:
        raise DiscoveryError(
            f"Class '{class_name}' not found in module '{module_path}'", namespace=module_path, cause=exc
        ) from exc


def scan_handler_types(namespace: str, base: type = Handler) -> List[type]:
    """
    Lists the concrete subclasses of `base` defined in a namespace.

    Abstract classes and `base` itself are skipped. Order: module name, then
    definition order inside each module.

    :param namespace: Module or package to scan.
    :param base: Interface the classes must implement.
    :return: Handler types, ready for explicit-order building.
    :raises DiscoveryError: If the namespace cannot be imported.
    """
    found: List[type] = []
    for module in load_namespace(namespace):
        for cls in _defined_classes(module):
            if cls is not base and issubclass(cls, base) and not inspect.isabstract(cls):
                found.append(cls)
    logger.debug("Scanned %d handler type(s) in %s", len(found), namespace)
    return found


# ---------- Discovery implementations ----------

class StaticRegistryDiscovery(Discovery):
    """
    Registry of descriptors keyed by namespace, filled at import time.

    Usage:
        registry = StaticRegistryDiscovery()

        @registry.element("checkout", priority=1)
        class PaymentHandler(HandlerEngine): ...

        registry.discover("checkout")
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, List[Descriptor]] = {}

    def register(self, namespace: str, type_id: Any, priority: int = 0, initializer_ref: str = "") -> Descriptor:
        """
        Adds one descriptor to a namespace.

        :param namespace: Namespace the handler belongs to.
        :param type_id: Handler type identifier.
        :param priority: Position key; lower values come earlier.
        :param initializer_ref: Optional initializer accessor name.
        :return: The registered descriptor.
        """
        descriptor = Descriptor(type_id=type_id, priority=priority, initializer_ref=initializer_ref)
        self._namespaces.setdefault(namespace, []).append(descriptor)
        return descriptor

    def element(self, namespace: str, priority: int = 0, initializer_ref: str = "") -> Callable[[T], T]:
        """
        Class decorator form of `register`.

        :return: Decorator returning the class unchanged.
        """

        def decorate(cls: T) -> T:
            self.register(namespace, cls, priority=priority, initializer_ref=initializer_ref)
            return cls

        return decorate

    def discover(self, namespace: str) -> List[Descriptor]:
        try:
            return list(self._namespaces[namespace])
        except KeyError as exc:
            raise DiscoveryError(f"Namespace not registered: {namespace}", namespace=namespace, cause=exc) from exc

    def namespaces(self) -> List[str]:
        """
        :return: Registered namespace names, in registration order.
        """
        return list(self._namespaces)


class ModuleScanDiscovery(Discovery):
    """
    Reads chain elements from a Python module or package.

    A module-level CHAIN_ELEMENTS list of descriptors wins over class markers:
    if any scanned module declares one, only the declarations are used.
    Otherwise every non-abstract class marked with `chain_element` becomes a
    descriptor.
    """

    def discover(self, namespace: str) -> List[Descriptor]:
        modules = load_namespace(namespace)

        declared = [m for m in modules if hasattr(m, DECLARATION_ATTR)]
        if declared:
            descriptors = [d for m in declared for d in self._declarations(m, namespace)]
            logger.debug("Discovered %d declared element(s) in %s", len(descriptors), namespace)
            return descriptors

        descriptors = []
        for module in modules:
            for cls in _defined_classes(module):
                marker = element_marker(cls)
                if marker is not None and not inspect.isabstract(cls):
                    descriptors.append(marker.describe(cls))
        logger.debug("Discovered %d marked element(s) in %s", len(descriptors), namespace)
        return descriptors

    @staticmethod
    def _declarations(module: ModuleType, namespace: str) -> List[Descriptor]:
        entries = getattr(module, DECLARATION_ATTR)
        try:
            items = list(entries)
        except TypeError as exc:
            raise DiscoveryError(
                f"{module.__name__}.{DECLARATION_ATTR} is not a sequence", namespace=namespace, cause=exc
            ) from exc
        for item in items:
            if not isinstance(item, Descriptor):
                raise DiscoveryError(
                    f"{module.__name__}.{DECLARATION_ATTR} contains {item!r}, expected Descriptor",
                    namespace=namespace,
                )
        return items


class ManifestElement(BaseModel):
    """
    One element of a manifest namespace.

    :param type: Fully qualified path of the handler class.
    :param priority: Position key; lower values come earlier.
    :param initializer: Optional initializer accessor name.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: StrictStr
    priority: StrictInt = 0
    initializer: StrictStr = ""


class ManifestDiscovery(Discovery):
    """
    Reads descriptors from a JSON manifest.

    Manifest shape:
        {
          "checkout": [
            {"type": "shop.handlers.PaymentHandler", "priority": 1},
            {"type": "shop.handlers.AuditHandler", "priority": 9, "initializer": "factory"}
          ]
        }

    :param source: Path of a JSON file, or an already loaded mapping.
    """

    def __init__(self, source: Union[str, "os.PathLike[str]", Mapping[str, Any]]) -> None:
        self._source = source
        self._manifest: Optional[Mapping[str, Any]] = None

    def discover(self, namespace: str) -> List[Descriptor]:
        manifest = self._load()
        if namespace not in manifest:
            raise DiscoveryError(f"Namespace not found in manifest: {namespace}", namespace=namespace)
        entries = manifest[namespace]
        if not isinstance(entries, list):
            raise DiscoveryError(f"Manifest entry for {namespace} must be a list", namespace=namespace)
        descriptors = [self._descriptor(entry, namespace) for entry in entries]
        logger.debug("Discovered %d manifest element(s) in %s", len(descriptors), namespace)
        return descriptors

    def _load(self) -> Mapping[str, Any]:
        if self._manifest is not None:
            return self._manifest
        if isinstance(self._source, Mapping):
            manifest: Any = self._source
        else:
            try:
                with open(self._source, encoding="utf-8") as fh:
                    manifest = json.load(fh)
            except OSError as exc:
                raise DiscoveryError(f"Manifest unreadable: {self._source}", cause=exc) from exc
            except ValueError as exc:
                raise DiscoveryError(f"Manifest is not valid JSON: {self._source}", cause=exc) from exc
        if not isinstance(manifest, Mapping):
            raise DiscoveryError("Manifest root must be an object of namespaces")
        self._manifest = manifest
        return manifest

    @staticmethod
    def _descriptor(entry: Any, namespace: str) -> Descriptor:
        try:
            element = ManifestElement.model_validate(entry)
        except ValidationError as exc:
            raise DiscoveryError(
                f"Invalid manifest element {entry!r} in {namespace}: {exc}", namespace=namespace, cause=exc
            ) from exc
        try:
            type_id = resolve_type(element.type)
        except DiscoveryError as exc:
            raise DiscoveryError(str(exc), namespace=namespace, cause=exc.cause or exc) from exc
        return Descriptor(type_id=type_id, priority=element.priority, initializer_ref=element.initializer)
