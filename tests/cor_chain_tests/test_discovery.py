import json
import sys
import textwrap
import types

import pytest
from pydantic import ValidationError
from cor_chain.builder import ChainBuilder
from cor_chain.descriptor import Descriptor, chain_element, element_marker
from cor_chain.discovery import (
    ManifestDiscovery,
    ModuleScanDiscovery,
    StaticRegistryDiscovery,
    resolve_type,
    scan_handler_types,
)
from cor_chain.errors import BuildError, DiscoveryError
from cor_chain.handler import HandlerEngine
from cor_chain.request_chain import AuthenticationHandler, OrderRuleHandler, RateLimitHandler


def make_module(monkeypatch, name, source):
    module = types.ModuleType(name)
    exec(textwrap.dedent(source), module.__dict__)
    monkeypatch.setitem(sys.modules, name, module)
    return module


MARKED_SOURCE = """
    from abc import abstractmethod
    from cor_chain.descriptor import chain_element
    from cor_chain.handler import HandlerEngine
    from cor_chain.request_chain import OrderRuleHandler  # imported, not defined here

    @chain_element(priority=2)
    class Second(HandlerEngine):
        def is_responsible(self, injected): return False
        def execute(self, injected): return None

    @chain_element(priority=1, initializer_ref="make")
    class First(HandlerEngine):
        def is_responsible(self, injected): return False
        def execute(self, injected): return None

    class Unmarked(HandlerEngine):
        def is_responsible(self, injected): return False
        def execute(self, injected): return None

    @chain_element(priority=0)
    class AbstractBase(HandlerEngine):
        @abstractmethod
        def special(self): ...
"""


@pytest.mark.unit
def test_chain_element_marker_round_trips_into_descriptor():
    @chain_element(priority=4, initializer_ref="build")
    class Marked(HandlerEngine):
        def is_responsible(self, injected): return False
        def execute(self, injected): return None

    marker = element_marker(Marked)
    assert marker.describe(Marked) == Descriptor(Marked, 4, "build")
    assert element_marker(object) is None


@pytest.mark.unit
def test_static_registry_returns_registration_order():
    registry = StaticRegistryDiscovery()

    @registry.element("ns", priority=3)
    class Late(HandlerEngine):
        def is_responsible(self, injected): return False
        def execute(self, injected): return None

    registry.register("ns", OrderRuleHandler, priority=1)
    found = registry.discover("ns")
    assert [d.type_id for d in found] == [Late, OrderRuleHandler]
    assert [d.priority for d in found] == [3, 1]
    assert registry.namespaces() == ["ns"]


@pytest.mark.unit
def test_static_registry_unknown_namespace():
    with pytest.raises(DiscoveryError) as err:
        StaticRegistryDiscovery().discover("nowhere")
    assert err.value.namespace == "nowhere"


@pytest.mark.unit
def test_module_scan_collects_marked_concrete_classes(monkeypatch):
    module = make_module(monkeypatch, "fake_marked_handlers", MARKED_SOURCE)
    found = ModuleScanDiscovery().discover("fake_marked_handlers")
    assert found == [
        Descriptor(module.Second, 2, ""),
        Descriptor(module.First, 1, "make"),
    ]


@pytest.mark.unit
def test_module_scan_prefers_module_declaration(monkeypatch):
    make_module(monkeypatch, "fake_declared_handlers", """
        from cor_chain.descriptor import Descriptor, chain_element
        from cor_chain.request_chain import AuthenticationHandler, OrderRuleHandler

        CHAIN_ELEMENTS = [
            Descriptor(OrderRuleHandler, priority=1),
            Descriptor(AuthenticationHandler, priority=2),
        ]

        @chain_element(priority=0)
        class Ignored:
            pass
    """)
    found = ModuleScanDiscovery().discover("fake_declared_handlers")
    assert [d.type_id for d in found] == [OrderRuleHandler, AuthenticationHandler]


@pytest.mark.unit
def test_module_scan_rejects_malformed_declaration(monkeypatch):
    make_module(monkeypatch, "fake_bad_declaration", "CHAIN_ELEMENTS = ['not a descriptor']")
    with pytest.raises(DiscoveryError):
        ModuleScanDiscovery().discover("fake_bad_declaration")


@pytest.mark.unit
def test_module_scan_package_reads_submodules():
    found = ModuleScanDiscovery().discover("cor_chain")
    assert found == [
        Descriptor(AuthenticationHandler, 10, ""),
        Descriptor(RateLimitHandler, 20, "default_initializer"),
        Descriptor(OrderRuleHandler, 30, ""),
    ]


@pytest.mark.unit
@pytest.mark.parametrize("namespace", ["", ".relative", "cor_chain.missing_module", "no_such_top_level_pkg"])
def test_module_scan_missing_namespace(namespace):
    with pytest.raises(DiscoveryError):
        ModuleScanDiscovery().discover(namespace)


@pytest.mark.unit
def test_scan_handler_types_skips_abstract_and_foreign_classes(monkeypatch):
    module = make_module(monkeypatch, "fake_typed_handlers", MARKED_SOURCE)
    assert scan_handler_types("fake_typed_handlers") == [module.Second, module.First, module.Unmarked]


@pytest.mark.unit
def test_manifest_from_file(tmp_path):
    path = tmp_path / "chains.json"
    path.write_text(json.dumps({
        "requests": [
            {"type": "cor_chain.request_chain.OrderRuleHandler", "priority": 3},
            {"type": "cor_chain.request_chain.RateLimitHandler", "initializer": "default_initializer"},
        ]
    }), encoding="utf-8")
    found = ManifestDiscovery(path).discover("requests")
    assert found == [
        Descriptor(OrderRuleHandler, 3, ""),
        Descriptor(RateLimitHandler, 0, "default_initializer"),
    ]


@pytest.mark.unit
def test_manifest_from_mapping_unknown_namespace():
    with pytest.raises(DiscoveryError) as err:
        ManifestDiscovery({"a": []}).discover("b")
    assert err.value.namespace == "b"
    assert ManifestDiscovery({"a": []}).discover("a") == []


@pytest.mark.unit
@pytest.mark.parametrize("entries", [
    [{"priority": 1}],
    [{"type": "cor_chain.request_chain.OrderRuleHandler", "priority": "high"}],
    [{"type": "cor_chain.request_chain.OrderRuleHandler", "initializer": 5}],
    [{"type": "cor_chain.request_chain.NoSuchHandler"}],
    [{"type": "NoDots"}],
    {"not": "a list"},
])
def test_manifest_rejects_malformed_entries(entries):
    with pytest.raises(DiscoveryError):
        ManifestDiscovery({"ns": entries}).discover("ns")


@pytest.mark.unit
def test_manifest_unreadable_or_invalid_file(tmp_path):
    with pytest.raises(DiscoveryError):
        ManifestDiscovery(tmp_path / "missing.json").discover("ns")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(DiscoveryError):
        ManifestDiscovery(bad).discover("ns")
    listed = tmp_path / "list.json"
    listed.write_text("[]", encoding="utf-8")
    with pytest.raises(DiscoveryError):
        ManifestDiscovery(listed).discover("ns")


@pytest.mark.unit
def test_resolve_type():
    assert resolve_type("cor_chain.request_chain.OrderRuleHandler") is OrderRuleHandler
    with pytest.raises(DiscoveryError):
        resolve_type("cor_chain.request_chain.Nope")


@pytest.mark.unit
def test_module_raising_at_import_becomes_discovery_error(tmp_path, monkeypatch):
    (tmp_path / "explodes_on_import.py").write_text("raise RuntimeError('module body failed')\n", encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    with pytest.raises(DiscoveryError) as err:
        ModuleScanDiscovery().discover("explodes_on_import")
    assert isinstance(err.value.cause, RuntimeError)
    assert err.value.namespace == "explodes_on_import"
    monkeypatch.delitem(sys.modules, "explodes_on_import", raising=False)


@pytest.mark.unit
def test_submodule_with_syntax_error_becomes_discovery_error(tmp_path, monkeypatch):
    package = tmp_path / "half_written_handlers"
    package.mkdir()
    (package / "__init__.py").write_text("", encoding="utf-8")
    (package / "broken.py").write_text("def oops(:\n", encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    with pytest.raises(DiscoveryError) as err:
        scan_handler_types("half_written_handlers")
    assert isinstance(err.value.cause, SyntaxError)
    with pytest.raises(BuildError) as err:
        ChainBuilder().build_from_namespace("half_written_handlers")
    assert isinstance(err.value.cause, DiscoveryError)
    monkeypatch.delitem(sys.modules, "half_written_handlers", raising=False)


@pytest.mark.unit
@pytest.mark.parametrize("entry", [
    {"type": "cor_chain.request_chain.OrderRuleHandler", "priority": True},
    {"type": "cor_chain.request_chain.OrderRuleHandler", "priority": 1.5},
    {"type": "cor_chain.request_chain.OrderRuleHandler", "order": 1},
    "cor_chain.request_chain.OrderRuleHandler",
])
def test_manifest_element_schema_is_strict(entry):
    with pytest.raises(DiscoveryError) as err:
        ManifestDiscovery({"ns": [entry]}).discover("ns")
    assert isinstance(err.value.cause, ValidationError)
