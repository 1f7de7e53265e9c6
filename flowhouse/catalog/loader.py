"""
Loads, parses, and caches the flow schema catalog YAML into immutable objects.

The catalog is the single source of truth for:
  - queryable fields    (name, human label, short label for series keys)
  - virtual fields      (CIDR strings computed from address + prefix length)
  - dictionary bindings (which field is enriched by which ClickHouse dictionary,
                         and how the lookup key is built)

Everything that ends up as raw SQL text -- column names, dictionary names,
key columns -- comes from here and is checked against an identifier pattern
at load time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import yaml

from flowhouse.core.config import get_settings
from flowhouse.core.logging import get_logger

logger = get_logger(__name__)

DICT_SEPARATOR = "__"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name or ""))


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class VirtualField:
    addr_column: str
    len_column: str

    def expression(self) -> str:
        return (
            f"concat(IPv6NumToString({self.addr_column}), '/', "
            f"toString({self.len_column}))"
        )


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    label: str
    short_label: str
    virtual: VirtualField | None = None


@dataclass(frozen=True)
class DictBinding:
    field: str
    dict_name: str
    key_expr_template: str = "%s"
    keys: tuple[str, ...] = ()

    @property
    def key_arity(self) -> int:
        """Number of leading dictionary columns that make up the key."""
        return len(self.keys) or 1

    def key_expression(self) -> str:
        params = self.keys or (self.field,)
        return self.key_expr_template % params


@dataclass(frozen=True)
class SchemaCatalog:
    """Fully parsed flow schema catalog. Never mutated after load."""

    version: int
    fields: tuple[FieldDescriptor, ...]
    dicts: tuple[DictBinding, ...]

    # ── Convenience look-ups ─────────────────────────

    def field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def dict_for(self, field_name: str) -> DictBinding | None:
        """Return the binding for *field_name*; the first one wins."""
        for d in self.dicts:
            if d.field == field_name:
                return d
        return None

    def dicts_for(self, field_name: str) -> list[DictBinding]:
        return [d for d in self.dicts if d.field == field_name]


# ── Parsing ──────────────────────────────────────────────

def _require_identifier(value: Any, what: str) -> str:
    if not isinstance(value, str) or not is_identifier(value):
        raise ValueError(f"Invalid {what} in catalog: {value!r}")
    return value


def _parse_virtual(raw: dict[str, Any] | None) -> VirtualField | None:
    if not raw:
        return None
    return VirtualField(
        addr_column=_require_identifier(raw.get("addr"), "virtual address column"),
        len_column=_require_identifier(raw.get("len"), "virtual length column"),
    )


def _parse_field(raw: dict[str, Any]) -> FieldDescriptor:
    name = _require_identifier(raw.get("name"), "field name")
    if DICT_SEPARATOR in name:
        raise ValueError(f"Field name {name!r} must not contain {DICT_SEPARATOR!r}")
    return FieldDescriptor(
        name=name,
        label=raw.get("label", name),
        short_label=raw.get("short_label", name),
        virtual=_parse_virtual(raw.get("virtual")),
    )


def _parse_dict(raw: dict[str, Any]) -> DictBinding:
    keys = tuple(_require_identifier(k, "dict key") for k in raw.get("keys") or [])
    binding = DictBinding(
        field=_require_identifier(raw.get("field"), "dict field"),
        dict_name=_require_identifier(raw.get("dict"), "dict name"),
        key_expr_template=raw.get("expr") or "%s",
        keys=keys,
    )
    slots = binding.key_expr_template.count("%s")
    if slots != binding.key_arity:
        raise ValueError(
            f"Dict {binding.dict_name!r} for field {binding.field!r}: expression has "
            f"{slots} slot(s) but {binding.key_arity} key(s)"
        )
    return binding


def _parse_catalog(raw_yaml: dict[str, Any]) -> SchemaCatalog:
    fields = tuple(_parse_field(f) for f in raw_yaml.get("fields", []))

    seen: set[str] = set()
    for f in fields:
        if f.name in seen:
            raise ValueError(f"Duplicate field {f.name!r} in catalog")
        seen.add(f.name)

    dicts = tuple(_parse_dict(d) for d in raw_yaml.get("dicts") or [])
    bound: set[str] = set()
    for d in dicts:
        if d.field not in seen:
            raise ValueError(f"Dict {d.dict_name!r} is bound to unknown field {d.field!r}")
        if d.field in bound:
            logger.warning("Field %s has more than one dict binding; the first one is used", d.field)
        bound.add(d.field)

    return SchemaCatalog(
        version=raw_yaml.get("version", 1),
        fields=fields,
        dicts=dicts,
    )


# ── Public API ───────────────────────────────────────────

def parse_catalog(raw_yaml: dict[str, Any]) -> SchemaCatalog:
    """Build a catalog from an already-parsed YAML document."""
    return _parse_catalog(raw_yaml)


@lru_cache
def load_catalog(path: str | None = None) -> SchemaCatalog:
    """Load and cache the schema catalog from YAML."""
    path = path or get_settings().catalog_path
    with open(path) as f:
        raw = yaml.safe_load(f)
    catalog = _parse_catalog(raw or {})
    logger.info("Catalog loaded  fields=%d  dicts=%d", len(catalog.fields), len(catalog.dicts))
    return catalog
