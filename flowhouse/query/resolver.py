"""
Field resolver -- maps a logical field name onto a ClickHouse expression.

Three kinds of names exist:
  - plain columns            src_asn               -> src_asn
  - virtual CIDR fields      src_ip_pfx            -> concat(IPv6NumToString(...), '/', ...)
  - dictionary attributes    src_asn__name         -> dictGet('asns', 'name', toUInt64(src_asn))
"""
from __future__ import annotations

from flowhouse.catalog.loader import DICT_SEPARATOR, SchemaCatalog, is_identifier
from flowhouse.core.errors import InvalidFieldNameError, UnresolvedDictionaryError


def split_field_name(name: str) -> tuple[str, str]:
    """Split on the first ``__``; the second part is empty for plain fields."""
    base, _, sub = name.partition(DICT_SEPARATOR)
    return base, sub


class FieldResolver:
    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    def resolve(self, field_name: str) -> str:
        """Return the SQL expression for *field_name*.

        Raises
        ------
        InvalidFieldNameError
            If either part of the name is not a plain identifier.
        UnresolvedDictionaryError
            If the name carries a subfield but its base has no dict binding.
        """
        descriptor = self._catalog.field(field_name)
        if descriptor is not None and descriptor.virtual is not None:
            return descriptor.virtual.expression()

        base, sub = split_field_name(field_name)
        if not is_identifier(base) or (sub and not is_identifier(sub)):
            raise InvalidFieldNameError(field_name)

        if not sub:
            return base

        binding = self._catalog.dict_for(base)
        if binding is None:
            raise UnresolvedDictionaryError(field_name)

        return f"dictGet('{binding.dict_name}', '{sub}', {binding.key_expression()})"
