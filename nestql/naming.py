"""Naming utilities for nestql.

Client-facing names are derived from table and column names: camelCase
conversion for attributes, singular/plural forms (via ``inflection``) for
relation fields and type names.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

import inflection

__all__ = [
    'NameConverter',
    'camel_to_snake',
    'snake_to_camel',
    'Inflector',
]

NameConverter = Optional[Callable[[str], str]]


def camel_to_snake(name: str) -> str:
    """``parentId`` -> ``parent_id``; snake_case input is returned unchanged."""
    if not isinstance(name, str) or not name:
        return name  # type: ignore
    return inflection.underscore(name)


def snake_to_camel(name: str, upper_first: bool = False) -> str:
    """``parent_id`` -> ``parentId`` (``ParentId`` with upper_first); dashes count as underscores."""
    if not isinstance(name, str) or not name:
        return name  # type: ignore
    name = name.replace('-', '_').strip('_')
    return inflection.camelize(name, upper_first) if name else name


class Inflector:
    """Derives every client-facing name used by the engine.

    ``auto_camel_case`` switches between ``childrenByParentId`` and
    ``children_by_parent_id`` style; ``name_converter`` overrides attribute
    field names only.
    """

    def __init__(self, *, auto_camel_case: bool = True, name_converter: NameConverter = None):
        self.auto_camel_case = auto_camel_case
        self.name_converter = name_converter

    def _field(self, snake: str) -> str:
        return snake_to_camel(snake) if self.auto_camel_case else snake

    def attribute(self, column_name: str) -> str:
        if callable(self.name_converter):
            return self.name_converter(column_name)
        return self._field(column_name)

    def table_type(self, table_name: str) -> str:
        """``order_items`` -> ``OrderItem``."""
        return inflection.camelize(inflection.singularize(table_name))

    def table_field(self, table_name: str) -> str:
        """``order_items`` -> ``orderItem``."""
        return self._field(inflection.underscore(self.table_type(table_name)))

    def relation_field(self, remote_table: str, attributes: Iterable[str], *, is_unique: bool) -> str:
        """Relation input field name, e.g. ``customerByCustomerId`` or ``childrenByParentId``.

        ``attributes`` are the foreign-key side columns of the relation.
        """
        singular = inflection.singularize(remote_table)
        resource = singular if is_unique else inflection.pluralize(singular)
        return self._field(f"{resource}_by_{'_and_'.join(attributes)}")

    def verb(self, verb_name: str) -> str:
        """Verb keys are canonically camelCase (``connectByKeys``)."""
        return verb_name if self.auto_camel_case else camel_to_snake(verb_name)

    def create_field(self, table_name: str) -> str:
        return self._field(f"create_{inflection.underscore(self.table_type(table_name))}")

    def update_field(self, table_name: str, attributes: Iterable[str] = ()) -> str:
        base = f"update_{inflection.underscore(self.table_type(table_name))}"
        attrs = list(attributes)
        if attrs:
            base = f"{base}_by_{'_and_'.join(attrs)}"
        return self._field(base)

    def update_by_node_id_field(self, table_name: str, node_id_field: str) -> str:
        return self.update_field(table_name, [camel_to_snake(node_id_field)])

    def patch_field(self, table_name: str, suffix: str) -> str:
        base = self.table_field(table_name)
        if self.auto_camel_case:
            return f"{base}{suffix[:1].upper()}{suffix[1:]}"
        return f"{base}_{camel_to_snake(suffix)}"
