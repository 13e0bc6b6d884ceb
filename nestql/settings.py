from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .naming import Inflector, NameConverter

# Key under which Table/Column/ForeignKeyConstraint ``info`` dicts carry nestql flags.
INFO_KEY = 'nestql'


@dataclass(frozen=True)
class MutationSettings:
    """Engine configuration, passed explicitly; never read from globals.

    Attributes:
        auto_camel_case: Client names in lowerCamelCase (``parentId``) instead
            of snake_case (``parent_id``).
        name_converter: Optional override for attribute field names.
        node_id_field: Key carrying an opaque id in payloads.
        patch_suffix: Root update inputs hold the patch under
            ``<tableField><patch_suffix>``.
        commit: Commit the surrounding transaction once a root mutation succeeded.
        log_statements: Log compiled SQL at DEBUG level.
    """

    auto_camel_case: bool = True
    name_converter: NameConverter = None
    node_id_field: str = 'nodeId'
    patch_suffix: str = 'Patch'
    commit: bool = True
    log_statements: bool = False

    def inflector(self) -> Inflector:
        return Inflector(auto_camel_case=self.auto_camel_case, name_converter=self.name_converter)


def info_flags(item: Any) -> Dict[str, Any]:
    """Return the nestql section of a SQLAlchemy schema item's ``info`` dict."""
    info = getattr(item, 'info', None) or {}
    flags = info.get(INFO_KEY) if isinstance(info, dict) else None
    return dict(flags) if isinstance(flags, dict) else {}
