# src/criteria_repository/base/paths.py
import logging
from dataclasses import dataclass

from .exceptions import InvalidFieldPathError

log = logging.getLogger(__name__)

FIELD_DELIMITER = "."


@dataclass(frozen=True)
class FieldPath:
    """A classified incoming field name."""

    name: str
    root: str
    is_relation: bool


def classify(field_name: str) -> FieldPath:
    """
    Classifies `field_name` as a simple field or a one-level relation reference.

    Names containing the delimiter are relation fields identified by their first
    segment. Trailing segments are not decomposed.

    Raises:
        InvalidFieldPathError: If the name is empty or its root segment is empty.
    """
    if not isinstance(field_name, str) or not field_name:
        raise InvalidFieldPathError(field_name)

    parts = field_name.split(FIELD_DELIMITER)
    root = parts[0]
    if not root:
        raise InvalidFieldPathError(field_name)

    if len(parts) == 1:
        return FieldPath(name=field_name, root=root, is_relation=False)

    if len(parts) > 2:
        log.warning(
            f"Field path '{field_name}' has more than one relation level; only "
            f"'{root}' is used for relation resolution."
        )
    return FieldPath(name=field_name, root=root, is_relation=True)
