# src/criteria_repository/__init__.py

"""
Criteria Repository Library Initialization.

This package turns loosely-typed filter criteria (field name -> candidate
values) into typed predicates against a declared entity schema and executes
them through an asynchronous repository back end.

It initializes a logger with a NullHandler and makes the repository
interface, schema types, query parameters, exceptions, and back-end
implementations available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging.
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False  # Prevent log messages from propagating to the root logger

# --------------------------------------------------------------------------
# Core Interface and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import CriteriaRepository
from .base.exceptions import (
    CriteriaError,
    FieldNotFoundError,
    InvalidFieldPathError,
    KeyAlreadyExistsException,
    MultiValueRelationError,
    NullParamError,
    NumericParseError,
    ObjectNotFoundException,
)

# --------------------------------------------------------------------------
# Schema, Criteria and Query Exports
# --------------------------------------------------------------------------
from .base.schema import EntitySchema, FieldKind, Relation
from .base.params import FieldHolder, OrderType, QueryParams
from .base.coercion import coerce, coerce_set
from .base.criteria import CriteriaAssembler
from .base.query import CriteriaQuery, QueryOperator, QueryOptions

# --------------------------------------------------------------------------
# Repository Implementation Exports
# --------------------------------------------------------------------------
from .db_implementations.memory_repository import MemoryRepository, MemoryStore
from .db_implementations.sqlite_repository import SqliteRepository

__all__ = [
    # Core
    "CriteriaRepository",
    # Exceptions
    "CriteriaError",
    "FieldNotFoundError",
    "InvalidFieldPathError",
    "KeyAlreadyExistsException",
    "MultiValueRelationError",
    "NullParamError",
    "NumericParseError",
    "ObjectNotFoundException",
    # Schema and criteria
    "EntitySchema",
    "FieldKind",
    "Relation",
    "FieldHolder",
    "OrderType",
    "QueryParams",
    "coerce",
    "coerce_set",
    "CriteriaAssembler",
    # Query
    "CriteriaQuery",
    "QueryOperator",
    "QueryOptions",
    # Implementations
    "MemoryRepository",
    "MemoryStore",
    "SqliteRepository",
    # Logging
    "logger",
]

__version__ = "0.1.0"
