"""
    sqlentity maps database rows into entity objects with a schema-less
    attribute store, accessor/mutator tables, timestamped persistence,
    and a relation system (HasOne, HasMany, BelongsTo, BelongsToMany)
    with eager loading. Connections are held in a named registry; a
    default sqlite connection, query builder, grammar, and processor are
    included. Logging goes through loguru and is disabled until the
    application calls `logger.enable('sqlentity')`.
"""

from loguru import logger
from sqlentity.classes import (
    SqliteContext,
    SqliteGrammar,
    SqliteProcessor,
    SqlQueryBuilder,
    JoinSpec,
    WhereClause,
    Row,
)
from sqlentity.connections import (
    ConnectionRegistry,
    SqliteConnection,
    registry,
)
from sqlentity.entity import (
    SqlEntity,
    accessor,
    mutator,
    relationship,
)
from sqlentity.errors import (
    UnknownConnection,
    NoDefaultConnection,
    UnknownRelationMethod,
    InvalidRelatedType,
)
from sqlentity.interfaces import (
    CursorProtocol,
    DBContextProtocol,
    GrammarProtocol,
    ProcessorProtocol,
    ConnectionProtocol,
    QueryBuilderProtocol,
    EntityProtocol,
    RelationProtocol,
)
from sqlentity.relations import (
    Relation,
    HasOneOrMany,
    HasOne,
    HasMany,
    BelongsTo,
    BelongsToMany,
)
from sqlentity.tools import (
    snake_case,
    camel_case,
    base_name,
    foreign_key,
    joining_table,
)

logger.disable('sqlentity')
