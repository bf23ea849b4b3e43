"""
    The interfaces used by the package. `CursorProtocol` and
    `DBContextProtocol` must be implemented to bind the library to a new
    SQL driver. `ConnectionProtocol`, `GrammarProtocol`, and
    `ProcessorProtocol` describe the collaborators a connection hands to
    a query builder; `QueryBuilderProtocol` describes the query builder
    itself. `EntityProtocol` and `RelationProtocol` describe the ORM
    surface. Any custom relation should implement `RelationProtocol`.
"""


from __future__ import annotations
from types import TracebackType
from typing import (
    Any,
    Callable,
    Iterable,
    Optional,
    Protocol,
    Type,
    runtime_checkable,
)


@runtime_checkable
class CursorProtocol(Protocol):
    """Interface showing how a DB cursor should function."""
    @property
    def description(self) -> Any:
        """Column descriptions of the previous query."""
        ...

    @property
    def lastrowid(self) -> Any:
        """Id of the last inserted row."""
        ...

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the previous query."""
        ...

    def execute(self, sql: str, parameters: list[Any] = []) -> CursorProtocol:
        """Execute a single query with the given parameters."""
        ...

    def executemany(self, sql: str,
                    seq_of_parameters: Iterable[list[Any]] = []) -> CursorProtocol:
        """Execute a query once for each list of parameters."""
        ...

    def fetchone(self) -> Any:
        """Get one record returned by the previous query."""
        ...

    def fetchall(self) -> Any:
        """Get all records returned by the previous query."""
        ...


@runtime_checkable
class DBContextProtocol(Protocol):
    """Interface showing how a context manager for connecting
        to a database should behave.
    """
    def __init__(self, connection_info: str = '') -> None:
        """Using the connection_info parameter is optional but should be
            supported.
        """
        ...

    def __enter__(self) -> CursorProtocol:
        """Enter the `with` block. Should return a cursor useful for
            making db calls.
        """
        ...

    def __exit__(self, exc_type: Optional[Type[BaseException]],
                exc_value: Optional[BaseException],
                traceback: Optional[TracebackType]) -> None:
        """Exit the `with` block. Should commit or rollback as
            appropriate, then close the connection.
        """
        ...


@runtime_checkable
class GrammarProtocol(Protocol):
    """Interface for compiling query builder state into dialect SQL.
        Every compile method returns a tuple of (sql, params).
    """
    def compile_select(self, query: QueryBuilderProtocol) -> tuple[str, list]:
        """Compile a select statement."""
        ...

    def compile_insert(self, query: QueryBuilderProtocol,
                       values: dict) -> tuple[str, list]:
        """Compile an insert statement for one row."""
        ...

    def compile_update(self, query: QueryBuilderProtocol,
                       values: dict) -> tuple[str, list]:
        """Compile an update statement constrained by the query wheres."""
        ...

    def compile_delete(self, query: QueryBuilderProtocol) -> tuple[str, list]:
        """Compile a delete statement constrained by the query wheres."""
        ...


@runtime_checkable
class ProcessorProtocol(Protocol):
    """Interface for post-processing raw cursor results."""
    def process_select(self, query: QueryBuilderProtocol,
                       cursor: CursorProtocol) -> list[dict]:
        """Turn the rows of the previous select into dicts."""
        ...

    def process_insert_get_id(self, query: QueryBuilderProtocol,
                              cursor: CursorProtocol,
                              sequence: Optional[str] = None) -> Any:
        """Return the generated id of the previous insert."""
        ...


@runtime_checkable
class ConnectionProtocol(Protocol):
    """Interface for a named connection handle held by the registry."""
    @property
    def query_builder_class(self) -> Type[QueryBuilderProtocol]:
        """The query builder class bound to this connection."""
        ...

    def get_query_grammar(self) -> GrammarProtocol:
        """Return the grammar for this connection's SQL dialect."""
        ...

    def get_post_processor(self) -> ProcessorProtocol:
        """Return the result post-processor for this connection."""
        ...

    def cursor(self) -> DBContextProtocol:
        """Return a context manager that yields a cursor."""
        ...


@runtime_checkable
class QueryBuilderProtocol(Protocol):
    """Interface showing how a query builder should function."""
    def __init__(self, connection: ConnectionProtocol,
                 grammar: GrammarProtocol,
                 processor: ProcessorProtocol) -> None:
        """Initialize the instance."""
        ...

    @property
    def table(self) -> str:
        """The name of the table."""
        ...

    @property
    def model(self) -> Optional[Type[EntityProtocol]]:
        """The hydration target, if any."""
        ...

    def set_model(self, model: Type[EntityProtocol]) -> QueryBuilderProtocol:
        """Bind the hydration target and table, then return self."""
        ...

    def from_(self, table: str) -> QueryBuilderProtocol:
        """Set the table, then return self."""
        ...

    def select(self, *columns: str) -> QueryBuilderProtocol:
        """Set the columns to select, then return self."""
        ...

    def where(self, column: str, operator: str, value: Any = None,
              boolean: str = 'and') -> QueryBuilderProtocol:
        """Save the 'column operator value' clause, then return self."""
        ...

    def where_in(self, column: str, values: list|tuple,
                 boolean: str = 'and') -> QueryBuilderProtocol:
        """Save the 'column in values' clause, then return self."""
        ...

    def where_group(self, boolean: str = 'and') -> QueryBuilderProtocol:
        """Add a parenthesized group of clauses and return a builder
            whose where methods fill that group.
        """
        ...

    def join(self, table: str, first: str, operator: str, second: str,
             kind: str = 'inner') -> QueryBuilderProtocol:
        """Add a join, then return self."""
        ...

    def with_(self, *relations: str) -> QueryBuilderProtocol:
        """Mark relationships for eager loading, then return self."""
        ...

    def get(self, columns: list[str] = None) -> list:
        """Run the query and return the hydrated results."""
        ...

    def first(self, columns: list[str] = None) -> Optional[Any]:
        """Run the query and return the first result."""
        ...

    def find(self, id: Any, columns: list[str] = None) -> Optional[Any]:
        """Find one record by primary key."""
        ...

    def insert_get_id(self, values: dict, sequence: str = None) -> Any:
        """Insert a record and return the generated id."""
        ...

    def update(self, values: dict) -> int:
        """Update matching records and return the number updated."""
        ...

    def delete(self) -> int:
        """Delete matching records and return the number deleted."""
        ...


@runtime_checkable
class EntityProtocol(Protocol):
    """Interface showing how an entity should function."""
    @property
    def attributes(self) -> dict:
        """Dict mapping column name to value."""
        ...

    @property
    def exists(self) -> bool:
        """True once persisted or loaded from storage."""
        ...

    def get_table(self) -> str:
        """Return the table name."""
        ...

    def get_key_name(self) -> str:
        """Return the primary key column name."""
        ...

    def get_key(self) -> Any:
        """Return the primary key value."""
        ...

    def get_attribute(self, key: str) -> Any:
        """Return the externally visible value of an attribute."""
        ...

    def set_attribute(self, key: str, value: Any) -> None:
        """Store the value of an attribute."""
        ...

    def set_relation(self, name: str, value: Any) -> EntityProtocol:
        """Store a loaded relationship result."""
        ...

    def new_query(self) -> QueryBuilderProtocol:
        """Return a query builder bound to this entity's table."""
        ...

    def new_from_storage(self, row: dict) -> EntityProtocol:
        """Hydrate a storage row into an existing entity."""
        ...

    def save(self) -> bool:
        """Persist to the datastore."""
        ...

    @classmethod
    def add_hook(cls, event: str, hook: Callable):
        """Add the hook for the event."""
        ...


@runtime_checkable
class RelationProtocol(Protocol):
    """Interface showing how a relation should function."""
    @property
    def query(self) -> QueryBuilderProtocol:
        """The underlying query builder for the related entity."""
        ...

    @property
    def parent(self) -> EntityProtocol:
        """The owning entity."""
        ...

    @property
    def related(self) -> EntityProtocol:
        """A blank instance of the related entity type."""
        ...

    def add_constraints(self) -> None:
        """Apply the base constraint for a single owner."""
        ...

    def add_eager_constraints(self, models: list[EntityProtocol]) -> None:
        """Constrain the query to the keys of a batch of owners."""
        ...

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        """Set the empty default for the relation on every owner."""
        ...

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        """Distribute the eagerly loaded results onto the owners."""
        ...

    def get_results(self) -> Any:
        """Return the lazy-loaded result of the relation."""
        ...

    def get_eager(self) -> list[EntityProtocol]:
        """Return the results of the eager query."""
        ...
