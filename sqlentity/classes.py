from __future__ import annotations
from .errors import tert, vert, tressa
from .interfaces import (
    ConnectionProtocol,
    CursorProtocol,
    GrammarProtocol,
    ProcessorProtocol,
    QueryBuilderProtocol,
)
from dataclasses import dataclass, field
from datetime import datetime
from loguru import logger
from types import TracebackType
from typing import Any, Generator, Optional, Type
import sqlite3


class SqliteContext:
    """Context manager for sqlite."""
    connection: sqlite3.Connection
    cursor: sqlite3.Cursor
    connection_info: str

    def __init__(self, connection_info: str = '') -> None:
        """Initialize the instance. Raises TypeError for non-str
            connection_info or UsageError for empty connection_info.
        """
        if not connection_info and hasattr(self, 'connection_info'):
            connection_info = self.connection_info
        tert(type(connection_info) in (str, bytes),
            'connection_info must be str or bytes')
        tressa(len(connection_info) > 0, 'cannot use with empty connection_info')
        self.connection = sqlite3.connect(connection_info)
        self.cursor = self.connection.cursor()

    def __enter__(self) -> CursorProtocol:
        """Enter the context block and return the cursor."""
        return self.cursor

    def __exit__(self, __exc_type: Optional[Type[BaseException]],
                __exc_value: Optional[BaseException],
                __traceback: Optional[TracebackType]) -> None:
        """Exit the context block. Commit or rollback as appropriate,
            then close the connection.
        """
        if __exc_type is not None:
            self.connection.rollback()
        else:
            self.connection.commit()

        self.connection.close()


@dataclass
class JoinSpec:
    """Class for representing joins to be executed by a query builder."""
    kind: str = field()
    table: str = field()
    first: str = field()
    operator: str = field()
    second: str = field()


@dataclass
class WhereClause:
    """Class for representing one constraint of a query. The kind is
        one of basic, in, not_in, null, not_null, or nested; the value
        of a nested clause is the list of WhereClauses it groups.
    """
    kind: str = field()
    column: str = field()
    operator: str = field(default='=')
    value: Any = field(default=None)
    boolean: str = field(default='and')


@dataclass
class Row:
    """Class for representing a row from a query when no entity type is
        bound to the query builder.
    """
    data: dict = field()


class SqliteGrammar:
    """Compiles query builder state into sqlite SQL. Every compile
        method returns a tuple of (sql, params).
    """
    date_format: str = '%Y-%m-%d %H:%M:%S'

    def compile_select(self, query: SqlQueryBuilder) -> tuple[str, list]:
        columns = query.columns or ['*']
        sql = f'select {", ".join(columns)} from {query.table}'

        for join in query.joins:
            sql += f' {join.kind} join {join.table} on ' + \
                f'{join.first} {join.operator} {join.second}'

        wheres, params = self.compile_wheres(query)
        sql += wheres

        if query.orders:
            sql += ' order by ' + ', '.join([
                f'{column} {direction}' for column, direction in query.orders
            ])

        if type(query.limit) is int and query.limit > 0:
            sql += f' limit {query.limit}'
        elif type(query.offset) is int and query.offset > 0:
            sql += ' limit -1'

        if type(query.offset) is int and query.offset > 0:
            sql += f' offset {query.offset}'

        return (sql, self.prepare_bindings(params))

    def compile_insert(self, query: SqlQueryBuilder, values: dict) -> tuple[str, list]:
        if not values:
            return (f'insert into {query.table} default values', [])
        columns = list(values.keys())
        sql = f'insert into {query.table} ({", ".join(columns)})' + \
            f' values ({", ".join(["?" for _ in columns])})'
        return (sql, self.prepare_bindings([values[c] for c in columns]))

    def compile_update(self, query: SqlQueryBuilder, values: dict) -> tuple[str, list]:
        columns = ', '.join([f'{column} = ?' for column in values])
        wheres, params = self.compile_wheres(query)
        sql = f'update {query.table} set {columns}{wheres}'
        return (sql, self.prepare_bindings([*values.values(), *params]))

    def compile_delete(self, query: SqlQueryBuilder) -> tuple[str, list]:
        wheres, params = self.compile_wheres(query)
        return (f'delete from {query.table}{wheres}', self.prepare_bindings(params))

    def compile_wheres(self, query: SqlQueryBuilder) -> tuple[str, list]:
        """Compile the where clauses into a ' where ...' str and the
            list of params. Returns ('', []) if there are no clauses.
        """
        sql, params = self.compile_where_list(query.wheres)
        if not sql:
            return ('', [])
        return (' where ' + sql, params)

    def compile_where_list(self, wheres: list[WhereClause]) -> tuple[str, list]:
        """Compile a list of where clauses joined by their booleans.
            Nested clauses are compiled recursively inside parentheses;
            empty groups are skipped.
        """
        parts, params = [], []
        for where in wheres:
            if where.kind == 'nested':
                nested, nested_params = self.compile_where_list(where.value)
                if not nested:
                    continue
                clause = f'({nested})'
                params.extend(nested_params)
            elif where.kind == 'basic':
                clause = f'{where.column} {where.operator} ?'
                params.append(where.value)
            elif where.kind in ('in', 'not_in'):
                negate = 'not ' if where.kind == 'not_in' else ''
                if len(where.value) == 0:
                    # empty lists never match (in) or always match (not in)
                    clause = '1 = 1' if negate else '0 = 1'
                else:
                    placeholders = ', '.join(['?' for _ in where.value])
                    clause = f'{where.column} {negate}in ({placeholders})'
                    params.extend(where.value)
            elif where.kind == 'null':
                clause = f'{where.column} is null'
            else:
                clause = f'{where.column} is not null'

            parts.append(f'{where.boolean} {clause}' if parts else clause)

        return (' '.join(parts), params)

    def prepare_bindings(self, params: list) -> list:
        """Format datetime bindings with date_format; leave the rest."""
        return [
            p.strftime(self.date_format) if isinstance(p, datetime) else p
            for p in params
        ]


class SqliteProcessor:
    """Post-processes raw sqlite cursor results."""
    def process_select(self, query: SqlQueryBuilder,
                       cursor: CursorProtocol) -> list[dict]:
        """Turn the rows of the previous select into dicts keyed by
            column name.
        """
        names = [d[0] for d in cursor.description]
        return [dict(zip(names, row)) for row in cursor.fetchall()]

    def process_insert_get_id(self, query: SqlQueryBuilder,
                              cursor: CursorProtocol,
                              sequence: Optional[str] = None) -> Any:
        """Return the rowid generated by the previous insert."""
        return cursor.lastrowid


class SqlQueryBuilder:
    """Main query builder class. Constructed with a connection and the
        grammar and post-processor that connection supplies. When a
        hydration target is bound with `set_model`, select results are
        turned into instances of that entity type; otherwise they are
        returned as Rows.
    """
    connection: ConnectionProtocol
    grammar: GrammarProtocol
    processor: ProcessorProtocol
    connection_name: Optional[str]
    wheres: list[WhereClause]
    columns: Optional[list[str]]
    joins: list[JoinSpec]
    orders: list[tuple[str, str]]
    limit: Optional[int]
    offset: Optional[int]
    eager_loads: dict[str, list[str]]
    operators: tuple[str] = (
        '=', '<', '>', '<=', '>=', '<>', '!=', 'like', 'not like',
    )

    def __init__(self, connection: ConnectionProtocol,
                 grammar: GrammarProtocol = None,
                 processor: ProcessorProtocol = None) -> None:
        """Initialize the instance. The grammar and processor default
            to the ones supplied by the connection.
        """
        tert(isinstance(connection, ConnectionProtocol),
             'connection must implement ConnectionProtocol')
        self.connection = connection
        self.grammar = grammar or connection.get_query_grammar()
        self.processor = processor or connection.get_post_processor()
        tert(isinstance(self.grammar, GrammarProtocol),
             'grammar must implement GrammarProtocol')
        tert(isinstance(self.processor, ProcessorProtocol),
             'processor must implement ProcessorProtocol')
        self.connection_name = None
        self._table = None
        self._model = None
        self.wheres = []
        self.columns = None
        self.joins = []
        self.orders = []
        self.limit = None
        self.offset = None
        self.eager_loads = {}

    @property
    def model(self) -> Optional[type]:
        """The entity type that query results will be hydrated into."""
        return self._model

    @property
    def table(self) -> str:
        """The table name for the base query. Setting raises TypeError
            if supplied something other than a str.
        """
        return self._table

    @table.setter
    def table(self, name: str) -> None:
        tert(type(name) is str, 'name must be str')
        self._table = name

    def set_model(self, model: type) -> SqlQueryBuilder:
        """Bind the hydration target, then return self. Raises TypeError
            if model is not a class with a new_from_storage method.
        """
        tert(type(model) is type and hasattr(model, 'new_from_storage'),
             'model must be an entity class')
        self._model = model
        return self

    def from_(self, table: str) -> SqlQueryBuilder:
        """Set the table, then return self."""
        self.table = table
        return self

    def new_query(self) -> SqlQueryBuilder:
        """Returns a blank instance on the same connection, with no
            table or model bound.
        """
        query = self.__class__(self.connection, self.grammar, self.processor)
        query.connection_name = self.connection_name
        return query

    def reset(self) -> SqlQueryBuilder:
        """Returns a fresh instance using the configured table and model."""
        query = self.new_query()
        query._table = self._table
        query._model = self._model
        return query

    def select(self, *columns: str|list[str]) -> SqlQueryBuilder:
        """Sets the columns to select. Raises TypeError for invalid
            columns.
        """
        self.columns = []
        return self.add_select(*columns)

    def add_select(self, *columns: str|list[str]) -> SqlQueryBuilder:
        """Adds columns to select. Raises TypeError for invalid columns."""
        if len(columns) == 1 and type(columns[0]) in (list, tuple):
            columns = columns[0]
        tert(all([type(c) is str for c in columns]), 'select columns must be str')
        self.columns = [*(self.columns or []), *columns]
        return self

    def where(self, column: str, operator: str, value: Any = None,
              boolean: str = 'and') -> SqlQueryBuilder:
        """Save the 'column operator value' clause, then return self.
            Comparing to None with = or != becomes an is null or is not
            null clause. Raises TypeError or ValueError for invalid
            column, operator, or boolean.
        """
        tert(type(column) is str, 'column must be str')
        tert(type(operator) is str, 'operator must be str')
        vert(len(column), 'column cannot be empty')
        vert(operator.lower() in self.operators, f'unrecognized operator {operator}')
        vert(boolean in ('and', 'or'), 'boolean must be and or or')

        if value is None and operator in ('=', '!=', '<>'):
            kind = 'null' if operator == '=' else 'not_null'
            self.wheres.append(WhereClause(kind, column, boolean=boolean))
            return self

        self.wheres.append(WhereClause('basic', column, operator.lower(), value, boolean))
        return self

    def or_where(self, column: str, operator: str, value: Any = None) -> SqlQueryBuilder:
        """Save the 'or column operator value' clause, then return self."""
        return self.where(column, operator, value, 'or')

    def where_in(self, column: str, values: list|tuple, boolean: str = 'and',
                 negate: bool = False) -> SqlQueryBuilder:
        """Save the 'column in values' clause, then return self. An
            empty list of values never matches. Raises TypeError for
            invalid column or values.
        """
        tert(type(column) is str, 'column must be str')
        tert(type(values) in (list, tuple, set), 'values must be list or tuple')
        kind = 'not_in' if negate else 'in'
        self.wheres.append(WhereClause(kind, column, 'in', list(values), boolean))
        return self

    def where_not_in(self, column: str, values: list|tuple,
                     boolean: str = 'and') -> SqlQueryBuilder:
        """Save the 'column not in values' clause, then return self."""
        return self.where_in(column, values, boolean, negate=True)

    def where_null(self, column: str, boolean: str = 'and') -> SqlQueryBuilder:
        """Save the 'column is null' clause, then return self."""
        tert(type(column) is str, 'column must be str')
        self.wheres.append(WhereClause('null', column, boolean=boolean))
        return self

    def where_not_null(self, column: str, boolean: str = 'and') -> SqlQueryBuilder:
        """Save the 'column is not null' clause, then return self."""
        tert(type(column) is str, 'column must be str')
        self.wheres.append(WhereClause('not_null', column, boolean=boolean))
        return self

    def where_group(self, boolean: str = 'and') -> SqlQueryBuilder:
        """Add a parenthesized group of clauses and return a blank
            builder whose where methods fill that group. Raises
            ValueError for invalid boolean.
        """
        vert(boolean in ('and', 'or'), 'boolean must be and or or')
        group = self.new_query()
        self.wheres.append(WhereClause('nested', '', value=group.wheres, boolean=boolean))
        return group

    def join(self, table: str, first: str, operator: str, second: str,
             kind: str = 'inner') -> SqlQueryBuilder:
        """Prepares the query for a join with another table. Raises
            TypeError or ValueError for invalid arguments.
        """
        tert(all([type(a) is str for a in (table, first, operator, second, kind)]),
             'join arguments must be str')
        vert(operator in ('=', '>', '>=', '<', '<=', '<>'),
             'comparison must be in (=, >, >=, <, <=, <>)')
        vert(kind in ('inner', 'left', 'cross'), 'kind must be inner, left, or cross')
        self.joins.append(JoinSpec(kind, table, first, operator, second))
        return self

    def order_by(self, column: str, direction: str = 'asc') -> SqlQueryBuilder:
        """Adds an ordering. Raises TypeError or ValueError for invalid
            column or direction.
        """
        tert(type(column) is str, 'column must be str')
        tert(type(direction) is str, 'direction must be str')
        vert(direction.lower() in ('asc', 'desc'), 'direction must be asc or desc')
        self.orders.append((column, direction.lower()))
        return self

    def skip(self, offset: int) -> SqlQueryBuilder:
        """Sets the number of rows to skip. Raises TypeError or
            ValueError for invalid offset.
        """
        tert(type(offset) is int, 'offset must be positive int')
        vert(offset >= 0, 'offset must be positive int')
        self.offset = offset
        return self

    def with_(self, *relations: str|list[str]) -> SqlQueryBuilder:
        """Mark relationships for eager loading, then return self.
            Dotted names load nested relationships, e.g. 'posts.tags'.
        """
        if len(relations) == 1 and type(relations[0]) in (list, tuple):
            relations = relations[0]
        for name in relations:
            tert(type(name) is str, 'relation names must be str')
            vert(len(name), 'relation names cannot be empty')
            top, _, nested = name.partition('.')
            self.eager_loads.setdefault(top, [])
            if nested and nested not in self.eager_loads[top]:
                self.eager_loads[top].append(nested)
        return self

    def _select(self) -> list[dict]:
        """Run the compiled select and return the processed rows."""
        sql, params = self.grammar.compile_select(self)
        logger.debug('{} {}', sql, params)
        with self.connection.cursor() as cursor:
            cursor.execute(sql, params)
            return self.processor.process_select(self, cursor)

    def hydrate(self, rows: list[dict]) -> list:
        """Turn rows into instances of the bound entity type."""
        instance = self._model()
        if self.connection_name:
            instance.connection = self.connection_name
        return [instance.new_from_storage(row) for row in rows]

    def get(self, columns: list[str] = None) -> list:
        """Run the query on the datastore and return a list of results.
            Returns entities if a model is bound, otherwise Rows. Any
            relationships marked with `with_` are eager loaded onto the
            results.
        """
        if columns and not self.columns:
            self.select(columns)

        rows = self._select()

        if self._model is None:
            return [Row(data=row) for row in rows]

        models = self.hydrate(rows)
        if models and self.eager_loads:
            models = self.eager_load_relations(models)
        return models

    def eager_load_relations(self, models: list) -> list:
        """Eager load every relationship marked with `with_` onto the
            batch of models, one query per relationship.
        """
        for name, nested in self.eager_loads.items():
            models = self.load_relation(models, name, nested)
        return models

    def load_relation(self, models: list, name: str, nested: list[str]) -> list:
        """Eager load a single relationship onto the batch of models.
            Raises UnknownRelationMethod if the name does not resolve
            to a relationship on the bound entity type.
        """
        relation = self._model().get_eager_relation(name)
        relation.add_eager_constraints(models)
        if nested:
            relation.with_(*nested)
        logger.debug('eager loading {} for {} {}', name, len(models), self._model.__name__)
        models = relation.init_relation(models, name)
        return relation.match(models, relation.get_eager(), name)

    def first(self, columns: list[str] = None) -> Optional[Any]:
        """Run the query on the datastore and return the first result."""
        self.limit = 1
        results = self.get(columns)
        return results[0] if results else None

    def find(self, id: Any, columns: list[str] = None) -> Optional[Any]:
        """Find a record by its primary key and return it, or None."""
        key_name = getattr(self._model, 'key_name', 'id')
        return self.where(f'{self.table}.{key_name}', '=', id).first(columns)

    def count(self) -> int:
        """Returns the number of records matching the query."""
        columns, orders = self.columns, self.orders
        self.columns, self.orders = ['count(*) as aggregate'], []
        try:
            rows = self._select()
        finally:
            self.columns, self.orders = columns, orders
        return rows[0]['aggregate'] if rows else 0

    def take(self, limit: int) -> list:
        """Takes the specified number of rows. Raises TypeError or
            ValueError for invalid limit.
        """
        tert(type(limit) is int, 'limit must be positive int')
        vert(limit > 0, 'limit must be positive int')
        self.limit = limit
        return self.get()

    def chunk(self, number: int) -> Generator[list, None, None]:
        """Chunk all matching rows the specified number of rows at a
            time. Raises TypeError or ValueError for invalid number.
        """
        tert(type(number) is int, 'number must be int > 0')
        vert(number > 0, 'number must be int > 0')
        return self._chunk(number)

    def _chunk(self, number: int) -> Generator[list, None, None]:
        """Create the generator for chunking."""
        original_offset = self.offset
        self.offset = self.offset or 0
        result = self.take(number)

        while len(result) > 0:
            yield result
            self.offset += number
            result = self.take(number)

        self.offset = original_offset

    def insert(self, values: dict) -> int:
        """Insert a record and return the number of rows inserted.
            Raises TypeError for invalid values.
        """
        tert(isinstance(values, dict), 'values must be dict')
        sql, params = self.grammar.compile_insert(self, values)
        logger.debug('{} {}', sql, params)
        with self.connection.cursor() as cursor:
            return cursor.execute(sql, params).rowcount

    def insert_get_id(self, values: dict, sequence: str = None) -> Any:
        """Insert a record and return the generated id. Raises TypeError
            for invalid values.
        """
        tert(isinstance(values, dict), 'values must be dict')
        sql, params = self.grammar.compile_insert(self, values)
        logger.debug('{} {}', sql, params)
        with self.connection.cursor() as cursor:
            cursor.execute(sql, params)
            return self.processor.process_insert_get_id(self, cursor, sequence)

    def update(self, values: dict) -> int:
        """Update the matching records and return the number updated.
            Raises TypeError for invalid values.
        """
        tert(type(values) is dict, 'values must be dict')
        if len(values) == 0:
            return 0
        sql, params = self.grammar.compile_update(self, values)
        logger.debug('{} {}', sql, params)
        with self.connection.cursor() as cursor:
            return cursor.execute(sql, params).rowcount

    def delete(self) -> int:
        """Delete the records that match the query and return the number
            of deleted records.
        """
        sql, params = self.grammar.compile_delete(self)
        logger.debug('{} {}', sql, params)
        with self.connection.cursor() as cursor:
            return cursor.execute(sql, params).rowcount

    def to_sql(self) -> tuple[str, list]:
        """Return the compiled select SQL and its params."""
        return self.grammar.compile_select(self)
