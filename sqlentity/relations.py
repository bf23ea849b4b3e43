from __future__ import annotations
from .errors import tert, vert, tressa
from .interfaces import EntityProtocol, QueryBuilderProtocol
from contextlib import contextmanager
from typing import Any, Generator, Optional


"""
    Puts the R in ORM. Each relation wraps a query builder for the
    related entity type. Constructing a relation applies the base
    constraint for its owner unless constraints are suspended with
    `Relation.no_constraints()`, which is how eager loading builds one
    unconstrained query per relationship and then constrains it to the
    keys of the whole batch of owners.
"""


class Relation:
    """Base class for relationship resolvers."""
    query: QueryBuilderProtocol
    parent: EntityProtocol
    related: EntityProtocol
    _scope: Optional[QueryBuilderProtocol]
    _constraints: bool = True

    def __init__(self, query: QueryBuilderProtocol, parent: EntityProtocol) -> None:
        """Bind the query and owning entity, then apply the base
            constraints unless they are suspended. Raises TypeError if
            the query has no bound entity type.
        """
        tert(query.model is not None, 'query must have a bound entity type')
        self.query = query
        self.parent = parent
        self.related = query.model()
        self._scope = None
        if Relation._constraints:
            self.add_constraints()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(parent={self.parent.__class__.__name__}, ' + \
            f'related={self.related.__class__.__name__})'

    @classmethod
    @contextmanager
    def no_constraints(cls) -> Generator[None, None, None]:
        """Suspend the base constraints for relations constructed
            within the `with` block.
        """
        previous = Relation._constraints
        Relation._constraints = False
        try:
            yield
        finally:
            Relation._constraints = previous

    @property
    def scope(self) -> QueryBuilderProtocol:
        """The parenthesized group that holds the clauses added through
            the relation, so an or_where cannot escape the owner
            constraint.
        """
        if self._scope is None:
            self._scope = self.query.where_group()
        return self._scope

    def constrain(self, column: str, value: Any) -> None:
        """Constrain the column to equal the value. A None value
            matches nothing rather than compiling to is null.
        """
        if value is None:
            self.query.where_in(column, [])
        else:
            self.query.where(column, '=', value)

    @staticmethod
    def get_keys(models: list[EntityProtocol], key: str = None) -> list[Any]:
        """Return the unique, non-null primary keys (or values of the
            given attribute) of the models, preserving order.
        """
        keys = []
        for model in models:
            value = model.get_attribute(key) if key else model.get_key()
            if value is not None and value not in keys:
                keys.append(value)
        return keys

    def add_constraints(self) -> None:
        """Apply the base constraint for a single owner."""
        raise NotImplementedError()

    def add_eager_constraints(self, models: list[EntityProtocol]) -> None:
        """Constrain the query to the keys of a batch of owners."""
        raise NotImplementedError()

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        """Set the empty default for the relation on every owner."""
        raise NotImplementedError()

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        """Distribute the eagerly loaded results onto the owners."""
        raise NotImplementedError()

    def get_results(self) -> Any:
        """Return the lazy-loaded result of the relation."""
        raise NotImplementedError()

    def get_eager(self) -> list[EntityProtocol]:
        """Return the results of the eager query."""
        return self.get()

    # query surface
    def where(self, column: str, operator: str, value: Any = None) -> Relation:
        self.scope.where(column, operator, value)
        return self

    def or_where(self, column: str, operator: str, value: Any = None) -> Relation:
        self.scope.or_where(column, operator, value)
        return self

    def where_in(self, column: str, values: list|tuple) -> Relation:
        self.scope.where_in(column, values)
        return self

    def where_null(self, column: str) -> Relation:
        self.scope.where_null(column)
        return self

    def where_not_null(self, column: str) -> Relation:
        self.scope.where_not_null(column)
        return self

    def select(self, *columns: str) -> Relation:
        self.query.select(*columns)
        return self

    def order_by(self, column: str, direction: str = 'asc') -> Relation:
        self.query.order_by(column, direction)
        return self

    def with_(self, *relations: str) -> Relation:
        self.query.with_(*relations)
        return self

    def get(self, columns: list[str] = None) -> list[EntityProtocol]:
        return self.query.get(columns)

    def first(self, columns: list[str] = None) -> Optional[EntityProtocol]:
        self.query.limit = 1
        results = self.get(columns)
        return results[0] if results else None

    def find(self, id: Any, columns: list[str] = None) -> Optional[EntityProtocol]:
        """Find a related record by its primary key within the relation."""
        self.query.where(
            f'{self.related.get_table()}.{self.related.get_key_name()}', '=', id
        )
        return self.first(columns)

    def count(self) -> int:
        return self.query.count()

    def to_sql(self) -> tuple[str, list]:
        return self.query.to_sql()


class HasOneOrMany(Relation):
    """Shared behavior for relations where the related table holds a
        foreign key pointing at the owner:
        related[foreign_key] = parent.get_key().
    """
    foreign_key: str

    def __init__(self, query: QueryBuilderProtocol, parent: EntityProtocol,
                 foreign_key: str) -> None:
        """Set the foreign_key attribute, then let the Relation init
            handle the rest. Raises TypeError if foreign_key is not a
            str.
        """
        tert(isinstance(foreign_key, str), 'foreign_key must be str')
        vert(len(foreign_key) > 0, 'foreign_key cannot be empty')
        self.foreign_key = foreign_key
        super().__init__(query, parent)

    def get_plain_foreign_key(self) -> str:
        """The foreign key column without any table qualifier."""
        return self.foreign_key.split('.')[-1]

    def add_constraints(self) -> None:
        self.constrain(self.foreign_key, self.parent.get_key())

    def add_eager_constraints(self, models: list[EntityProtocol]) -> None:
        self.query.where_in(self.foreign_key, self.get_keys(models))

    def build_dictionary(self, results: list[EntityProtocol]) -> dict[Any, list]:
        """Group the results by their foreign key value."""
        dictionary = {}
        for result in results:
            key = result.get_attribute(self.get_plain_foreign_key())
            dictionary.setdefault(key, []).append(result)
        return dictionary

    def create(self, attributes: dict = {}) -> EntityProtocol:
        """Create, save, and return a related entity pointing at the
            owner. Raises UsageError if the owner has no key.
        """
        tressa(self.parent.get_key() is not None, 'owner must be saved first')
        instance = self.related.new_instance(attributes)
        instance.set_attribute(self.get_plain_foreign_key(), self.parent.get_key())
        instance.save()
        return instance

    def save(self, model: EntityProtocol) -> EntityProtocol:
        """Point the entity at the owner, save it, and return it. Raises
            UsageError if the owner has no key.
        """
        tressa(self.parent.get_key() is not None, 'owner must be saved first')
        model.set_attribute(self.get_plain_foreign_key(), self.parent.get_key())
        model.save()
        return model


class HasOne(HasOneOrMany):
    """Relation where the owner has at most one related entity."""
    def get_results(self) -> Optional[EntityProtocol]:
        if self.parent.get_key() is None:
            return None
        return self.first()

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        for model in models:
            model.set_relation(name, None)
        return models

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        dictionary = self.build_dictionary(results)
        for model in models:
            matches = dictionary.get(model.get_key(), [])
            model.set_relation(name, matches[0] if matches else None)
        return models


class HasMany(HasOneOrMany):
    """Relation where the owner has any number of related entities."""
    def get_results(self) -> list[EntityProtocol]:
        if self.parent.get_key() is None:
            return []
        return self.get()

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        for model in models:
            model.set_relation(name, [])
        return models

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        dictionary = self.build_dictionary(results)
        for model in models:
            model.set_relation(name, dictionary.get(model.get_key(), []))
        return models


class BelongsTo(Relation):
    """Inverse of HasOne and HasMany: the owner holds the foreign key,
        parent[foreign_key] = related.get_key().
    """
    foreign_key: str

    def __init__(self, query: QueryBuilderProtocol, parent: EntityProtocol,
                 foreign_key: str) -> None:
        """Set the foreign_key attribute, then let the Relation init
            handle the rest. Raises TypeError if foreign_key is not a
            str.
        """
        tert(isinstance(foreign_key, str), 'foreign_key must be str')
        vert(len(foreign_key) > 0, 'foreign_key cannot be empty')
        self.foreign_key = foreign_key
        super().__init__(query, parent)

    def add_constraints(self) -> None:
        self.constrain(
            self.related.get_key_name(),
            self.parent.get_attribute(self.foreign_key)
        )

    def add_eager_constraints(self, models: list[EntityProtocol]) -> None:
        self.query.where_in(
            self.related.get_key_name(),
            self.get_keys(models, self.foreign_key)
        )

    def get_results(self) -> Optional[EntityProtocol]:
        if self.parent.get_attribute(self.foreign_key) is None:
            return None
        return self.first()

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        for model in models:
            model.set_relation(name, None)
        return models

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        dictionary = {result.get_key(): result for result in results}
        for model in models:
            model.set_relation(name, dictionary.get(model.get_attribute(self.foreign_key)))
        return models

    def associate(self, model: EntityProtocol) -> EntityProtocol:
        """Point the owner at the related entity and return the owner.
            The owner is not saved.
        """
        self.parent.set_attribute(self.foreign_key, model.get_key())
        return self.parent


class BelongsToMany(Relation):
    """Relation where each owner can have many related entities and
        each related entity can have many owners, e.g. users and roles.
        Rows of the join table hold both keys:
        table[foreign_key] = parent.get_key() and
        table[other_key] = related.get_key(). The join table columns are
        selected as pivot_{column} and moved into each entity's pivot
        dict on hydration.
    """
    table: str
    foreign_key: str
    other_key: str

    def __init__(self, query: QueryBuilderProtocol, parent: EntityProtocol,
                 table: str, foreign_key: str, other_key: str) -> None:
        """Set the table, foreign_key, and other_key attributes, then
            let the Relation init handle the rest and join the table.
            Raises TypeError if any of them is not a str.
        """
        tert(type(table) is type(foreign_key) is type(other_key) is str,
             'table, foreign_key, and other_key must be str')
        self.table = table
        self.foreign_key = foreign_key
        self.other_key = other_key
        super().__init__(query, parent)
        self.set_join()

    def set_join(self) -> None:
        """Join the related table to the join table."""
        self.query.join(
            self.table,
            f'{self.related.get_table()}.{self.related.get_key_name()}',
            '=',
            f'{self.table}.{self.other_key}',
        )

    def add_constraints(self) -> None:
        self.constrain(f'{self.table}.{self.foreign_key}', self.parent.get_key())

    def add_eager_constraints(self, models: list[EntityProtocol]) -> None:
        self.query.where_in(f'{self.table}.{self.foreign_key}', self.get_keys(models))

    def get_select_columns(self, columns: list[str] = None) -> list[str]:
        """The requested columns (default all related columns) plus the
            aliased join table keys.
        """
        columns = columns or self.query.columns or [f'{self.related.get_table()}.*']
        return [
            *columns,
            f'{self.table}.{self.foreign_key} as pivot_{self.foreign_key}',
            f'{self.table}.{self.other_key} as pivot_{self.other_key}',
        ]

    def get(self, columns: list[str] = None) -> list[EntityProtocol]:
        self.query.select(self.get_select_columns(columns))
        models = self.query.get()
        self.hydrate_pivot(models)
        return models

    def hydrate_pivot(self, models: list[EntityProtocol]) -> None:
        """Move the pivot_ prefixed attributes into each pivot dict."""
        for model in models:
            for key in [k for k in model.attributes if k.startswith('pivot_')]:
                model.pivot[key[len('pivot_'):]] = model.attributes.pop(key)

    def get_results(self) -> list[EntityProtocol]:
        if self.parent.get_key() is None:
            return []
        return self.get()

    def init_relation(self, models: list[EntityProtocol], name: str) -> list[EntityProtocol]:
        for model in models:
            model.set_relation(name, [])
        return models

    def match(self, models: list[EntityProtocol], results: list[EntityProtocol],
              name: str) -> list[EntityProtocol]:
        dictionary = {}
        for result in results:
            dictionary.setdefault(result.pivot.get(self.foreign_key), []).append(result)
        for model in models:
            model.set_relation(name, dictionary.get(model.get_key(), []))
        return models

    def new_pivot_query(self) -> QueryBuilderProtocol:
        """Returns a query builder on the join table for the owner."""
        return self.query.new_query().from_(self.table).where(
            self.foreign_key, '=', self.parent.get_key()
        )

    def attach(self, ids: Any|list[Any], attributes: dict = {}) -> int:
        """Insert join table rows linking the owner to the related ids
            and return the number inserted. Raises UsageError if the
            owner has no key.
        """
        tressa(self.parent.get_key() is not None, 'owner must be saved first')
        ids = ids if type(ids) in (list, tuple) else [ids]
        query = self.query.new_query().from_(self.table)
        inserted = 0
        for id in ids:
            inserted += query.insert({
                self.foreign_key: self.parent.get_key(),
                self.other_key: id,
                **attributes,
            })
        return inserted

    def detach(self, ids: Any|list[Any] = None) -> int:
        """Delete join table rows for the owner, limited to the related
            ids if given, and return the number deleted.
        """
        query = self.new_pivot_query()
        if ids is not None:
            ids = ids if type(ids) in (list, tuple) else [ids]
            query.where_in(self.other_key, ids)
        return query.delete()
