from __future__ import annotations
from .connections import ConnectionRegistry, registry
from .errors import InvalidRelatedType, UnknownRelationMethod, tert, vert, tressa
from .interfaces import ConnectionProtocol, QueryBuilderProtocol
from .relations import BelongsTo, BelongsToMany, HasMany, HasOne, Relation
from .tools import base_name, foreign_key, joining_table, snake_case
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Optional, Type
import packify


def accessor(key: str) -> Callable:
    """Decorator registering the method as the accessor for the
        attribute: `get_attribute(key)` returns `method(self, raw)`.
    """
    tert(type(key) is str, 'key must be str')
    def decorator(method: Callable) -> Callable:
        method._accessor_for = key
        return method
    return decorator

def mutator(key: str) -> Callable:
    """Decorator registering the method as the mutator for the
        attribute: `set_attribute(key, value)` stores
        `method(self, value)`.
    """
    tert(type(key) is str, 'key must be str')
    def decorator(method: Callable) -> Callable:
        method._mutator_for = key
        return method
    return decorator

def relationship(method: Callable) -> Callable:
    """Decorator marking the method as a relationship so that it can be
        eager loaded by name. While the method runs, its name is bound
        as the relation name, so `belongs_to` without a foreign key uses
        `{method name}_id`.
    """
    @wraps(method)
    def wrapper(self: SqlEntity, *args, **kwargs) -> Relation:
        previous = self._relation_name
        self._relation_name = method.__name__
        try:
            return method(self, *args, **kwargs)
        finally:
            self._relation_name = previous
    wrapper._is_relationship = True
    return wrapper


class SqlEntity:
    """Base entity mapping a row of a table to an in-memory object.
        Attributes are schema-less: any column name can be set. Names
        listed in `columns` also get properties that route through the
        attribute store.
    """
    table: str = ''
    key_name: str = 'id'
    connection: Optional[str] = None
    timestamps: bool = True
    created_at_column: str = 'created_at'
    updated_at_column: str = 'updated_at'
    columns: tuple[str] = ()
    registry: ConnectionRegistry = registry
    attributes: dict
    relations: dict
    pivot: dict
    exists: bool
    _relation_name: Optional[str] = None
    _event_hooks: dict[str, list[Callable]] = {}
    _accessors: dict[str, Callable] = {}
    _mutators: dict[str, Callable] = {}
    _relationships: frozenset[str] = frozenset()
    _entity_classes: dict[str, Type[SqlEntity]] = {}

    def __init_subclass__(cls, **kwargs) -> None:
        """Collect the accessor, mutator, and relationship tables and
            create the column properties for the new class.
        """
        super().__init_subclass__(**kwargs)
        cls._accessors = {**cls._accessors}
        cls._mutators = {**cls._mutators}
        relationships = set(cls._relationships)

        for name, member in cls.__dict__.items():
            if hasattr(member, '_accessor_for'):
                cls._accessors[member._accessor_for] = member
            if hasattr(member, '_mutator_for'):
                cls._mutators[member._mutator_for] = member
            if getattr(member, '_is_relationship', False):
                relationships.add(name)

        cls._relationships = frozenset(relationships)
        SqlEntity._entity_classes[cls.__name__] = cls

        for column in cls.columns:
            # names that collide with existing or declared members are left alone
            if not hasattr(cls, column) and column not in SqlEntity.__annotations__:
                setattr(cls, column, cls.create_property(column))

    def __init__(self, attributes: dict = {}) -> None:
        """Initialize the instance, filling the attributes through any
            registered mutators. Raises TypeError for non-dict
            attributes.
        """
        tert(isinstance(attributes, dict), 'attributes must be dict')
        self.attributes = {}
        self.relations = {}
        self.pivot = {}
        self.exists = False
        self.fill(attributes)

    @staticmethod
    def create_property(name: str) -> property:
        """Create a property for the column with the given name."""
        @property
        def prop(self):
            return self.get_attribute(name)
        @prop.setter
        def prop(self, value):
            self.set_attribute(name, value)
        @prop.deleter
        def prop(self):
            self.remove_attribute(name)
        return prop

    @staticmethod
    def encode_value(val: Any) -> str:
        """Encode a value for hashing. Uses the pack function from
            packify.
        """
        return packify.pack(val).hex()

    def __hash__(self) -> int:
        """Allow inclusion in sets. Raises TypeError for unencodable key
            (calls packify.pack).
        """
        data = self.encode_value([self.__class__.__name__, self.get_key()])
        return hash(bytes(data, 'utf-8'))

    def __eq__(self, other) -> bool:
        """Entities are equal if they have the same type and primary
            key. Entities without a key are only equal to themselves.
        """
        if type(other) != type(self):
            return False
        if self.get_key() is None or other.get_key() is None:
            return self is other
        return self.get_key() == other.get_key()

    def __repr__(self) -> str:
        """Pretty str representation."""
        return f"{self.__class__.__name__}(table='{self.get_table()}', " + \
            f"key_name='{self.key_name}', exists={self.exists}, " + \
            f"attributes={self.attributes})"

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __delitem__(self, key: str) -> None:
        self.remove_attribute(key)

    def __contains__(self, key: str) -> bool:
        return self.has_attribute(key)

    # attribute store
    @classmethod
    def add_accessor(cls, key: str, hook: Callable) -> None:
        """Register hook(entity, raw_value) as the accessor for key."""
        tert(type(key) is str, 'key must be str')
        vert(callable(hook), 'hook must be callable')
        cls._accessors[key] = hook

    @classmethod
    def add_mutator(cls, key: str, hook: Callable) -> None:
        """Register hook(entity, value) as the mutator for key."""
        tert(type(key) is str, 'key must be str')
        vert(callable(hook), 'hook must be callable')
        cls._mutators[key] = hook

    def has_accessor(self, key: str) -> bool:
        return key in self._accessors

    def has_mutator(self, key: str) -> bool:
        return key in self._mutators

    def get_attribute(self, key: str) -> Any:
        """Return the stored value for key, or None if absent. If an
            accessor is registered for key, the raw value is passed
            through it first.
        """
        value = self.attributes.get(key)
        if self.has_accessor(key):
            return self._accessors[key](self, value)
        return value

    def set_attribute(self, key: str, value: Any) -> SqlEntity:
        """Store the value for key, passing it through the registered
            mutator if there is one. Return self in monad pattern.
            Raises TypeError for non-str key.
        """
        tert(type(key) is str, 'key must be str')
        if self.has_mutator(key):
            value = self._mutators[key](self, value)
        self.attributes[key] = value
        return self

    def has_attribute(self, key: str) -> bool:
        return self.attributes.get(key) is not None

    def remove_attribute(self, key: str) -> SqlEntity:
        self.attributes.pop(key, None)
        return self

    def get_attributes(self) -> dict:
        return self.attributes

    def fill(self, attributes: dict) -> SqlEntity:
        """Set each attribute through set_attribute. Return self in
            monad pattern.
        """
        tert(isinstance(attributes, dict), 'attributes must be dict')
        for key, value in attributes.items():
            self.set_attribute(key, value)
        return self

    # identity and naming
    def get_table(self) -> str:
        """Return the table name: the table class attribute if set, or
            the snake_case class name with an s appended.
        """
        return self.table or snake_case(base_name(self)) + 's'

    def set_table(self, table: str) -> SqlEntity:
        """Override the table name for this instance. Return self in
            monad pattern. Raises TypeError or ValueError for invalid
            table.
        """
        tert(type(table) is str, 'table must be str')
        vert(len(table) > 0, 'table cannot be empty')
        self.table = table
        return self

    def get_key_name(self) -> str:
        return self.key_name

    def get_key(self) -> Any:
        return self.get_attribute(self.get_key_name())

    def get_foreign_key(self) -> str:
        """The default foreign key for relations pointing at this type."""
        return foreign_key(self)

    def joining_table(self, related: Type[SqlEntity]|SqlEntity|str) -> str:
        """The default join table between this type and related."""
        return joining_table(self, related)

    # connections
    @classmethod
    def add_connection(cls, name: str, connection: ConnectionProtocol) -> None:
        """Register a connection with the registry of this class."""
        cls.registry.register(name, connection)

    @classmethod
    def get_default_connection(cls) -> ConnectionProtocol:
        return cls.registry.get_default()

    @classmethod
    def set_default_connection_name(cls, name: str) -> None:
        cls.registry.set_default_name(name)

    @classmethod
    def clear_connections(cls) -> None:
        cls.registry.clear()

    def get_connection(self) -> ConnectionProtocol:
        """Return the connection named by this entity, or the registry
            default if none is named. Raises UnknownConnection or
            NoDefaultConnection.
        """
        if self.connection:
            return self.registry.resolve(self.connection)
        return self.registry.get_default()

    def get_connection_name(self) -> Optional[str]:
        return self.connection or self.registry.get_default_name()

    def set_connection(self, name: str) -> SqlEntity:
        """Set the connection name for this instance. Raises
            UnknownConnection if the name is not registered.
        """
        self.registry.resolve(name)
        self.connection = name
        return self

    # queries
    def new_query(self) -> QueryBuilderProtocol:
        """Returns a query builder bound to this entity's connection,
            table, and type.
        """
        conn = self.get_connection()
        grammar = conn.get_query_grammar()
        processor = conn.get_post_processor()
        builder = conn.query_builder_class(conn, grammar, processor)
        builder.connection_name = self.connection
        return builder.from_(self.get_table()).set_model(self.__class__)

    @classmethod
    def query(cls) -> QueryBuilderProtocol:
        """Returns a query builder for the entity type."""
        return cls().new_query()

    @classmethod
    def where(cls, column: str, operator: str, value: Any = None) -> QueryBuilderProtocol:
        """Returns a query builder with the given constraint."""
        return cls.query().where(column, operator, value)

    @classmethod
    def with_(cls, *relations: str) -> QueryBuilderProtocol:
        """Begin querying the entity type with eager loading."""
        return cls.query().with_(*relations)

    @classmethod
    def find(cls, id: Any, columns: list[str] = None) -> Optional[SqlEntity]:
        """Find a record by its primary key and return it. Return None
            if it does not exist.
        """
        return cls.query().find(id, columns)

    @classmethod
    def all(cls, columns: list[str] = None) -> list[SqlEntity]:
        return cls.query().get(columns)

    @classmethod
    def create(cls, attributes: dict) -> SqlEntity:
        """Construct, fill, save, and return a new instance."""
        model = cls(attributes)
        model.save()
        return model

    def new_instance(self, attributes: dict = {}) -> SqlEntity:
        """Create a new instance of the same type on the same connection."""
        model = self.__class__(attributes)
        model.connection = self.connection
        model.table = self.table
        return model

    def new_from_storage(self, row: dict) -> SqlEntity:
        """Hydrate a storage row into a new instance that exists. The
            row is stored raw; mutators are not applied.
        """
        model = self.new_instance()
        model.attributes = dict(row)
        model.exists = True
        return model

    # event hooks
    @classmethod
    def add_hook(cls, event: str, hook: Callable):
        """Add the hook for the event."""
        if cls is not SqlEntity and cls._event_hooks is SqlEntity._event_hooks:
            cls._event_hooks = {} # give each class its own event hooks dict
        if event not in cls._event_hooks:
            cls._event_hooks[event] = []
        if hook not in cls._event_hooks[event]:
            cls._event_hooks[event].append(hook)

    @classmethod
    def remove_hook(cls, event: str, hook: Callable):
        """Remove the hook for the event."""
        if cls is not SqlEntity and cls._event_hooks is SqlEntity._event_hooks:
            cls._event_hooks = {}
        if event in cls._event_hooks and hook in cls._event_hooks[event]:
            cls._event_hooks[event].remove(hook)

    @classmethod
    def clear_hooks(cls, event: str = None):
        """Remove all hooks for an event. If no event is specified,
            clear all hooks for all events.
        """
        if cls is not SqlEntity and cls._event_hooks is SqlEntity._event_hooks:
            cls._event_hooks = {}
        if event is None:
            return cls._event_hooks.clear()
        cls._event_hooks.pop(event, None)

    @classmethod
    def invoke_hooks(cls, event: str, *args, **kwargs):
        """Invoke the hooks for the event, passing cls, *args, and
            **kwargs.
        """
        for hook in cls._event_hooks.get(event, []):
            hook(cls, *args, **kwargs)

    # persistence
    def fresh_timestamp(self) -> datetime:
        return datetime.now()

    def update_timestamps(self) -> None:
        """Set updated_at, and created_at for new entities, from a
            single clock read.
        """
        time = self.fresh_timestamp()
        self.set_attribute(self.updated_at_column, time)
        if not self.exists:
            self.set_attribute(self.created_at_column, time)

    def save(self, /, *, suppress_events: bool = False) -> bool:
        """Persist to the datastore. Existing entities are updated by
            primary key with the full attribute set; new entities are
            inserted, given the generated key (unless one was already
            set), and marked as existing.
        """
        if not suppress_events:
            self.invoke_hooks('before_save', self)

        query = self.new_query()

        if self.timestamps:
            self.update_timestamps()

        if self.exists:
            if not suppress_events:
                self.invoke_hooks('before_update', self)
            query.where(self.get_key_name(), '=', self.get_key())
            query.update({**self.attributes})
            if not suppress_events:
                self.invoke_hooks('after_update', self)
        else:
            if not suppress_events:
                self.invoke_hooks('before_insert', self)
            if self.get_key() is None:
                self.attributes.pop(self.get_key_name(), None)
                self.attributes[self.get_key_name()] = query.insert_get_id({**self.attributes})
            else:
                query.insert({**self.attributes})
            self.exists = True
            if not suppress_events:
                self.invoke_hooks('after_insert', self)

        if not suppress_events:
            self.invoke_hooks('after_save', self)

        return True

    def delete(self, /, *, suppress_events: bool = False) -> bool:
        """Delete the record by primary key and mark the entity as no
            longer existing. Raises UsageError if the key is not set.
        """
        tressa(self.get_key() is not None, 'cannot delete an entity without a key')
        if not suppress_events:
            self.invoke_hooks('before_delete', self)
        self.new_query().where(self.get_key_name(), '=', self.get_key()).delete()
        self.exists = False
        if not suppress_events:
            self.invoke_hooks('after_delete', self)
        return True

    def reload(self) -> SqlEntity:
        """Reload attributes from the datastore and forget loaded
            relations. Return self in monad pattern. Raises UsageError
            if the key is not set or the record no longer exists.
        """
        tressa(self.get_key() is not None, 'cannot reload an entity without a key')
        fresh = self.new_query().find(self.get_key())
        tressa(fresh is not None, 'record no longer exists')
        self.attributes = fresh.attributes
        self.relations = {}
        self.exists = True
        return self

    # relationships
    def _resolve_related(self, related: Type[SqlEntity]|str) -> SqlEntity:
        """Return a blank instance of the related type. A str is looked
            up by class base name. Raises InvalidRelatedType.
        """
        if isinstance(related, str):
            related = SqlEntity._entity_classes.get(base_name(related))
        if not (isinstance(related, type) and issubclass(related, SqlEntity)):
            raise InvalidRelatedType(f'cannot construct related type {related!r}')
        return related()

    def has_one(self, related: Type[SqlEntity]|str,
                foreign_key: str = None) -> HasOne:
        """Define a one-to-one relationship. The foreign key on the
            related table defaults to this type's foreign key.
        """
        foreign_key = foreign_key or self.get_foreign_key()
        instance = self._resolve_related(related)
        return HasOne(instance.new_query(), self, foreign_key)

    def has_many(self, related: Type[SqlEntity]|str,
                 foreign_key: str = None) -> HasMany:
        """Define a one-to-many relationship. The foreign key on the
            related table defaults to this type's foreign key.
        """
        foreign_key = foreign_key or self.get_foreign_key()
        instance = self._resolve_related(related)
        return HasMany(instance.new_query(), self, foreign_key)

    def belongs_to(self, related: Type[SqlEntity]|str, foreign_key: str = None,
                   relation: str = None) -> BelongsTo:
        """Define an inverse one-to-one or many relationship. If no
            foreign key is supplied, it is `{relation}_id`, where
            relation defaults to the name of the calling method when
            that method is decorated with `@relationship`; failing both,
            the related type's foreign key is used.
        """
        instance = self._resolve_related(related)
        if foreign_key is None:
            relation = relation or self._relation_name
            foreign_key = f'{relation}_id' if relation else instance.get_foreign_key()
        return BelongsTo(instance.new_query(), self, foreign_key)

    def belongs_to_many(self, related: Type[SqlEntity]|str, table: str = None,
                        foreign_key: str = None, other_key: str = None) -> BelongsToMany:
        """Define a many-to-many relationship through a join table. The
            join table defaults to both snake_case type names sorted and
            joined with an underscore.
        """
        foreign_key = foreign_key or self.get_foreign_key()
        instance = self._resolve_related(related)
        other_key = other_key or instance.get_foreign_key()
        table = table or self.joining_table(instance)
        return BelongsToMany(instance.new_query(), self, table, foreign_key, other_key)

    def get_eager_relation(self, name: str) -> Relation:
        """Return the named relationship without its base constraints.
            Raises UnknownRelationMethod if the name is not a method
            decorated with `@relationship` or does not return a Relation.
        """
        if name not in self._relationships:
            raise UnknownRelationMethod(
                f'{self.__class__.__name__} has no relationship named {name}')
        with Relation.no_constraints():
            relation = getattr(self, name)()
        if not isinstance(relation, Relation):
            raise UnknownRelationMethod(
                f'{self.__class__.__name__}.{name} did not return a Relation')
        return relation

    def get_relation(self, name: str) -> Any:
        return self.relations.get(name)

    def set_relation(self, name: str, value: Any) -> SqlEntity:
        self.relations[name] = value
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self.relations

    def get_relation_value(self, name: str) -> Any:
        """Return the loaded result of the named relationship, lazy
            loading and caching it on first access. Raises
            UnknownRelationMethod for unknown names.
        """
        if self.relation_loaded(name):
            return self.relations[name]
        if name not in self._relationships:
            raise UnknownRelationMethod(
                f'{self.__class__.__name__} has no relationship named {name}')
        relation = getattr(self, name)()
        self.set_relation(name, relation.get_results())
        return self.relations[name]

    def load(self, *relations: str) -> SqlEntity:
        """Eager load the relationships onto this entity. Return self
            in monad pattern.
        """
        self.new_query().with_(*relations).eager_load_relations([self])
        return self
