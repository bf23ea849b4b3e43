from __future__ import annotations
from .classes import SqliteContext, SqliteGrammar, SqliteProcessor, SqlQueryBuilder
from .errors import NoDefaultConnection, UnknownConnection, tert, vert, tressa
from .interfaces import (
    ConnectionProtocol,
    DBContextProtocol,
    GrammarProtocol,
    ProcessorProtocol,
    QueryBuilderProtocol,
)
from genericpath import isfile
from loguru import logger
from os import environ
from typing import Optional, Type


class SqliteConnection:
    """Connection handle for a sqlite database. Supplies the grammar
        and post-processor used by query builders, and opens a
        SqliteContext for each statement.
    """
    connection_info: str = ''
    context_manager: Type[DBContextProtocol] = SqliteContext
    query_builder_class: Type[QueryBuilderProtocol] = SqlQueryBuilder
    grammar: GrammarProtocol
    processor: ProcessorProtocol

    def __init__(self, connection_info: str = '',
                 grammar: GrammarProtocol = None,
                 processor: ProcessorProtocol = None) -> None:
        """Initialize the instance. Raises TypeError for non-str
            connection_info or UsageError for empty connection_info.
        """
        if not connection_info and hasattr(self.__class__, 'connection_info'):
            connection_info = self.__class__.connection_info
        tert(type(connection_info) is str, 'connection_info must be str')
        tressa(len(connection_info) > 0, 'cannot use with empty connection_info')
        self.connection_info = connection_info
        self.grammar = grammar or SqliteGrammar()
        self.processor = processor or SqliteProcessor()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(connection_info='{self.connection_info}')"

    @classmethod
    def from_environ(cls, variable: str = 'CONNECTION_STRING',
                     env_file: str = '.env') -> SqliteConnection:
        """Build a connection from the named environment variable,
            falling back to a line of the form VARIABLE=value in the
            env_file. Raises UsageError if neither supplies a value.
        """
        connection_info = environ.get(variable)
        if not connection_info and isfile(env_file):
            with open(env_file, 'r') as f:
                for line in f.readlines():
                    name, _, value = line.strip().partition('=')
                    if name.strip() == variable:
                        connection_info = value.strip().strip('"\'')
        tressa(connection_info is not None and len(connection_info) > 0,
               f'{variable} must be set in the environment or {env_file}')
        return cls(connection_info)

    def get_query_grammar(self) -> GrammarProtocol:
        """Return the grammar for the sqlite dialect."""
        return self.grammar

    def get_post_processor(self) -> ProcessorProtocol:
        """Return the post-processor for sqlite results."""
        return self.processor

    def cursor(self) -> DBContextProtocol:
        """Return a context manager that yields a cursor."""
        return self.context_manager(self.connection_info)


class ConnectionRegistry:
    """Named connection handles with one default. The first registered
        connection becomes the default. Not synchronized: hosts that
        share a registry across threads must serialize access.
    """
    connections: dict[str, ConnectionProtocol]
    default_name: Optional[str]

    def __init__(self) -> None:
        self.connections = {}
        self.default_name = None

    def __contains__(self, name: str) -> bool:
        return name in self.connections

    def __len__(self) -> int:
        return len(self.connections)

    def register(self, name: str, connection: ConnectionProtocol) -> ConnectionRegistry:
        """Register a connection handle under the name, then return self
            in monad pattern. Raises TypeError or ValueError for invalid
            name or connection.
        """
        tert(type(name) is str, 'name must be str')
        vert(len(name) > 0, 'name cannot be empty')
        tert(isinstance(connection, ConnectionProtocol),
             'connection must implement ConnectionProtocol')
        if self.default_name is None:
            self.default_name = name
        self.connections[name] = connection
        logger.debug('registered connection {}: {!r}', name, connection)
        return self

    def resolve(self, name: str) -> ConnectionProtocol:
        """Return the connection registered under the name. Raises
            UnknownConnection if it is not registered.
        """
        if name not in self.connections:
            raise UnknownConnection(f"connection '{name}' is not registered")
        return self.connections[name]

    def get_default(self) -> ConnectionProtocol:
        """Return the default connection. Raises NoDefaultConnection if
            no connection has been registered.
        """
        if self.default_name is None or not self.connections:
            raise NoDefaultConnection('no default connection registered')
        return self.resolve(self.default_name)

    def get_default_name(self) -> Optional[str]:
        return self.default_name

    def set_default_name(self, name: str) -> ConnectionRegistry:
        """Set the default connection name, then return self. Raises
            UnknownConnection if the name is not registered.
        """
        tert(type(name) is str, 'name must be str')
        if name not in self.connections:
            raise UnknownConnection(f"connection '{name}' is not registered")
        self.default_name = name
        logger.debug('default connection set to {}', name)
        return self

    def names(self) -> list[str]:
        return list(self.connections.keys())

    def clear(self) -> ConnectionRegistry:
        """Drop all registrations and the default marker."""
        self.connections = {}
        self.default_name = None
        return self


registry = ConnectionRegistry()
