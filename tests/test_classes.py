from context import classes, connections, interfaces
from datetime import datetime
from genericpath import isfile
from loguru import logger
from types import GeneratorType
import os
import sqlite3
import unittest


DB_FILEPATH = 'test.db'


class TestClasses(unittest.TestCase):
    db: sqlite3.Connection = None
    cursor: sqlite3.Cursor = None

    def setUp(self) -> None:
        """Set up the test database."""
        if isfile(DB_FILEPATH):
            os.remove(DB_FILEPATH)
        self.db = sqlite3.connect(DB_FILEPATH)
        self.cursor = self.db.cursor()
        self.cursor.execute('create table example (id integer primary key, ' +
            'name text, rank integer)')
        self.db.commit()
        self.connection = connections.SqliteConnection(DB_FILEPATH)
        return super().setUp()

    def tearDown(self) -> None:
        """Close cursor and delete test database."""
        self.cursor.close()
        self.db.close()
        os.remove(DB_FILEPATH)
        return super().tearDown()

    def builder(self) -> classes.SqlQueryBuilder:
        return classes.SqlQueryBuilder(self.connection).from_('example')

    # general tests
    def test_classes_contains_correct_classes(self):
        for name in ('SqliteContext', 'JoinSpec', 'WhereClause', 'Row',
                     'SqliteGrammar', 'SqliteProcessor', 'SqlQueryBuilder'):
            assert hasattr(classes, name), name
            assert type(getattr(classes, name)) is type, name

    def test_collaborators_implement_protocols(self):
        assert issubclass(classes.SqliteContext, interfaces.DBContextProtocol)
        assert isinstance(classes.SqliteGrammar(), interfaces.GrammarProtocol)
        assert isinstance(classes.SqliteProcessor(), interfaces.ProcessorProtocol)
        assert isinstance(self.builder(), interfaces.QueryBuilderProtocol)

    # context manager tests
    def test_SqliteContext_raises_errors_for_invalid_use(self):
        with self.assertRaises(TypeError) as e:
            with classes.SqliteContext([]):
                ...
        assert str(e.exception) == 'connection_info must be str or bytes'

    def test_SqliteContext_rolls_back_on_error(self):
        with self.assertRaises(ZeroDivisionError):
            with classes.SqliteContext(DB_FILEPATH) as cursor:
                cursor.execute("insert into example (name) values ('nope')")
                1/0
        self.cursor.execute('select count(*) from example')
        assert self.cursor.fetchone()[0] == 0

    # grammar tests
    def test_SqliteGrammar_compiles_select(self):
        query = self.builder().select('id', 'name').where('name', '=', 'a')
        query.or_where('rank', '>', 2).order_by('rank', 'desc').skip(5)
        query.limit = 10
        sql, params = query.to_sql()
        assert sql == 'select id, name from example where name = ? or rank > ?' + \
            ' order by rank desc limit 10 offset 5', sql
        assert params == ['a', 2]

    def test_SqliteGrammar_compiles_in_null_and_join(self):
        query = self.builder().where_in('id', [1, 2]).where_null('name')
        query.where_not_null('rank').join('other', 'example.id', '=', 'other.example_id')
        sql, params = query.to_sql()
        assert sql == 'select * from example inner join other on example.id = ' + \
            'other.example_id where id in (?, ?) and name is null and rank is not null', sql
        assert params == [1, 2]

    def test_SqliteGrammar_compiles_empty_in_as_false(self):
        sql, params = self.builder().where_in('id', []).to_sql()
        assert sql == 'select * from example where 0 = 1'
        assert params == []
        sql, _ = self.builder().where_not_in('id', []).to_sql()
        assert sql == 'select * from example where 1 = 1'

    def test_SqliteGrammar_offset_without_limit(self):
        sql, _ = self.builder().skip(3).to_sql()
        assert sql == 'select * from example limit -1 offset 3'

    def test_SqliteGrammar_compiles_insert_update_delete(self):
        grammar = classes.SqliteGrammar()
        query = self.builder().where('id', '=', 1)
        assert grammar.compile_insert(query, {'name': 'a', 'rank': 1}) == (
            'insert into example (name, rank) values (?, ?)', ['a', 1]
        )
        assert grammar.compile_insert(query, {}) == (
            'insert into example default values', []
        )
        assert grammar.compile_update(query, {'name': 'b'}) == (
            'update example set name = ? where id = ?', ['b', 1]
        )
        assert grammar.compile_delete(query) == (
            'delete from example where id = ?', [1]
        )

    def test_SqliteGrammar_formats_datetime_bindings(self):
        now = datetime(2024, 1, 2, 3, 4, 5)
        _, params = self.builder().where('rank', '<', now).to_sql()
        assert params == ['2024-01-02 03:04:05']

    def test_SqliteGrammar_compiles_where_group_in_parentheses(self):
        query = self.builder().where('rank', '=', 1)
        query.where_group().where('name', '=', 'a').or_where('name', '=', 'b')
        sql, params = query.to_sql()
        assert sql == 'select * from example where rank = ? and (name = ? or name = ?)', sql
        assert params == [1, 'a', 'b']

        query = self.builder()
        query.where_group()
        query.where('rank', '=', 1)
        assert query.to_sql() == ('select * from example where rank = ?', [1])

    # query builder tests
    def test_SqlQueryBuilder_where_group_limits_or_clauses(self):
        for i in range(3):
            self.builder().insert({'name': f'n{i}', 'rank': i})
        query = self.builder().where('rank', '>', 0)
        query.where_group().where('name', '=', 'n0').or_where('name', '=', 'n2')
        assert [r.data['name'] for r in query.get()] == ['n2']

        with self.assertRaises(ValueError) as e:
            self.builder().where_group('xor')
        assert str(e.exception) == 'boolean must be and or or'

    def test_SqlQueryBuilder_logs_sql_only_when_enabled(self):
        messages = []
        handler = logger.add(lambda m: messages.append(str(m)), level='DEBUG',
                             format='{message}')
        try:
            self.builder().where('rank', '=', 5).get()
            assert messages == []

            logger.enable('sqlentity')
            self.builder().where('rank', '=', 5).get()
        finally:
            logger.disable('sqlentity')
            logger.remove(handler)
        assert any(['select * from example where rank = ? [5]' in m for m in messages])

    def test_SqlQueryBuilder_where_with_None_becomes_null_check(self):
        query = self.builder().where('name', '=', None).where('rank', '!=', None)
        assert [w.kind for w in query.wheres] == ['null', 'not_null']

    def test_SqlQueryBuilder_where_raises_errors_for_invalid_input(self):
        with self.assertRaises(TypeError) as e:
            self.builder().where(1, '=', 1)
        assert str(e.exception) == 'column must be str'

        with self.assertRaises(ValueError) as e:
            self.builder().where('id', 'equals', 1)
        assert str(e.exception) == 'unrecognized operator equals'

    def test_SqlQueryBuilder_insert_get_id_and_get(self):
        first = self.builder().insert_get_id({'name': 'first', 'rank': 1})
        second = self.builder().insert_get_id({'name': 'second', 'rank': 2})
        assert first == 1 and second == 2

        rows = self.builder().order_by('rank').get()
        assert all([isinstance(r, classes.Row) for r in rows])
        assert [r.data['name'] for r in rows] == ['first', 'second']

        row = self.builder().where('rank', '>', 1).first()
        assert row.data == {'id': 2, 'name': 'second', 'rank': 2}

    def test_SqlQueryBuilder_update_delete_and_count(self):
        for i in range(5):
            self.builder().insert({'name': f'n{i}', 'rank': i})
        assert self.builder().count() == 5
        assert self.builder().where('rank', '<', 2).update({'name': 'low'}) == 2
        assert self.builder().where('name', '=', 'low').count() == 2
        assert self.builder().update({}) == 0
        assert self.builder().where('rank', '>=', 3).delete() == 2
        assert self.builder().count() == 3

    def test_SqlQueryBuilder_chunk_returns_generator(self):
        for i in range(5):
            self.builder().insert({'name': f'n{i}', 'rank': i})
        chunks = self.builder().order_by('rank').chunk(2)
        assert isinstance(chunks, GeneratorType)
        assert [len(c) for c in chunks] == [2, 2, 1]

    def test_SqlQueryBuilder_with_parses_nested_names(self):
        query = self.builder().with_('posts.tags', 'posts.comments', 'owner')
        assert query.eager_loads == {'posts': ['tags', 'comments'], 'owner': []}

    def test_SqlQueryBuilder_reset_keeps_table_and_drops_clauses(self):
        query = self.builder().where('id', '=', 1)
        fresh = query.reset()
        assert fresh.table == 'example'
        assert fresh.wheres == []
        assert fresh.connection is self.connection


if __name__ == '__main__':
    unittest.main()
