from context import connections, entity, errors, interfaces
from datetime import datetime
from genericpath import isfile
from unittest import mock
import os
import packify
import sqlite3
import unittest


DB_FILEPATH = 'test.db'
OTHER_DB_FILEPATH = 'other.db'


class Account(entity.SqlEntity):
    columns = ('name', 'email')

    @entity.accessor('email')
    def email_lower(self, value):
        return value.lower() if isinstance(value, str) else value

    @entity.mutator('name')
    def name_strip(self, value):
        return value.strip() if isinstance(value, str) else value


class Widget(entity.SqlEntity):
    table = 'gadgets'
    timestamps = False
    columns = ('label',)


class TestEntity(unittest.TestCase):
    db: sqlite3.Connection = None
    cursor: sqlite3.Cursor = None

    def setUp(self) -> None:
        """Set up the test databases and register the connections."""
        for path in (DB_FILEPATH, OTHER_DB_FILEPATH):
            if isfile(path):
                os.remove(path)
        self.db = sqlite3.connect(DB_FILEPATH)
        self.cursor = self.db.cursor()
        self.cursor.execute('create table accounts (id integer primary key, ' +
            'name text, email text, created_at text, updated_at text)')
        self.cursor.execute('create table gadgets (id integer primary key, label text)')
        self.db.commit()

        with sqlite3.connect(OTHER_DB_FILEPATH) as other:
            other.execute('create table gadgets (id integer primary key, label text)')
        other.close()

        connections.registry.clear()
        connections.registry.register('default', connections.SqliteConnection(DB_FILEPATH))
        connections.registry.register('other', connections.SqliteConnection(OTHER_DB_FILEPATH))
        return super().setUp()

    def tearDown(self) -> None:
        """Close cursor, delete test databases, and clear registrations."""
        self.cursor.close()
        self.db.close()
        for path in (DB_FILEPATH, OTHER_DB_FILEPATH):
            if isfile(path):
                os.remove(path)
        connections.registry.clear()
        Account.clear_hooks()
        return super().tearDown()

    # attribute store tests
    def test_SqlEntity_implements_EntityProtocol(self):
        assert isinstance(Account(), interfaces.EntityProtocol)

    def test_accessor_transforms_reads_and_mutator_transforms_writes(self):
        account = Account({'name': '  Alice ', 'email': 'ALICE@Example.com'})
        assert account.attributes['name'] == 'Alice'
        assert account.attributes['email'] == 'ALICE@Example.com'
        assert account.get_attribute('email') == 'alice@example.com'
        assert account.has_accessor('email') and not account.has_accessor('name')
        assert account.has_mutator('name') and not account.has_mutator('email')

    def test_column_properties_and_item_access_use_the_attribute_store(self):
        account = Account()
        account.name = ' Bob '
        assert account['name'] == 'Bob'
        account['email'] = 'BOB@EXAMPLE.COM'
        assert account.email == 'bob@example.com'
        assert 'email' in account
        del account.email
        assert 'email' not in account
        assert account.email is None

    def test_schemaless_attributes_can_be_set_without_declaration(self):
        account = Account({'nickname': 'al'})
        assert account.get_attribute('nickname') == 'al'
        assert account.has_attribute('nickname')
        assert account.set_attribute('nickname', None) is account
        assert not account.has_attribute('nickname')
        assert account.get_attribute('missing') is None

    def test_set_attribute_raises_TypeError_for_non_str_key(self):
        with self.assertRaises(TypeError) as e:
            Account().set_attribute(1, 'x')
        assert str(e.exception) == 'key must be str'

    def test_add_accessor_and_add_mutator_register_hooks(self):
        class Labelled(entity.SqlEntity):
            ...
        Labelled.add_mutator('label', lambda model, value: value.upper())
        Labelled.add_accessor('label', lambda model, value: f'<{value}>')
        labelled = Labelled({'label': 'x'})
        assert labelled.attributes['label'] == 'X'
        assert labelled['label'] == '<X>'
        assert not Widget().has_mutator('label')

    def test_columns_named_like_entity_state_get_no_property(self):
        class Ledger(entity.SqlEntity):
            columns = ('attributes', 'relations', 'pivot', 'exists', 'label')

        ledger = Ledger({'label': 'x', 'exists': 'column value'})
        assert ledger.exists is False
        assert ledger.pivot == {}
        assert ledger.relations == {}
        assert ledger.attributes == {'label': 'x', 'exists': 'column value'}
        assert ledger['exists'] == 'column value'
        assert ledger.label == 'x'
        assert not isinstance(Ledger.__dict__.get('pivot'), property)

    # naming tests
    def test_set_table_overrides_table_for_instance(self):
        widget = Widget().set_table('other_gadgets')
        assert widget.get_table() == 'other_gadgets'
        assert widget.new_instance().get_table() == 'other_gadgets'
        assert Widget().get_table() == 'gadgets'
        assert widget.new_query().table == 'other_gadgets'

        with self.assertRaises(TypeError) as e:
            Widget().set_table(1)
        assert str(e.exception) == 'table must be str'

        with self.assertRaises(ValueError) as e:
            Widget().set_table('')
        assert str(e.exception) == 'table cannot be empty'

    def test_get_table_defaults_to_pluralized_snake_case_name(self):
        class BlogPost(entity.SqlEntity):
            ...
        assert BlogPost().get_table() == 'blog_posts'
        assert Account().get_table() == 'accounts'
        assert Widget().get_table() == 'gadgets'

    def test_get_foreign_key_and_joining_table(self):
        assert Account().get_foreign_key() == 'account_id'
        assert Account().joining_table(Widget) == 'account_widget'

    # identity tests
    def test_hash_and_eq_use_type_and_key(self):
        first = Widget({'id': 1, 'label': 'a'})
        second = Widget({'id': 1, 'label': 'b'})
        third = Widget({'id': 2})
        assert first == second
        assert first != third
        assert first != Account({'id': 1})
        assert len({first, second, third}) == 2
        assert Widget() != Widget()

    def test_encode_value_uses_packify(self):
        assert entity.SqlEntity.encode_value([1, 'a']) == packify.pack([1, 'a']).hex()

    # persistence tests
    def test_create_inserts_and_populates_key(self):
        account = Account.create({'name': 'Alice', 'email': 'a@example.com'})
        assert account.exists
        assert account.get_key() == 1
        assert isinstance(account['created_at'], datetime)

        found = Account.find(1)
        assert isinstance(found, Account)
        assert found.exists
        assert found.name == 'Alice'
        assert found == account

    def test_save_sets_both_timestamps_on_insert_from_one_clock_read(self):
        account = Account({'name': 'Alice'})
        account.save()
        assert account['created_at'] == account['updated_at']

    def test_save_updates_only_updated_at_on_update(self):
        first = datetime(2024, 1, 1, 12, 0, 0)
        second = datetime(2024, 1, 2, 12, 0, 0)
        with mock.patch.object(Account, 'fresh_timestamp', side_effect=[first, second]):
            account = Account.create({'name': 'Alice'})
            account.name = 'Alicia'
            account.save()
        assert account['created_at'] == first
        assert account['updated_at'] == second

        fresh = Account.find(account.get_key())
        assert fresh.name == 'Alicia'
        assert fresh['created_at'] == '2024-01-01 12:00:00'
        assert fresh['updated_at'] == '2024-01-02 12:00:00'

    def test_save_without_timestamps_leaves_them_unset(self):
        widget = Widget.create({'label': 'thing'})
        assert widget.exists
        assert 'created_at' not in widget.attributes
        assert Widget.find(widget.get_key()).label == 'thing'

    def test_save_with_preset_key_inserts_it(self):
        widget = Widget.create({'id': 42, 'label': 'answer'})
        assert widget.get_key() == 42
        assert Widget.find(42).label == 'answer'

    def test_new_from_storage_skips_mutators(self):
        account = Account().new_from_storage({'id': 3, 'name': '  raw  '})
        assert account.exists
        assert account.attributes['name'] == '  raw  '

    def test_all_where_and_query(self):
        for label in ('a', 'b', 'c'):
            Widget.create({'label': label})
        assert len(Widget.all()) == 3
        assert [w.label for w in Widget.where('label', '!=', 'b').get()] == ['a', 'c']
        assert Widget.query().count() == 3
        assert Widget.find(99) is None

    def test_delete_and_reload(self):
        widget = Widget.create({'label': 'before'})
        Widget.where('id', '=', widget.get_key()).update({'label': 'after'})
        assert widget.reload() is widget
        assert widget.label == 'after'

        assert widget.delete()
        assert not widget.exists
        assert Widget.find(widget.get_key()) is None

        with self.assertRaises(packify.UsageError) as e:
            widget.reload()
        assert str(e.exception) == 'record no longer exists'

        with self.assertRaises(packify.UsageError) as e:
            Widget().delete()
        assert str(e.exception) == 'cannot delete an entity without a key'

    # event hook tests
    def test_hooks_are_invoked_around_persistence(self):
        events = []
        def record(event):
            def hook(cls, model):
                events.append((event, cls.__name__))
            return hook

        for event in ('before_save', 'before_insert', 'after_insert',
                      'before_update', 'after_update', 'after_save',
                      'before_delete', 'after_delete'):
            Account.add_hook(event, record(event))

        account = Account.create({'name': 'Alice'})
        assert [e for e, _ in events] == [
            'before_save', 'before_insert', 'after_insert', 'after_save'
        ]
        events.clear()

        account.save()
        assert [e for e, _ in events] == [
            'before_save', 'before_update', 'after_update', 'after_save'
        ]
        events.clear()

        account.delete()
        assert [e for e, _ in events] == ['before_delete', 'after_delete']
        assert all([name == 'Account' for _, name in events])
        events.clear()

        Account({'name': 'quiet'}).save(suppress_events=True)
        assert events == []

    def test_hooks_are_per_class_and_removable(self):
        calls = []
        hook = lambda cls, model: calls.append(model)
        Account.add_hook('before_save', hook)
        Widget.create({'label': 'x'})
        assert calls == []

        Account.create({'name': 'a'})
        assert len(calls) == 1

        Account.remove_hook('before_save', hook)
        Account.create({'name': 'b'})
        assert len(calls) == 1

    def test_remove_hook_on_subclass_leaves_base_hooks_alone(self):
        hook = lambda cls, model: None
        entity.SqlEntity.add_hook('before_save', hook)
        try:
            class Gizmo(entity.SqlEntity):
                ...
            Gizmo.remove_hook('before_save', hook)
            assert hook in entity.SqlEntity._event_hooks['before_save']
            assert Gizmo._event_hooks is not entity.SqlEntity._event_hooks
        finally:
            entity.SqlEntity.clear_hooks()

    # connection tests
    def test_connection_override_routes_queries(self):
        class OtherWidget(Widget):
            connection = 'other'

        OtherWidget.create({'label': 'elsewhere'})
        assert Widget.query().count() == 0
        assert OtherWidget.query().count() == 1

        found = OtherWidget.find(1)
        assert found.connection == 'other'
        assert found.get_connection_name() == 'other'

    def test_set_connection_validates_name(self):
        widget = Widget()
        assert widget.get_connection_name() == 'default'
        assert widget.set_connection('other') is widget
        assert widget.get_connection() is connections.registry.resolve('other')

        with self.assertRaises(errors.UnknownConnection):
            widget.set_connection('missing')

    def test_unknown_connection_name_raises_UnknownConnection(self):
        class LostWidget(Widget):
            connection = 'missing'

        with self.assertRaises(errors.UnknownConnection):
            LostWidget.query()

    def test_no_registered_connection_raises_NoDefaultConnection(self):
        Widget.clear_connections()
        with self.assertRaises(errors.NoDefaultConnection):
            Widget.all()

    def test_default_connection_name_can_be_changed(self):
        Widget.set_default_connection_name('other')
        Widget.create({'label': 'x'})
        assert Widget.get_default_connection() is connections.registry.resolve('other')
        with sqlite3.connect(OTHER_DB_FILEPATH) as other:
            count = other.execute('select count(*) from gadgets').fetchone()[0]
        other.close()
        assert count == 1

    # relationship construction tests
    def test_relationship_to_non_entity_raises_InvalidRelatedType(self):
        with self.assertRaises(errors.InvalidRelatedType) as e:
            Account().has_many(dict)
        assert str(e.exception) == "cannot construct related type <class 'dict'>"

        with self.assertRaises(errors.InvalidRelatedType):
            Account().belongs_to('NoSuchEntity')

    def test_unknown_relation_name_raises_UnknownRelationMethod(self):
        with self.assertRaises(errors.UnknownRelationMethod) as e:
            Account().get_eager_relation('posts')
        assert str(e.exception) == 'Account has no relationship named posts'

        Account.create({'name': 'Alice'})
        with self.assertRaises(errors.UnknownRelationMethod):
            Account.with_('email_lower').get()


if __name__ == '__main__':
    unittest.main()
