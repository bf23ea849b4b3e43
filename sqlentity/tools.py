"""
    Naming conventions used to derive table names, foreign keys, and
    join tables from entity class names.
"""

from __future__ import annotations
from typing import Any
import re


def snake_case(name: str) -> str:
    """Turn PascalCase/camelCase into snake_case by inserting an
        underscore before every uppercase letter and lowercasing the
        result. A leading underscore produced by a leading capital is
        stripped, so `UserProfile` becomes `user_profile`.
    """
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

def camel_case(name: str) -> str:
    """Turn snake_case into CamelCase: underscores become word breaks,
        each word is title-cased, then the breaks are removed.
    """
    return ''.join(word.capitalize() for word in name.replace('_', ' ').split(' '))

def base_name(cls: type|Any|str) -> str:
    """Return the trailing simple name of a class, instance, or
        qualified class name str (module and namespace qualifiers are
        stripped).
    """
    if isinstance(cls, str):
        name = cls
    elif isinstance(cls, type):
        name = cls.__name__
    else:
        name = cls.__class__.__name__
    return re.split(r'[./\\]', name)[-1]

def foreign_key(cls: type|Any|str) -> str:
    """Return the conventional foreign key column pointing at the class,
        e.g. `BlogPost` -> `blog_post_id`.
    """
    return snake_case(base_name(cls)) + '_id'

def joining_table(first: type|Any|str, second: type|Any|str) -> str:
    """Return the conventional join table name for a many-to-many
        relation: both snake-cased base names, sorted, joined with an
        underscore.
    """
    names = sorted([snake_case(base_name(first)), snake_case(base_name(second))])
    return '_'.join(names).lower()
