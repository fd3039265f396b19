"""Podpool dependency injection framework.

Podpool wires together objects ("pods") that already exist. Each pod declares
the values it needs (imports), the values it provides (exports) and hooks that
post-process other pods' values (filters). The pool resolves these
declarations, orders the pods so that every value is produced before it is
consumed, sets them up in that order and tears them down in reverse.

Key Features:
    - Declarative entries using standard ``Annotated`` type hints
    - Matching by explicit ref id or by declared type
    - Prioritised filters that change an export before it is imported
    - Static resolution with cycle detection before any hook runs
    - Rollback of already set up pods when a hook fails

Basic Usage:
    >>> from typing import Annotated
    >>> from podpool.declarations import Export, Import
    >>> from podpool.domain import BasePod
    >>> from podpool.pool import PodPool
    >>>
    >>> class Greeting(BasePod):
    ...     text: Annotated[str, Export("the_greeting")]
    ...
    ...     def set_up(self, ctx):
    ...         self.text = "Hi!"
    >>>
    >>> class Greeter(BasePod):
    ...     greeting: Annotated[str, Import("the_greeting")]
    >>>
    >>> pool = PodPool()
    >>> pool.register(Greeting())
    >>> greeter = pool.register(Greeter())
    >>> with pool.running():
    ...     greeter.greeting
    'Hi!'

The framework consists of several core modules:
    - declarations: Entry markers, tag parsing and field introspection
    - domain: The Pod protocol, BasePod and Ref
    - entries: Import/export/filter entries built at registration
    - resolution: Binding of entries and ordering of pods
    - lifecycle: Setup with rollback, and teardown
    - pool: The PodPool entry point
    - context: Cancellation context handed to hooks
    - errors: Framework-specific exceptions
"""
