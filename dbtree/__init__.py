"""
dbtree – declarative MySQL / MariaDB schema management driven by a directory
tree of ``*.sql`` files and cascading ``.dbtree`` option files.
"""

__version__ = "0.3.0"
