"""mongomap: object-document mapping over the MongoDB driver.

mongomap binds plain Python classes to MongoDB collections. It translates filters, updates, and aggregation pipelines
written against your domain classes into the documents the driver expects, resolving field aliases, identifiers, and
custom conversions from explicit entity descriptors along the way.

Key features of mongomap include:

-   **Entity Descriptors**: Declare ids, field aliases, and converters with `typing.Annotated` metadata or an explicit
    builder. Descriptors are built once per type and cached in a `MappingContext`.
-   **Query & Update Mapping**: `QueryMapper` and `UpdateMapper` rewrite nested filters and update documents, coercing
    identifiers to their native representation on a best effort basis.
-   **Bulk Operations**: Batch inserts, updates, replacements, and removals into a single ordered or unordered bulk
    write, for both pymongo and motor.
-   **Exception Translation**: Driver failures are translated into a small, closed exception taxonomy.

Example:
    ```python
    from typing import Annotated
    from dataclasses import dataclass
    from mongomap import document, Id, StoreAs, MongoTemplate, where, Query, Update

    @document(collection="people")
    @dataclass
    class Person:
        name: Annotated[str, StoreAs("full_name")]
        id: Annotated[str, Id] = None

    template = MongoTemplate(client["app"])
    template.update_first(Query(where("name").is_("Ada")), Update().set("name", "Ada L."), Person)
    ```

Note:
This `__init__.py` uses a custom `__getattr__` to lazily load submodules and the symbols listed below, keeping the
import of the top level package cheap.
"""
import importlib
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from mongomap.aggregation import Aggregation, AggregationUpdate
    from mongomap.bulk import BulkMode, BulkOperations, ReactiveBulkOperations
    from mongomap.config import MongoSettings
    from mongomap.convert import MongoConverter, QueryMapper, UpdateMapper
    from mongomap.mapping import (
        ConvertWith,
        EntityDescriptor,
        Id,
        MappingContext,
        StoreAs,
        Transient,
        document,
    )
    from mongomap.query import Collation, Criteria, Query, Update, where
    from mongomap.template import MongoTemplate, ReactiveMongoTemplate
    from mongomap.translation import MongoExceptionTranslator

logger.disable("mongomap")

__lookup = {
    "Aggregation": "mongomap.aggregation",
    "AggregationUpdate": "mongomap.aggregation",
    "BulkMode": "mongomap.bulk",
    "BulkOperations": "mongomap.bulk",
    "ReactiveBulkOperations": "mongomap.bulk",
    "MongoSettings": "mongomap.config",
    "MongoConverter": "mongomap.convert",
    "QueryMapper": "mongomap.convert",
    "UpdateMapper": "mongomap.convert",
    "ConvertWith": "mongomap.mapping",
    "EntityDescriptor": "mongomap.mapping",
    "Id": "mongomap.mapping",
    "MappingContext": "mongomap.mapping",
    "StoreAs": "mongomap.mapping",
    "Transient": "mongomap.mapping",
    "document": "mongomap.mapping",
    "Collation": "mongomap.query",
    "Criteria": "mongomap.query",
    "Query": "mongomap.query",
    "Update": "mongomap.query",
    "where": "mongomap.query",
    "MongoTemplate": "mongomap.template",
    "ReactiveMongoTemplate": "mongomap.template",
    "MongoExceptionTranslator": "mongomap.translation",
}

__all__ = list(__lookup.keys())

__modules = set()

for _path in Path(__file__).parent.iterdir():
    if _path.name.startswith("_"):
        continue

    if not _path.is_dir() and _path.suffix != ".py":
        continue

    __modules.add(_path.stem)


def __getattr__(name):
    """Lazily loads submodules and the public symbols of the mongomap package.

    Symbols listed in `__lookup` are imported from their defining module on first access. Any other name that matches
    a submodule of the package is imported as that submodule.

    Raises:
        ImportError: If a symbol listed in `__lookup` cannot be imported from its module.
        AttributeError: If the name is neither a known symbol nor a submodule.
    """
    if name in __lookup:
        try:
            module = importlib.import_module(__lookup[name])
        except Exception as e:
            raise ImportError(f"Failed to import {name} from {__lookup[name]}: {e}") from e

        return getattr(module, name)

    if name in __modules:
        return importlib.import_module(f"mongomap.{name}")

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
