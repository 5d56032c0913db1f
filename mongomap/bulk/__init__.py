from mongomap.bulk.operations import BulkOperations
from mongomap.bulk.reactive import ReactiveBulkOperations
from mongomap.bulk.support import (
    BulkMode,
    BulkOperationContext,
    BulkOperationsSupport,
    BulkWriteOptions,
    DeleteModel,
    InsertModel,
    ReplaceModel,
    UpdateModel,
    WriteModel,
)
