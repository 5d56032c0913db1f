from mongomap.mapping.context import MappingContext, document, get_default_context
from mongomap.mapping.entity import (
    DEFAULT_ID_NAMES,
    ID_FIELD_NAME,
    EntityDescriptor,
    EntityDescriptorBuilder,
    PropertyDescriptor,
)
from mongomap.mapping.field_metadata import (
    AggregateMetadata,
    ConvertWith,
    FieldMetadata,
    Id,
    MetadataFlag,
    PropertyConverter,
    StoreAs,
    Transient,
    create_metadata_flag,
    create_metadata_type,
)
