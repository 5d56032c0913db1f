from mongomap.convert.conversions import ConversionService
from mongomap.convert.converter import MongoConverter
from mongomap.convert.query_mapper import QueryMapper
from mongomap.convert.update_mapper import UpdateMapper, is_update_document
