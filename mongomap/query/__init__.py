from mongomap.query.collation import Collation
from mongomap.query.criteria import Criteria, where
from mongomap.query.query import Direction, Query, as_query
from mongomap.query.update import Position, Update
