"""
RRD tag resolution: file layout strategies and tag condition search.
"""

from .files import decode_filename, encode_filename, sanitize, sanitize_tag_value
from .search import TagCondition, TagConditionGroup, TagSearch
from .strategies import (
    FileNameStrategy,
    FolderStrategy,
    NoTagsStrategy,
    TagStrategy,
    create_tag_strategy,
)

__all__ = [
    'FileNameStrategy',
    'FolderStrategy',
    'NoTagsStrategy',
    'TagCondition',
    'TagConditionGroup',
    'TagSearch',
    'TagStrategy',
    'create_tag_strategy',
    'decode_filename',
    'encode_filename',
    'sanitize',
    'sanitize_tag_value',
]
