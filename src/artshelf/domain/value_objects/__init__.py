"""Domain value objects."""

from artshelf.domain.value_objects.metadata_parsing import (
    MetadataField,
    extract_artwork_id,
    is_metadata_file,
    parse_metadata_content,
    parse_metadata_file,
)

__all__ = [
    "MetadataField",
    "extract_artwork_id",
    "is_metadata_file",
    "parse_metadata_content",
    "parse_metadata_file",
]
