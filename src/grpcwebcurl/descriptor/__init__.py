""" Descriptor sources and the schema compiler """
from .source import (
    DescriptorSource,
    FileSource,
    build_pool,
    decode_file_descriptors,
    load_descriptor_set,
    load_file_descriptor,
    parse_service_method,
    resolve_import_path,
)
from .parser import ProtoParser, default_import_paths
