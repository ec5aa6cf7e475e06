"""
Descriptor sources.

A descriptor source answers the lookups needed to make a call: which services
exist, and what the request and response message types of a method are.
Descriptors come either from local schema files (:class:`FileSource`) or from
the server itself via reflection (see :mod:`grpcwebcurl.reflection`).
"""

import abc
import logging
import os
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.message import DecodeError

# Register the well-known types with the default pool so files importing them
# can be linked even when the supplied set omits them.
from google.protobuf import (  # noqa: F401 pylint: disable=unused-import
    any_pb2,
    duration_pb2,
    empty_pb2,
    field_mask_pb2,
    struct_pb2,
    timestamp_pb2,
    wrappers_pb2,
)

from grpcwebcurl.errors import (
    DescriptorError,
    NotFoundError,
    ServiceMethodFormatError,
)

logger = logging.getLogger(__name__)


class DescriptorSource(abc.ABC):
    """
    This class represents the interface for looking up descriptors.
    """

    @abc.abstractmethod  # pragma: no branch
    def find_symbol(self, name: str):
        """ Return the descriptor of a fully qualified symbol """

    @abc.abstractmethod  # pragma: no branch
    def list_services(self) -> List[str]:
        """ Return the fully qualified names of the available services """

    @abc.abstractmethod  # pragma: no branch
    def find_service(self, name: str):
        """ Return the ServiceDescriptor of a fully qualified service """

    @abc.abstractmethod  # pragma: no branch
    def find_method(self, service: str, method: str):
        """ Return the MethodDescriptor of a method of a service """


def build_pool(
    files: Sequence[descriptor_pb2.FileDescriptorProto],
) -> descriptor_pool.DescriptorPool:
    """ Link a set of file descriptors into a new descriptor pool.

    Files are added in dependency order regardless of the order supplied.
    A dependency that isn't in *files* is taken from the default pool (which
    holds the well-known types).

    :raises: DescriptorError if a dependency is missing, imports form a cycle
      or a file fails to link.
    """
    by_name = {}  # type: Dict[str, descriptor_pb2.FileDescriptorProto]
    for fdp in files:
        by_name.setdefault(fdp.name, fdp)

    pool = descriptor_pool.DescriptorPool()
    added = set()

    def add(name: str, chain: Tuple[str, ...]) -> None:
        if name in added:
            return
        if name in chain:
            raise DescriptorError(f"import cycle: {' -> '.join(chain + (name,))}")

        fdp = by_name.get(name) or _from_default_pool(name)
        if fdp is None:
            importer = f" (imported by {chain[-1]})" if chain else ""
            raise DescriptorError(f"missing dependency {name}{importer}")

        for dependency in fdp.dependency:
            add(dependency, chain + (name,))

        try:
            pool.Add(fdp)
        except (TypeError, ValueError, KeyError) as exc:
            raise DescriptorError(f"failed to link {name}: {exc}") from exc
        added.add(name)

    for name in by_name:
        add(name, ())

    return pool


def _from_default_pool(name: str) -> Optional[descriptor_pb2.FileDescriptorProto]:
    try:
        file_desc = descriptor_pool.Default().FindFileByName(name)
    except KeyError:
        return None
    fdp = descriptor_pb2.FileDescriptorProto()
    file_desc.CopyToProto(fdp)
    return fdp


def decode_file_descriptors(
    blobs: Iterable[bytes],
) -> List[descriptor_pb2.FileDescriptorProto]:
    """ Deserialize each blob as a FileDescriptorProto.

    :raises: DescriptorError if a blob isn't a valid FileDescriptorProto.
    """
    files = []
    for blob in blobs:
        fdp = descriptor_pb2.FileDescriptorProto()
        try:
            fdp.ParseFromString(blob)
        except DecodeError as exc:
            raise DescriptorError(f"failed to unmarshal descriptor: {exc}") from exc
        files.append(fdp)
    return files


class FileSource(DescriptorSource):
    """ A descriptor source built once from a fixed set of file descriptors.

    Every lookup is answered from memory.
    """

    def __init__(self, files: Iterable[descriptor_pb2.FileDescriptorProto]) -> None:
        files = list(files)
        self.pool = build_pool(files)

        # Index the services declared by the supplied files
        self.services = {}  # type: Dict[str, object]
        for fdp in files:
            for service in fdp.service:
                full_name = f"{fdp.package}.{service.name}" if fdp.package else service.name
                self.services[full_name] = self.pool.FindServiceByName(full_name)

        logger.debug(f"Indexed {len(self.services)} services from {len(files)} files")

    @classmethod
    def from_descriptor_set(cls, fds: descriptor_pb2.FileDescriptorSet) -> "FileSource":
        return cls(fds.file)

    def find_symbol(self, name: str):
        name = name.lstrip(".")
        if name in self.services:
            return self.services[name]

        finders = (
            self.pool.FindMessageTypeByName,
            self.pool.FindEnumTypeByName,
            self.pool.FindServiceByName,
            self.pool.FindMethodByName,
            self.pool.FindFieldByName,
            self.pool.FindExtensionByName,
        )
        for finder in finders:
            try:
                return finder(name)
            except KeyError:
                continue

        # Some pool backends can't look up methods by their full name
        service, _sep, method = name.rpartition(".")
        if service in self.services:
            method_desc = self.services[service].methods_by_name.get(method)
            if method_desc is not None:
                return method_desc

        raise NotFoundError(f"symbol not found: {name}")

    def list_services(self) -> List[str]:
        return sorted(self.services)

    def find_service(self, name: str):
        try:
            return self.services[name.lstrip(".")]
        except KeyError:
            raise NotFoundError(f"service not found: {name}") from None

    def find_method(self, service: str, method: str):
        service_desc = self.find_service(service)
        method_desc = service_desc.methods_by_name.get(method)
        if method_desc is None:
            raise NotFoundError(f"method not found: {service}/{method}")
        return method_desc


def parse_service_method(full_method: str) -> Tuple[str, str]:
    """ Split ``package.Service/Method`` into its service and method names.

    The path must contain exactly one ``/``. A bare ``/`` is accepted and
    yields two empty names.

    :raises: ServiceMethodFormatError if there isn't exactly one ``/``.
    """
    parts = full_method.split("/")
    if len(parts) != 2:
        raise ServiceMethodFormatError(
            f"invalid method format: {full_method} (expected package.Service/Method)"
        )
    return parts[0], parts[1]


def load_file_descriptor(path: str) -> descriptor_pb2.FileDescriptorProto:
    """ Load a binary serialized FileDescriptorProto from a file. """
    try:
        with open(path, "rb") as fd:
            data = fd.read()
    except OSError as exc:
        raise DescriptorError(f"failed to read descriptor file: {exc}") from exc

    return decode_file_descriptors([data])[0]


def load_descriptor_set(path: str) -> descriptor_pb2.FileDescriptorSet:
    """ Load a binary serialized FileDescriptorSet (a protoset) from a file. """
    try:
        with open(path, "rb") as fd:
            data = fd.read()
    except OSError as exc:
        raise DescriptorError(f"failed to read descriptor set: {exc}") from exc

    fds = descriptor_pb2.FileDescriptorSet()
    try:
        fds.ParseFromString(data)
    except DecodeError as exc:
        raise DescriptorError(f"failed to unmarshal descriptor set: {exc}") from exc
    return fds


def resolve_import_path(proto_file: str, import_paths: Sequence[str]) -> str:
    """ Locate a schema file, trying it as given and then under each import path.

    :raises: DescriptorError if the file can't be found.
    """
    if os.path.isfile(proto_file):
        return proto_file

    for import_path in import_paths:
        full_path = os.path.join(import_path, proto_file)
        if os.path.isfile(full_path):
            return full_path

    raise DescriptorError(f"proto file not found: {proto_file}")
