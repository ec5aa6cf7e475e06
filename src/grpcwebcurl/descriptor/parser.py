""" Compile .proto schema files into descriptors using grpc_tools' protoc """

import importlib.resources
import logging
import os
import tempfile
from typing import List, Optional, Sequence

from google.protobuf import descriptor_pb2
from grpc_tools import protoc

from grpcwebcurl.descriptor.source import (
    FileSource,
    load_descriptor_set,
    resolve_import_path,
)
from grpcwebcurl.errors import DescriptorError

logger = logging.getLogger(__name__)


PROTO_PATH_ENV = "GRPCWEBCURL_PROTO_PATH"


def default_import_paths() -> List[str]:
    """ Return the current directory plus any paths listed in the environment.

    ``GRPCWEBCURL_PROTO_PATH`` holds extra directories separated by
    ``os.pathsep``. Directories that don't exist are ignored.
    """
    paths = ["."]
    for path in os.getenv(PROTO_PATH_ENV, "").split(os.pathsep):
        if path and os.path.isdir(path):
            paths.append(path)
    return paths


def well_known_types_path() -> str:
    """ Return the directory holding the bundled google/protobuf/*.proto files """
    return str(importlib.resources.files("grpc_tools") / "_proto")


def _is_within(path: str, directory: str) -> bool:
    return os.path.commonpath([path, directory]) == directory


class ProtoParser(object):
    """ Parses .proto files into a FileDescriptorSet or a FileSource. """

    def __init__(self, import_paths: Optional[Sequence[str]] = None) -> None:
        self._import_paths = list(import_paths or [])

    @property
    def import_paths(self) -> List[str]:
        return list(self._import_paths)

    def add_import_path(self, path: str) -> None:
        self._import_paths.append(path)

    def compile(self, *proto_files: str) -> descriptor_pb2.FileDescriptorSet:
        """ Compile *proto_files* and everything they import.

        Dependencies are included in the result and appear before the files
        that import them.

        :raises: DescriptorError if a file can't be found or doesn't compile.
        """
        if not proto_files:
            raise DescriptorError("no proto files given")

        include_paths = [os.path.abspath(p) for p in self._import_paths]
        targets = []
        for proto_file in proto_files:
            resolved = os.path.abspath(resolve_import_path(proto_file, self._import_paths))
            if not any(_is_within(resolved, p) for p in include_paths):
                # protoc only accepts files that live under an import path
                include_paths.append(os.path.dirname(resolved))
            targets.append(resolved)
        include_paths.append(well_known_types_path())

        with tempfile.TemporaryDirectory() as tmp_dir:
            out_file = os.path.join(tmp_dir, "descriptor_set.pb")
            args = (
                ["grpc_tools.protoc"]
                + [f"-I{path}" for path in include_paths]
                + [
                    f"--descriptor_set_out={out_file}",
                    "--include_imports",
                    "--include_source_info",
                ]
                + targets
            )
            logger.debug(f"Running protoc: {' '.join(args[1:])}")

            # protoc reports the details of a failure on stderr itself
            rc = protoc.main(args)
            if rc != 0:
                raise DescriptorError(
                    f"failed to parse proto files: protoc exited with status {rc}"
                )
            fds = load_descriptor_set(out_file)

        logger.debug(f"Compiled {len(fds.file)} files from {len(targets)} sources")
        return fds

    def parse_files(self, *proto_files: str) -> FileSource:
        """ Compile *proto_files* into a descriptor source """
        return FileSource.from_descriptor_set(self.compile(*proto_files))
