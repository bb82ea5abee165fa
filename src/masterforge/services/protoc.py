"""Locating and invoking the protoc schema compiler.

protoc is resolved in order: an explicitly configured executable, the
bundled tool directory (``<tools_dir>/bin/protoc`` with its ``include``
directory for the well-known types), then the system PATH.
"""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import NamedTuple

import structlog

from masterforge.errors import ConfigurationError, ProtocNotFoundError, SchemaCompileError

OPTIONS_INCLUDE_DIR = Path(__file__).resolve().parent.parent / "proto"

_EXECUTABLE = "protoc.exe" if os.name == "nt" else "protoc"


class ProtocLocation(NamedTuple):
    executable: Path
    include_dirs: list[Path]


def _responds_to_version(executable: str) -> bool:
    try:
        result = subprocess.run([executable, "--version"], capture_output=True, text=True, check=False)
    except OSError:
        return False
    return result.returncode == 0


def find_protoc(
    protoc_path: Path | None = None,
    tools_dir: Path | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> ProtocLocation:
    """Resolve the protoc executable and any include directories it ships with.

    Args:
        protoc_path: Explicit executable path; takes precedence when set.
        tools_dir: Bundled tool directory laid out as ``bin/`` and ``include/``.
        logger: Optional structured logger.

    Returns:
        The executable and its extra include directories.

    Raises:
        ProtocNotFoundError: If no candidate exists or responds to --version.
    """
    logger = logger or structlog.get_logger(__name__)

    if protoc_path is not None:
        if not protoc_path.is_file():
            raise ProtocNotFoundError(f"Configured protoc not found: {protoc_path}")
        logger.debug("protoc_resolved", source="configured", path=str(protoc_path))
        return ProtocLocation(protoc_path, [])

    if tools_dir is not None:
        bundled = tools_dir / "bin" / _EXECUTABLE
        if bundled.is_file():
            include = tools_dir / "include"
            logger.debug("protoc_resolved", source="bundled", path=str(bundled))
            return ProtocLocation(bundled, [include] if include.is_dir() else [])

    on_path = shutil.which(_EXECUTABLE)
    if on_path and _responds_to_version(on_path):
        logger.debug("protoc_resolved", source="path", path=on_path)
        return ProtocLocation(Path(on_path), [])

    raise ProtocNotFoundError(
        "protoc was not found. Install protoc and put it on PATH, place it under "
        f"{tools_dir or '<tools_dir>'}/bin, or set MASTERFORGE_PROTOC_PATH."
    )


class ProtocCompiler:
    """Compiles a schema directory into a serialized FileDescriptorSet."""

    def __init__(
        self,
        location: ProtocLocation,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._location = location
        self._logger = logger or structlog.get_logger(__name__)

    def compile(self, proto_dir: Path) -> bytes:
        """Run protoc over every .proto file below ``proto_dir``.

        Args:
            proto_dir: Root schema directory, also used as the import root.

        Returns:
            The descriptor set bytes, imports included.

        Raises:
            FileNotFoundError: If the directory does not exist.
            NotADirectoryError: If the path is not a directory.
            ConfigurationError: If the directory holds no .proto files.
            SchemaCompileError: If protoc exits with a failure status.
        """
        if not proto_dir.exists():
            raise FileNotFoundError(f"Schema directory not found: {proto_dir}")
        if not proto_dir.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {proto_dir}")

        files = sorted(path.relative_to(proto_dir).as_posix() for path in proto_dir.rglob("*.proto"))
        if not files:
            raise ConfigurationError(f"No .proto files found under {proto_dir}")

        include_dirs = [proto_dir.resolve(), OPTIONS_INCLUDE_DIR, *(d.resolve() for d in self._location.include_dirs)]

        with tempfile.TemporaryDirectory(prefix="masterforge-") as tmp:
            output = Path(tmp) / "descriptor_set.pb"
            args = [
                str(self._location.executable.resolve()),
                f"--descriptor_set_out={output}",
                "--include_imports",
                *(f"-I{directory}" for directory in include_dirs),
                *files,
            ]
            self._logger.info("schema_compile_started", proto_dir=str(proto_dir), file_count=len(files))
            result = subprocess.run(args, cwd=proto_dir, capture_output=True, text=True, check=False)
            if result.returncode != 0:
                raise SchemaCompileError(result.returncode, result.stderr)
            data = output.read_bytes()

        self._logger.info("schema_compiled", proto_dir=str(proto_dir), descriptor_bytes=len(data))
        return data
