"""Loading generated table packages from disk."""

import hashlib
import importlib.util
import sys
from pathlib import Path

import structlog

from masterforge.errors import ConfigurationError
from masterforge.models.master import MasterTable

TableTypeMap = dict[str, type[MasterTable]]


def load_table_types(
    package_dir: Path,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> TableTypeMap:
    """Import a generated package and map table names to row types.

    The package is imported under a private module name derived from its
    path, so packages for several targets can be loaded side by side.

    Args:
        package_dir: Directory written by the code generator.
        logger: Optional structured logger.

    Returns:
        Table name to row type, in the package's schema order.

    Raises:
        FileNotFoundError: If the directory has no ``__init__.py``.
    """
    logger = logger or structlog.get_logger(__name__)

    init = package_dir / "__init__.py"
    if not init.is_file():
        raise FileNotFoundError(f"Generated table package not found: {package_dir}")

    digest = hashlib.sha256(str(package_dir.resolve()).encode("utf-8")).hexdigest()[:12]
    module_name = f"_masterforge_tables_{digest}"
    for name in [n for n in sys.modules if n == module_name or n.startswith(f"{module_name}.")]:
        del sys.modules[name]

    spec = importlib.util.spec_from_file_location(
        module_name, init, submodule_search_locations=[str(package_dir)]
    )
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import generated package at {package_dir}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    types: TableTypeMap = {}
    for table_type in getattr(module, "TABLES", ()):
        types[table_type.table_name()] = table_type

    logger.debug("table_types_loaded", package_dir=str(package_dir), table_count=len(types))
    return types


def load_table_type(module_path: Path, class_name: str) -> type[MasterTable]:
    """Import one table module and return the named ``MasterTable`` subclass.

    Raises:
        FileNotFoundError: If the module file does not exist.
        ConfigurationError: If the module has no such table class.
    """
    if not module_path.is_file():
        raise FileNotFoundError(f"Table module not found: {module_path}")

    digest = hashlib.sha256(str(module_path.resolve()).encode("utf-8")).hexdigest()[:12]
    spec = importlib.util.spec_from_file_location(f"_masterforge_table_{digest}", module_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import table module at {module_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    table_type = getattr(module, class_name, None)
    if not (isinstance(table_type, type) and issubclass(table_type, MasterTable)):
        raise ConfigurationError(f"{module_path} defines no MasterTable subclass named {class_name}")
    return table_type
