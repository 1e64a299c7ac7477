"""
Core Pipeline Components

These components form the validate/repair pipeline for .ccz packages:
1. PackageParser - .ccz → FileSet + metadata
2. AutoFixer - Deterministic structural fixes
3. PackageBuilder - FileSet → .ccz
4. CliValidator - commcare-cli.jar (optional toolchain)
5. HqValidator - CommCare HQ import rules
6. Exporter - Stable copies in the export directory
7. HqJsonConverter - HQ app source JSON
8. BuildLogger - Per-run text log
"""
from .parser import PackageParser, ParseError
from .auto_fixer import AutoFixer
from .builder import PackageBuilder, BuildError
from .cli_validator import CliValidator, JavaToolchainProbe, StaticToolchainProbe
from .hq_validator import HqValidator
from .exporter import Exporter, ExportError
from .hq_json import HqJsonConverter
from .build_logger import BuildLogger

__all__ = [
    "PackageParser",
    "ParseError",
    "AutoFixer",
    "PackageBuilder",
    "BuildError",
    "CliValidator",
    "JavaToolchainProbe",
    "StaticToolchainProbe",
    "HqValidator",
    "Exporter",
    "ExportError",
    "HqJsonConverter",
    "BuildLogger",
]
