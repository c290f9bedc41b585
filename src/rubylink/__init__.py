"""Locate or build a Ruby runtime and describe how to link against it."""

from .config import Settings
from .errors import ErrorCode, RubyLinkError
from .link import LinkDirectives, LinkLibrary, emit_link_directives
from .models import BuildTarget, LinkageMode, RubyInstallation
from .rbconfig import RubyConfig, parse_rbconfig, parse_rbconfig_text
from .resolve import Resolution, RubyResolver, resolve
from .version import Version

__all__ = [
    "BuildTarget",
    "ErrorCode",
    "LinkDirectives",
    "LinkLibrary",
    "LinkageMode",
    "Resolution",
    "RubyConfig",
    "RubyInstallation",
    "RubyLinkError",
    "RubyResolver",
    "Settings",
    "Version",
    "emit_link_directives",
    "parse_rbconfig",
    "parse_rbconfig_text",
    "resolve",
]
