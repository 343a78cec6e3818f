#!/usr/bin/env python3
"""Generate a matrix of out-of-tree CMake build configurations."""

import importlib.metadata
import os
import shlex
import shutil
import subprocess
import sys
from enum import Enum
from pathlib import Path
from typing import (
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    TypeAlias,
    TypedDict,
)


DEFAULT_CMAKE_COMMAND = "cmake"
DEFAULT_VERSION = "0.1.0"
BUILD_SCRIPT_NAME = "CMakeLists.txt"
BUILD_DIR_PREFIX = "build-"
SANITIZE_MARKER = "${SANITIZE}"
COMMAND_NOT_FOUND_EXIT_CODE = 127


class Compiler(Enum):
    GCC = "GCC"
    CLANG = "Clang"

    def __str__(self) -> str:
        return self.value


class BuildType(Enum):
    DEBUG = "Debug"
    RELEASE = "Release"


class BuildSystem(Enum):
    MAKE = "Make"
    NINJA = "Ninja"


COMPILER_ARGS: dict[Compiler, tuple[str, str]] = {
    Compiler.GCC: ("-DCMAKE_C_COMPILER=gcc", "-DCMAKE_CXX_COMPILER=g++"),
    Compiler.CLANG: ("-DCMAKE_C_COMPILER=clang", "-DCMAKE_CXX_COMPILER=clang++"),
}

BUILD_TYPE_ARGS: dict[BuildType, str] = {
    BuildType.DEBUG: "-DCMAKE_BUILD_TYPE=Debug",
    BuildType.RELEASE: "-DCMAKE_BUILD_TYPE=Release",
}

GENERATOR_ARGS: dict[BuildSystem, str] = {
    BuildSystem.MAKE: "-GCodeBlocks - Unix Makefiles",
    BuildSystem.NINJA: "-GCodeBlocks - Ninja",
}

# (suffix, compiler, build type, extra cmake args), in run order.
BASE_CONFIGURATIONS: tuple[tuple[str, Compiler, BuildType, tuple[str, ...]], ...] = (
    ("Debug", Compiler.GCC, BuildType.DEBUG, ()),
    ("Release", Compiler.GCC, BuildType.RELEASE, ()),
    ("Debug", Compiler.CLANG, BuildType.DEBUG, ()),
    ("Release", Compiler.CLANG, BuildType.RELEASE, ()),
)

SANITIZER_CONFIGURATIONS: tuple[
    tuple[str, Compiler, BuildType, tuple[str, ...]], ...
] = (
    ("Asan", Compiler.CLANG, BuildType.DEBUG, ("-DSANITIZE=address",)),
    ("Ubsan", Compiler.CLANG, BuildType.DEBUG, ("-DSANITIZE=undefined",)),
    ("Tsan", Compiler.CLANG, BuildType.DEBUG, ("-DSANITIZE=thread",)),
)

ANSI_RESET = "\033[0m"
ANSI_BOLD_GREEN = "\033[1;32m"
ANSI_BOLD_WHITE = "\033[1;37m"
ANSI_BOLD_YELLOW = "\033[1;33m"


class Configuration(NamedTuple):
    name: str
    compiler: Compiler
    build_type: BuildType
    cmake_args: tuple[str, ...]


class ProjectProperties(NamedTuple):
    supports_sanitize: bool


class ParsedArgs(NamedTuple):
    project_arg: str
    sanitize: bool
    build_system: BuildSystem


class Settings(TypedDict):
    cmake_command: str
    use_color: bool


PathLike: TypeAlias = Path | str
ParseResult: TypeAlias = tuple[int, Optional[ParsedArgs]]


class ProjectInspectionError(Exception):
    """Raised when the project's build script cannot be read."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"failed to read {path}: {cause}")


class SettingsManager:
    def __init__(
        self,
        cmake_command: str = DEFAULT_CMAKE_COMMAND,
        use_color: Optional[bool] = None,
    ):
        self._cmake_command = cmake_command
        self._use_color = sys.stdout.isatty() if use_color is None else use_color

    @property
    def cmake_command(self) -> str:
        return self._cmake_command

    @property
    def use_color(self) -> bool:
        return self._use_color

    def set_cmake_command(self, value: str) -> None:
        self._cmake_command = value

    def set_use_color(self, value: bool) -> None:
        self._use_color = value

    def to_dict(self) -> Settings:
        return {
            "cmake_command": self._cmake_command,
            "use_color": self._use_color,
        }

    @classmethod
    def from_dict(cls, settings: Settings) -> "SettingsManager":
        return cls(
            cmake_command=settings["cmake_command"],
            use_color=settings["use_color"],
        )


settings_manager = SettingsManager()


def info(message: str) -> None:
    """Print a standard informational message."""
    print(f"[cmkmatrix] {message}")


def error(message: str) -> None:
    """Print a standardized error message to stderr."""
    print(f"error: {message}", file=sys.stderr)


def run_cmd(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> int:
    """Run a subprocess command and return the exit code."""
    print("+", " ".join(shlex.quote(part) for part in cmd))
    try:
        subprocess.run(cmd, cwd=str(cwd) if cwd else None, check=True, env=env)
    except subprocess.CalledProcessError as exc:
        error(f"command failed with exit code {exc.returncode}")
        return exc.returncode
    except OSError as exc:
        error(f"failed to launch {cmd[0]}: {exc}")
        return COMMAND_NOT_FOUND_EXIT_CODE
    return 0


def _colorize(text: str, color: str) -> str:
    if not globals()["settings_manager"].use_color:
        return text
    return f"{color}{text}{ANSI_RESET}"


def progress(name: str) -> None:
    """Announce the configuration about to be generated."""
    marker = _colorize("===", ANSI_BOLD_GREEN)
    print(
        f"{marker} {_colorize('Creating configuration for', ANSI_BOLD_WHITE)} "
        f"{_colorize(name, ANSI_BOLD_YELLOW)} {marker}"
    )


def _apply_env_overrides() -> None:
    manager = globals()["settings_manager"]
    cmake_override = os.environ.get("CMAKE")
    if cmake_override:
        manager.set_cmake_command(cmake_override)
    if os.environ.get("NO_COLOR"):
        manager.set_use_color(False)
    elif os.environ.get("FORCE_COLOR"):
        manager.set_use_color(True)


def _resolve_cmake(command: str) -> Optional[str]:
    """Return an absolute path to an executable cmake, or None.

    Relative commands resolve against the invocation directory, not the
    configuration directory CMake later runs in.
    """
    found = shutil.which(command)
    if found:
        return str(Path(found).absolute())
    path = Path(command)
    if path.is_file() and os.access(path, os.X_OK):
        return str(path.absolute())
    return None


def configuration(
    suffix: str,
    compiler: Compiler,
    build_type: BuildType,
    cmake_args: Sequence[str] = (),
) -> Configuration:
    """Build a configuration record named ``<Compiler>-<suffix>``."""
    return Configuration(
        name=f"{compiler}-{suffix}",
        compiler=compiler,
        build_type=build_type,
        cmake_args=tuple(cmake_args),
    )


def inspect_project(project_dir: PathLike) -> ProjectProperties:
    """Scan the project's CMakeLists.txt for the sanitizer marker.

    This is a plain substring search, not a CMake parse: any occurrence of
    ``${SANITIZE}``, comments included, opts the project in.
    """
    path = Path(project_dir) / BUILD_SCRIPT_NAME
    try:
        contents = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ProjectInspectionError(path, exc) from exc
    return ProjectProperties(supports_sanitize=SANITIZE_MARKER in contents)


def enumerate_configurations(
    properties: ProjectProperties, sanitize: bool = True
) -> list[Configuration]:
    configs = [configuration(*entry) for entry in BASE_CONFIGURATIONS]
    if properties.supports_sanitize and sanitize:
        configs.extend(configuration(*entry) for entry in SANITIZER_CONFIGURATIONS)
    return configs


def command_for(
    config: Configuration, build_system: BuildSystem, project_dir: Path
) -> list[str]:
    """Assemble the CMake invocation for one configuration."""
    command = [
        globals()["settings_manager"].cmake_command,
        str(project_dir),
        GENERATOR_ARGS[build_system],
    ]
    command.extend(COMPILER_ARGS[config.compiler])
    command.append(BUILD_TYPE_ARGS[config.build_type])
    command.extend(config.cmake_args)
    return command


def run_configuration(
    config: Configuration,
    build_system: BuildSystem,
    project_dir: Path,
    build_root: Path,
) -> int:
    """Create the configuration's directory and run CMake inside it.

    The directory must not exist yet; ``OSError`` from its creation is left
    to the caller. CMake runs with its own working directory, so the
    process cwd is untouched whatever the outcome.
    """
    config_dir = build_root / config.name
    config_dir.mkdir()
    return run_cmd(command_for(config, build_system, project_dir), cwd=config_dir)


def run_configurations(
    configs: Sequence[Configuration],
    build_system: BuildSystem,
    project_dir: Path,
    build_root: Path,
) -> int:
    """Run each configuration in order, stopping at the first failure.

    Returns the number of configurations that were generated successfully.
    """
    completed = 0
    for index, config in enumerate(configs):
        progress(config.name)
        result = run_configuration(config, build_system, project_dir, build_root)
        if result != 0:
            skipped = [entry.name for entry in configs[index + 1 :]]
            if skipped:
                info(f"skipping remaining configurations: {', '.join(skipped)}")
            break
        completed += 1
    return completed


def usage() -> None:
    print("usage: cmkmatrix <project-dir> [options]")
    print("")
    print("Creates build-<project-dir>/ with one CMake build tree per")
    print("compiler, build type and sanitizer combination.")
    print("")
    print("options:")
    print("  --no-sanitize    skip the Asan/Ubsan/Tsan configurations")
    print("  --no-ninja       generate Makefiles instead of Ninja files")
    print("  -v, --version    show the version and exit")
    print("  -h, --help       show this help text")
    print("")
    print("environment:")
    print("  CMAKE            cmake executable to run (default: cmake)")
    print("  NO_COLOR         disable colored progress output")
    print("")
    print("examples:")
    print("  cmkmatrix myproject")
    print("  cmkmatrix myproject --no-sanitize --no-ninja")


def _version() -> str:
    try:
        return importlib.metadata.version("cmkmatrix")
    except importlib.metadata.PackageNotFoundError:
        return DEFAULT_VERSION


def parse_args(args: Sequence[str]) -> ParseResult:
    """Parse command-line arguments (without the program name).

    Returns ``(0, parsed)`` to continue, or ``(code, None)`` when the caller
    should stop and exit with ``code``.
    """
    sanitize = True
    build_system = BuildSystem.NINJA
    positionals: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            positionals.extend(args[index + 1 :])
            break
        if arg in {"-h", "--help"}:
            usage()
            return (1, None)
        if arg in {"-v", "--version"}:
            print(f"cmkmatrix {_version()}")
            return (0, None)
        if arg == "--no-sanitize":
            sanitize = False
        elif arg == "--no-ninja":
            build_system = BuildSystem.MAKE
        elif arg.startswith("--no-sanitize=") or arg.startswith("--no-ninja="):
            flag = arg.split("=", 1)[0]
            error(f"option {flag} does not take a value")
            return (1, None)
        elif arg.startswith("-") and arg != "-":
            usage()
            return (1, None)
        else:
            positionals.append(arg)
        index += 1

    if len(positionals) != 1:
        usage()
        return (1, None)
    project_arg = positionals[0]
    if not project_arg:
        error("project directory argument must not be empty")
        return (1, None)
    return (0, ParsedArgs(project_arg, sanitize, build_system))


def main() -> int:
    result, parsed = parse_args(sys.argv[1:])
    if parsed is None:
        return result

    _apply_env_overrides()

    project_dir = (Path.cwd() / parsed.project_arg).absolute()
    if not project_dir.is_dir():
        error(f"directory {project_dir} does not exist")
        return 1

    try:
        properties = inspect_project(project_dir)
    except ProjectInspectionError as exc:
        error(str(exc))
        return 1

    build_root = Path(BUILD_DIR_PREFIX + parsed.project_arg).absolute()
    if build_root.exists():
        error(f"build directory {build_root} already exists; delete it first")
        return 1

    manager = globals()["settings_manager"]
    cmake_path = _resolve_cmake(manager.cmake_command)
    if cmake_path is None:
        error(f"cmake executable '{manager.cmake_command}' not found")
        return 1
    manager.set_cmake_command(cmake_path)

    try:
        build_root.mkdir()
    except OSError as exc:
        error(f"failed to create {build_root}: {exc}")
        return 1

    configs = enumerate_configurations(properties, parsed.sanitize)
    try:
        run_configurations(configs, parsed.build_system, project_dir, build_root)
    except OSError as exc:
        error(f"failed to create configuration directory: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
