import sys
from pathlib import Path

import pytest  # type: ignore[import-not-found]

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cmkmatrix import cli as main  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    original_manager = main.SettingsManager.from_dict(main.settings_manager.to_dict())
    main.settings_manager = main.SettingsManager(use_color=False)
    for name in ("CMAKE", "NO_COLOR", "FORCE_COLOR"):
        monkeypatch.delenv(name, raising=False)
    yield
    main.settings_manager = original_manager


@pytest.fixture
def project_dir(tmp_path):
    """A minimal project without the sanitizer marker."""
    path = tmp_path / "proj"
    path.mkdir()
    (path / "CMakeLists.txt").write_text(
        "cmake_minimum_required(VERSION 3.10)\nproject(Demo C CXX)\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def sanitize_project_dir(tmp_path):
    """A minimal project whose CMakeLists.txt opts in to sanitizers."""
    path = tmp_path / "sanproj"
    path.mkdir()
    (path / "CMakeLists.txt").write_text(
        "project(Demo C CXX)\n"
        'if(SANITIZE)\n  add_compile_options("-fsanitize=${SANITIZE}")\nendif()\n',
        encoding="utf-8",
    )
    return path


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--type",
        action="store",
        default="all",
        choices=("unit", "integration", "all"),
        help="Select which tests to run: unit, integration, or all.",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    selected = config.getoption("--type")
    if selected == "all":
        return

    skip_integration = pytest.mark.skip(reason="skipped by --type unit")
    skip_unit = pytest.mark.skip(reason="skipped by --type integration")

    for item in items:
        is_integration = item.get_closest_marker("integration") is not None
        if selected == "unit" and is_integration:
            item.add_marker(skip_integration)
        elif selected == "integration" and not is_integration:
            item.add_marker(skip_unit)
