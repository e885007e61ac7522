" generic fixtures "
import pytest

from wallhue.cache import PaletteCache
from wallhue.extractor import PaletteExtractor
from wallhue.hooks import HookRunner
from wallhue.models import Color, Palette
from wallhue.orchestrator import Orchestrator
from wallhue.registry import TemplateRegistry

from .testtools import FakeRunner, engine_output, gray_ramp


def pytest_configure():
    "Runs once before all"
    from wallhue.logging_setup import init_logger

    init_logger("/dev/null", force_debug=True)


@pytest.fixture
def palette():
    "The palette produced by engine_output()"
    return Palette(
        colors=tuple(Color.from_hex(c) for c in gray_ramp()),
        background=Color.from_hex("#101010"),
        foreground=Color.from_hex("#eeeeee"),
    )


@pytest.fixture
def wallpaper(tmp_path):
    "A wallpaper file"
    path = tmp_path / "sunset.png"
    path.write_bytes(b"\x89PNG fake sunset")
    return str(path)


@pytest.fixture
def runner():
    "A fake runner whose palette engine prints engine_output()"
    fake = FakeRunner()
    fake.on("wallhue-palette", stdout=engine_output())
    return fake


@pytest.fixture
def cache_file(tmp_path):
    return str(tmp_path / "cache" / "palettes.json")


@pytest.fixture
def make_orchestrator(runner, cache_file):
    "Build an orchestrator over the fake runner"

    def build(templates=(), hooks=(), max_parallel=4):
        extractor = PaletteExtractor(runner=runner, timeout=5)
        cache = PaletteCache(extractor.extract, cache_file=cache_file)
        hook_runner = HookRunner(runner=runner, max_parallel=max_parallel, default_timeout=5)
        return Orchestrator(cache, TemplateRegistry(templates), hooks, hook_runner=hook_runner)

    return build


@pytest.fixture
def test_logger():
    "Logger handed to components under test"
    from wallhue.logging_setup import get_logger

    return get_logger("wallhue.tests")
