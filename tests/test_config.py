import pytest
from pytest_asyncio import fixture

from wallhue.cache import Fingerprint
from wallhue.config import Configuration
from wallhue.config_loader import ConfigLoader, merge
from wallhue.models import ConfigError, DependencyPolicy, Dialect
from wallhue.orchestrator import Orchestrator
from wallhue.validation import ConfigField, ConfigItems, ConfigValidator, format_config_error

SAMPLE_CONFIG = """
[wallhue]
engine = "matugen-palette --image [image]"
hook_timeout = 5
max_parallel_hooks = 2
fingerprint = "mtime"

[templates.bar]
input_path = "{root}/bar.tpl"
output_path = "{root}/out/bar.conf"
post_hook = "pkill -USR1 bar"

[templates.term]
input_path = "{root}/term.tpl"
output_path = "{root}/out/term.conf"
dialect = "mustache"
enabled = false

[hooks.notify]
command = "notify-send 'theme updated'"
depends_on = ["bar", "term"]
require = "any"
timeout = 1.5
cwd = "~"
"""


def test_config_access(test_logger):
    conf = Configuration({"a": 1, "b": "test"}, logger=test_logger)
    assert conf["a"] == 1
    assert conf.get("b") == "test"
    assert conf.get("c", 3) == 3


def test_get_bool(test_logger):
    conf = Configuration(
        {"t1": True, "t2": "yes", "t3": "on", "f1": False, "f2": "no", "f3": "0", "invalid": "foo", "empty": ""},
        logger=test_logger,
    )
    assert conf.get_bool("t1") is True
    assert conf.get_bool("t2") is True
    assert conf.get_bool("t3") is True
    assert conf.get_bool("f1") is False
    assert conf.get_bool("f2") is False
    assert conf.get_bool("f3") is False
    # Non-empty unrecognized strings are truthy
    assert conf.get_bool("invalid") is True
    assert conf.get_bool("empty") is False
    assert conf.get_bool("missing", default=True) is True


def test_get_numbers(test_logger):
    conf = Configuration({"a": 1, "b": "2", "c": "invalid", "d": "2.5"}, logger=test_logger)
    assert conf.get_int("a") == 1
    assert conf.get_int("b") == 2
    assert conf.get_int("c", default=10) == 10
    assert conf.get_float("d") == 2.5
    assert conf.get_float("missing", default=5.5) == 5.5


def test_get_list_and_schema_defaults(test_logger):
    schema = ConfigItems(ConfigField("depends_on", (list, str), default=[]), ConfigField("timeout", float, default=30.0))
    conf = Configuration({"depends_on": "bar"}, logger=test_logger, schema=schema)
    assert conf.get_list("depends_on") == ["bar"]
    assert conf.get_list("missing") == []
    assert conf.get_float("timeout") == 30.0


def test_merge():
    assert merge({"a": {"b": 1}, "l": [1]}, {"a": {"c": 2}, "l": [2], "d": 3}) == {"a": {"b": 1, "c": 2}, "l": [1, 2], "d": 3}


# Config Validation Tests


def test_format_config_error():
    msg = format_config_error("templates.bar", "dialect", "Invalid value", "Valid options: 'hex'")
    assert msg == "[templates.bar] Config error for 'dialect': Invalid value -> Valid options: 'hex'"


def test_config_validator_required_fields(test_logger):
    schema = ConfigItems(ConfigField("command", str, required=True), ConfigField("cwd", str))
    errors = ConfigValidator({}, "hooks.reload", test_logger).validate(schema)
    assert len(errors) == 1
    assert "Missing required field" in errors[0]
    assert 'Add command = "value" to [hooks.reload]' in errors[0]
    assert ConfigValidator({"command": "true"}, "hooks.reload", test_logger).validate(schema) == []


def test_config_validator_type_checking(test_logger):
    schema = ConfigItems(
        ConfigField("count", int),
        ConfigField("factor", float),
        ConfigField("enabled", bool),
        ConfigField("name", str),
        ConfigField("items", list),
        ConfigField("options", dict),
    )
    good = {"count": 10, "factor": "2.5", "enabled": "yes", "name": "test", "items": [1], "options": {"a": 1}}
    assert ConfigValidator(good, "test", test_logger).validate(schema) == []

    bad = {"count": "many", "factor": "half", "enabled": "maybe", "name": 123, "items": "one", "options": "none"}
    assert len(ConfigValidator(bad, "test", test_logger).validate(schema)) == 6


def test_config_validator_choices_and_validator(test_logger):
    schema = ConfigItems(
        ConfigField("dialect", str, choices=["hex", "rgb"]),
        ConfigField("timeout", float, validator=lambda v: [] if float(v) > 0 else ["Must be greater than 0"]),
    )
    errors = ConfigValidator({"dialect": "hsl", "timeout": -1}, "templates.bar", test_logger).validate(schema)
    assert len(errors) == 2
    assert "Valid options: 'hex', 'rgb'" in errors[0]
    assert "Must be greater than 0" in errors[1]


def test_config_validator_unknown_keys(test_logger):
    schema = ConfigItems(ConfigField("input_path", str), ConfigField("output_path", str))
    config = {"input_path": "a", "ouput_path": "b", "foobar": "c"}
    warnings = ConfigValidator(config, "templates.bar", test_logger).warn_unknown_keys(schema)
    assert len(warnings) == 2
    assert any("ouput_path" in w and "output_path" in w for w in warnings)
    assert any("foobar" in w and "ignored" in w for w in warnings)


def test_config_validator_children(test_logger):
    children = ConfigItems(ConfigField("command", str, required=True))
    schema = ConfigItems(ConfigField("hooks", dict, children=children))
    errors = ConfigValidator({"hooks": {"a": {"command": "x"}, "b": {}, "c": 3}}, "root", test_logger).validate(schema)
    assert len(errors) == 1
    assert "[hooks.b]" in errors[0]
    assert "[root.hooks] Config error for 'c'" in errors[0]


# Loader


@pytest.fixture
def config_file(tmp_path):
    (tmp_path / "bar.tpl").write_text("bg={background}")
    (tmp_path / "term.tpl").write_text("fg={{ foreground }}")
    path = tmp_path / "config.toml"
    path.write_text(SAMPLE_CONFIG.replace("{root}", str(tmp_path)))
    return path


@fixture
async def loaded_config(config_file, test_logger):
    "The sample configuration, loaded"
    return await ConfigLoader(test_logger).load(str(config_file))


@pytest.mark.asyncio
async def test_load(loaded_config, tmp_path):
    config = loaded_config

    assert config.settings.get_str("engine") == "matugen-palette --image [image]"
    assert config.settings.get_float("extract_timeout") == 10.0
    assert config.settings.get_int("max_parallel_hooks") == 2

    assert [t.id for t in config.templates] == ["bar", "term"]
    assert [t.id for t in config.templates.enabled()] == ["bar"]
    term = config.templates.get("term")
    assert term.dialect == Dialect.MUSTACHE
    assert term.destination == str(tmp_path / "out" / "term.conf")

    post_hook, notify = config.hooks
    assert post_hook.name == "bar.post_hook"
    assert post_hook.command == "pkill -USR1 bar"
    assert post_hook.depends_on == ("bar",)
    assert notify.depends_on == ("bar", "term")
    assert notify.require == DependencyPolicy.ANY
    assert notify.timeout == 1.5
    assert not notify.cwd.startswith("~")


@pytest.mark.asyncio
async def test_from_config(loaded_config, test_logger, runner):
    orchestrator = Orchestrator.from_config(loaded_config, runner=runner, log=test_logger)
    assert orchestrator.cache.fingerprint == Fingerprint.MTIME
    assert orchestrator.hook_runner.max_parallel == 2
    assert orchestrator.hook_runner.default_timeout == 5.0
    assert len(orchestrator.templates) == 2


@pytest.mark.asyncio
async def test_load_directory_and_include(tmp_path, test_logger):
    conf_dir = tmp_path / "conf.d"
    conf_dir.mkdir()
    extra = tmp_path / "extra.toml"
    extra.write_text('[hooks.extra]\ncommand = "true"\n')
    (conf_dir / "10-base.toml").write_text(f'[wallhue]\ninclude = ["{extra}"]\n\n[templates.bar]\ninput_path = "a"\noutput_path = "b"\n')
    (conf_dir / "20-hooks.toml").write_text('[hooks.reload]\ncommand = "reload"\ndepends_on = "bar"\n')
    (conf_dir / "notes.txt").write_text("not toml")

    config = await ConfigLoader(test_logger).load(str(conf_dir))
    assert [h.name for h in config.hooks] == ["reload", "extra"]
    assert config.hooks[0].depends_on == ("bar",)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ('[templates.bar]\ninput_path = "a"\n', "output_path"),
        ('[templates.bar]\ninput_path = "a"\noutput_path = "b"\ndialect = "hsl"\n', "hsl"),
        ('[hooks.reload]\ncommand = "true"\ntimeout = -1\n', "greater than 0"),
        ('[hooks.reload]\ncommand = "true"\nrequire = "most"\n', "most"),
        ('[wallhue]\nmax_parallel_hooks = 0\n', "greater than 0"),
        ('[wallhue]\nfingerprint = "size"\n', "size"),
        ("[wallhue]\nengine = \"wallhue-palette '[image]\"\n", "Invalid command line"),
        ("[templates\n", "Problem reading"),
    ],
)
async def test_invalid_config(tmp_path, test_logger, content, expected):
    path = tmp_path / "config.toml"
    path.write_text(content)
    with pytest.raises(ConfigError) as exc:
        await ConfigLoader(test_logger).load(str(path))
    assert any(expected in error for error in exc.value.errors)


@pytest.mark.asyncio
async def test_missing_config(tmp_path, test_logger):
    with pytest.raises(ConfigError, match="not found"):
        await ConfigLoader(test_logger).load(str(tmp_path / "nope.toml"))
