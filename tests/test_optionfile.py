"""Tests for .dbtree / my.cnf option files."""

import pytest

from dbtree.errors import OptionFileError, UnknownOptionError
from dbtree.optionfile import OptionFile, add_global_option_files

SAMPLE = """\
# shared by every environment
host=db.example.com
schema = product

[staging]
host=staging-db.example.com
user="deploy"

[ development ]
; local box
host=localhost
"""


@pytest.fixture
def sample(tmp_path):
    (tmp_path / ".dbtree").write_text(SAMPLE)
    option_file = OptionFile(tmp_path)
    option_file.read()
    return option_file


class TestOptionFileSections:
    def test_sections(self, sample):
        assert sample.sections() == ["staging", "development"]

    def test_sectionless_only_by_default(self, sample):
        assert sample.entries() == [("host", "db.example.com"), ("schema", "product")]

    def test_use_section_layers_over_sectionless(self, sample, make_config):
        assert sample.use_section("staging")
        cfg = make_config()
        sample.parse(cfg)
        cfg.add_source(sample)
        assert cfg.get("host") == "staging-db.example.com"
        assert cfg.get("schema") == "product"
        assert cfg.get("user") == "deploy"

    def test_missing_section_keeps_sectionless(self, sample, make_config):
        assert not sample.use_section("production")
        cfg = make_config()
        cfg.add_source(sample)
        assert cfg.get("host") == "db.example.com"

    def test_exclusive_section(self, sample):
        sample.use_section("development", exclusive=True)
        assert sample.entries() == [("host", "localhost")]

    def test_name_is_path(self, sample, tmp_path):
        assert sample.name == str(tmp_path / ".dbtree")
        assert sample.exists()


class TestOptionFileErrors:
    def test_unknown_option_in_inactive_section_fails(self, tmp_path, make_config):
        (tmp_path / ".dbtree").write_text("host=a\n[staging]\nbogus=1\n")
        option_file = OptionFile(tmp_path)
        with pytest.raises(UnknownOptionError) as excinfo:
            option_file.parse(make_config())
        assert excinfo.value.source == str(tmp_path / ".dbtree")

    def test_loose_unknown_is_fine(self, tmp_path, make_config):
        (tmp_path / ".dbtree").write_text("loose-bogus=1\nhost=a\n")
        option_file = OptionFile(tmp_path)
        option_file.parse(make_config())

    def test_malformed_section_header(self, tmp_path):
        (tmp_path / ".dbtree").write_text("host=a\n[staging\n")
        with pytest.raises(OptionFileError) as excinfo:
            OptionFile(tmp_path).sections()
        assert excinfo.value.line == 2

    def test_empty_key(self, tmp_path):
        (tmp_path / ".dbtree").write_text("=value\n")
        with pytest.raises(OptionFileError, match="missing option name"):
            OptionFile(tmp_path).sections()

    def test_missing_file(self, tmp_path):
        option_file = OptionFile(tmp_path)
        assert not option_file.exists()
        with pytest.raises(OSError):
            option_file.read()


class TestOptionFileWrite:
    def test_write_then_read(self, tmp_path):
        option_file = OptionFile(tmp_path)
        option_file.set("host", "db1")
        option_file.set("schema", "app")
        option_file.set("host", "staging-db", section="staging")
        option_file.set("allow-drop-table", None, section="staging")
        option_file.write()

        assert (tmp_path / ".dbtree").read_text() == (
            "host=db1\nschema=app\n\n[staging]\nhost=staging-db\nallow-drop-table\n"
        )
        again = OptionFile(tmp_path)
        again.use_section("staging")
        assert again.entries()[-1] == ("allow-drop-table", None)

    def test_set_replaces_existing_key(self, sample):
        sample.set("host", "other")
        assert sample.entries() == [("schema", "product"), ("host", "other")]

    def test_write_refuses_to_overwrite(self, sample):
        with pytest.raises(FileExistsError):
            sample.write()
        sample.write(overwrite=True)


class TestGlobalOptionFiles:
    @pytest.fixture
    def globals_dir(self, tmp_path, monkeypatch):
        etc = tmp_path / "etc"
        home = tmp_path / "home"
        etc.mkdir()
        home.mkdir()
        monkeypatch.setattr(
            "dbtree.optionfile.GLOBAL_OPTION_FILES",
            (
                (str(etc), "dbtree", False),
                (str(home), ".my.cnf", True),
                (str(home), ".dbtree", False),
            ),
        )
        return etc, home

    def test_precedence_and_my_cnf_client_section(self, globals_dir, make_config):
        etc, home = globals_dir
        (etc / "dbtree").write_text("user=etc-user\nschema=etc\n")
        (home / ".my.cnf").write_text(
            "user=ignored\n[mysqld]\nport=9999\n[client]\nuser=cnf-user\npassword=pw\nssl-mode=REQUIRED\n"
        )
        (home / ".dbtree").write_text("[production]\nschema=home\n")

        cfg = make_config()
        add_global_option_files(cfg)
        assert cfg.get("user") == "cnf-user"
        assert cfg.get("password") == "pw"
        assert cfg.get("schema") == "home"
        assert cfg.get("port") == "3306"

    def test_cli_outranks_globals(self, globals_dir, make_config):
        etc, _ = globals_dir
        (etc / "dbtree").write_text("user=etc-user\n")
        cfg = make_config("user=cli")
        add_global_option_files(cfg)
        assert cfg.get("user") == "cli"

    def test_missing_files_are_skipped(self, globals_dir, make_config):
        cfg = make_config()
        add_global_option_files(cfg)
        assert cfg.sources() == ["defaults", "command line"]

    def test_my_cnf_without_client_section_is_skipped(self, globals_dir, make_config):
        _, home = globals_dir
        (home / ".my.cnf").write_text("[mysqld]\nuser=mysql\n")
        cfg = make_config()
        add_global_option_files(cfg)
        assert not cfg.changed("user")

    def test_unknown_option_in_global_dbtree_is_fatal(self, globals_dir, make_config):
        etc, _ = globals_dir
        (etc / "dbtree").write_text("bogus=1\n")
        with pytest.raises(UnknownOptionError):
            add_global_option_files(make_config())
