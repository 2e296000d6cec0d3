import pytest

from sitesearch_sync.config import DEFAULT_INDEX_SETTINGS, Settings, load_settings


def test_defaults(make_settings):
    config = make_settings()
    assert config.nodes_to_index == "p"
    assert config.max_record_size == 10_000
    assert config.indexing_mode == "diff"
    assert config.indexing_batch_size == 1000
    assert config.indexing_concurrency == 1
    assert config.dry_run is False
    assert config.force_settings is False


def test_unknown_indexing_mode_falls_back_to_diff(make_settings):
    assert make_settings(indexing_mode="atomic").indexing_mode == "atomic"
    assert make_settings(indexing_mode="bogus").indexing_mode == "diff"


def test_extensions_default_to_html_and_markdown(make_settings):
    config = make_settings()
    assert config.resolved_extensions == ["html", "markdown", "mkdown", "mkdn", "mkd", "md"]

    config = make_settings(extensions_to_index="html, adoc")
    assert config.resolved_extensions == ["html", "adoc"]


def test_root_index_pages_are_excluded_by_default(make_settings):
    config = make_settings(markdown_ext="md")
    assert config.resolved_files_to_exclude == ["index.html", "index.md"]

    assert make_settings(files_to_exclude=[]).resolved_files_to_exclude == []


def test_api_key_falls_back_to_key_file(make_settings, tmp_path):
    (tmp_path / "_algolia_api_key").write_text("from-file\n", encoding="utf-8")

    assert make_settings().resolved_api_key() == "secret-key"
    assert make_settings(api_key=None).resolved_api_key() == "from-file"


def test_api_key_missing(make_settings):
    assert make_settings(api_key=None).resolved_api_key() is None


def test_index_settings_merge_user_values_over_defaults(make_settings):
    config = make_settings(settings={"distinct": False, "ranking": ["typo"]})
    settings = config.index_settings

    assert settings["distinct"] is False
    assert settings["ranking"] == ["typo"]
    assert settings["customRanking"] == DEFAULT_INDEX_SETTINGS["customRanking"]
    # Defaults are never mutated
    assert DEFAULT_INDEX_SETTINGS["distinct"] is True


def test_settings_false_disables_settings_management(make_settings):
    config = make_settings(settings=False)
    assert config.manages_settings is False
    assert config.index_settings == {}


def test_load_settings_reads_algolia_section(tmp_path):
    config_file = tmp_path / "_config.yml"
    config_file.write_text(
        "markdown_ext: md\n"
        "algolia:\n"
        "  application_id: APPID\n"
        "  index_name: blog\n"
        "  files_to_exclude: 'drafts/*, index.html'\n"
        "  indexing_mode: atomic\n",
        encoding="utf-8",
    )

    config = load_settings(config_file)

    assert config.application_id == "APPID"
    assert config.index_name == "blog"
    assert config.indexing_mode == "atomic"
    assert config.files_to_exclude == ["drafts/*", "index.html"]
    assert config.source == str(tmp_path)
    assert config.resolved_extensions == ["html", "md"]


def test_environment_beats_config_file(tmp_path, monkeypatch):
    config_file = tmp_path / "_config.yml"
    config_file.write_text("algolia:\n  index_name: from_file\n", encoding="utf-8")
    monkeypatch.setenv("ALGOLIA_INDEX_NAME", "from_env")

    assert load_settings(config_file).index_name == "from_env"


def test_overrides_win_and_none_is_ignored(tmp_path):
    config_file = tmp_path / "_config.yml"
    config_file.write_text("algolia:\n  index_name: from_file\n", encoding="utf-8")

    config = load_settings(config_file, index_name="from_cli", dry_run=None)
    assert config.index_name == "from_cli"
    assert config.dry_run is False


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        Settings(indexing_batch_size=0)
