from config import config, get_logger


def test_feed_sources_accept_mapping_or_plain_url(tmp_path, monkeypatch):
    feeds_file = tmp_path / "feeds.yaml"
    feeds_file.write_text(
        "feeds:\n"
        "  blog:\n"
        "    url: ' https://blog.example.com/feed.xml '\n"
        "  news: https://news.example.com/rss\n"
        "  broken:\n"
        "    title: no url here\n"
    )
    monkeypatch.setattr(config, "FEEDS_CONFIG_PATH", str(feeds_file))
    monkeypatch.setattr(config, "FEED_SOURCES", {})

    config.reload_feed_sources()

    assert config.FEED_SOURCES == {
        "blog": "https://blog.example.com/feed.xml",
        "news": "https://news.example.com/rss",
    }


def test_missing_feeds_file_yields_no_sources(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "FEEDS_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    monkeypatch.setattr(config, "FEED_SOURCES", {"stale": "https://example.com/"})

    config.reload_feed_sources()

    assert config.FEED_SOURCES == {}


def test_invalid_numeric_settings_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("SCRAPE_FEED_CONCURRENCY", "0")
    monkeypatch.setenv("HTTP_TIMEOUT", "soon")

    assert config._env_int("SCRAPE_FEED_CONCURRENCY", 5, 1) == 5
    assert config._env_int("HTTP_TIMEOUT", 30, 1) == 30


def test_module_loggers_share_the_application_root():
    assert get_logger("scraper").name == "FeedIngest.scraper"
