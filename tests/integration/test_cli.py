"""CLI entrypoint tests: offline patch application and a mocked generation run."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx
from structlog.testing import capture_logs

from patchstream.cli import main

if TYPE_CHECKING:
    from pathlib import Path

URL = "https://generator.example.com/generate"

BASE = '<!DOCTYPE html>\n<html><head></head><body><section id="hero">old</section></body></html>'

PATCH = (
    "<!-- PATCH -->\n"
    '<!-- REPLACE #hero -->\n<section id="hero">new</section>\n<!-- /REPLACE -->\n'
    "<!-- /PATCH -->"
)


@pytest.fixture()
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the cache at a temporary database and the generator at a mocked URL."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PATCHSTREAM__CACHE__DB_PATH", str(tmp_path / "cache" / "generation_cache.db"))
    monkeypatch.setenv("PATCHSTREAM__GENERATOR__URL", URL)
    monkeypatch.setenv("PATCHSTREAM__LOGGING__FORMAT", "text")
    # Keep the global structlog configuration untouched between tests
    monkeypatch.setattr("patchstream.cli._setup_logging", lambda settings: None)
    return tmp_path


class TestApplyCommand:
    def test_applies_patch_file(self, isolated_env: Path) -> None:
        (isolated_env / "base.html").write_text(BASE, encoding="utf-8")
        (isolated_env / "change.patch").write_text(PATCH, encoding="utf-8")

        with capture_logs() as logs:
            code = main(["apply", "base.html", "change.patch", "-o", "out.html"])

        assert code == 0
        applied = next(entry for entry in logs if entry["event"] == "patch_file_applied")
        assert applied["applied"] == 1
        assert applied["failed"] is False
        out = (isolated_env / "out.html").read_text(encoding="utf-8")
        assert '<section id="hero">new</section>' in out

    def test_rejects_non_patch_file(self, isolated_env: Path) -> None:
        (isolated_env / "base.html").write_text(BASE, encoding="utf-8")
        (isolated_env / "full.html").write_text(BASE, encoding="utf-8")

        assert main(["apply", "base.html", "full.html"]) == 2


class TestGenerateCommand:
    def test_generate_writes_document(
        self, isolated_env: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with respx.mock:
            route = respx.post(URL).mock(return_value=httpx.Response(200, text=BASE))
            assert main(["generate", "A bakery"]) == 0
            # Served from the on-disk cache the second time
            assert main(["generate", "A bakery", "-o", "again.html"]) == 0

        assert route.call_count == 1
        assert BASE in capsys.readouterr().out
        assert (isolated_env / "again.html").read_text(encoding="utf-8") == BASE

    def test_generate_reports_pages(self, isolated_env: Path) -> None:
        site = (
            "<!-- FILE: index.html -->\n<html>home</html>\n"
            "<!-- FILE: api-reference.html -->\n<html>api</html>"
        )
        with respx.mock, capture_logs() as logs:
            respx.post(URL).mock(return_value=httpx.Response(200, text=site))
            assert main(["generate", "Docs site", "-o", "site.html"]) == 0

        pages = next(entry for entry in logs if entry["event"] == "generation_pages")
        assert pages["pages"] == ["Home", "API Reference"]

    def test_transport_failure_exit_code(self, isolated_env: Path) -> None:
        with respx.mock:
            respx.post(URL).mock(return_value=httpx.Response(401))
            assert main(["generate", "A bakery", "--no-cache"]) == 1

    def test_cache_commands(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["cache-clear"]) == 0
        assert main(["cache-stats"]) == 0
        assert '"total_entries": 0' in capsys.readouterr().out
