import pathlib

from cartograph.core.crawler import FileCrawler, get_language_for_file


def _touch(root, rel, content="x"):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _rel(root, paths):
    return [p.relative_to(root.resolve()).as_posix() for p in paths]


class TestFileCrawler:
    def test_source_files_in_stable_order(self, tmp_path):
        for rel in ("src/b.ts", "src/a.py", "main.js", "notes.md", "src/sub/c.tsx"):
            _touch(tmp_path, rel)

        found = _rel(tmp_path, FileCrawler(tmp_path, blacklist=[]).crawl())

        assert found == ["main.js", "src/a.py", "src/b.ts", "src/sub/c.tsx"]

    def test_blacklist_and_gitignore_prune(self, tmp_path):
        _touch(tmp_path, "node_modules/zod/index.js")
        _touch(tmp_path, "generated/out.py")
        _touch(tmp_path, "keep.py")
        _touch(tmp_path, ".gitignore", "generated/\n")

        found = _rel(tmp_path, FileCrawler(tmp_path, blacklist=["node_modules"]).crawl())

        assert found == ["keep.py"]

    def test_file_names_and_custom_suffixes(self, tmp_path):
        _touch(tmp_path, "package.json", "{}")
        _touch(tmp_path, "schemas/user.schema.json", "{}")
        _touch(tmp_path, "data.json", "{}")

        manifests = FileCrawler(tmp_path, suffixes=(), file_names={"package.json"}, blacklist=[])
        schemas = FileCrawler(tmp_path, suffixes=(".schema.json",), blacklist=[])

        assert _rel(tmp_path, manifests.crawl()) == ["package.json"]
        assert _rel(tmp_path, schemas.crawl()) == ["schemas/user.schema.json"]

    def test_large_files_are_skipped(self, tmp_path):
        _touch(tmp_path, "big.py", "x" * 100)
        _touch(tmp_path, "small.py", "x")

        found = _rel(tmp_path, FileCrawler(tmp_path, blacklist=[], max_file_size_bytes=10).crawl())

        assert found == ["small.py"]


def test_get_language_for_file():
    assert get_language_for_file(pathlib.Path("a/b.TSX")) == "typescript"
    assert get_language_for_file(pathlib.Path("setup.cfg")) is None
