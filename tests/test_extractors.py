import json

import pytest

from cartograph.extractors import (
    EXTRACTOR_REGISTRY,
    DocumentExtractor,
    ExtractorKind,
    FunctionExtractor,
    ImportExtractor,
    PackageExtractor,
    SchemaExtractor,
    create_extractor,
)
from cartograph.extractors.base import file_node_id, make_node
from cartograph.extractors.imports import package_name_of
from cartograph.extractors.package import calculate_build_order
from cartograph.models.graph import NodeType, RelationType


def _by_name(result, node_type):
    return {n.name: n for n in result.nodes if n.type is node_type}


def _relationships(result, rel_type):
    return [r for r in result.relationships if r.type is rel_type]


class TestRegistry:
    def test_every_kind_is_registered(self):
        assert set(EXTRACTOR_REGISTRY) == set(ExtractorKind)

    def test_create_extractor_accepts_strings(self, sample_repo):
        assert isinstance(create_extractor("document", sample_repo), DocumentExtractor)

    def test_unknown_kind_raises(self, sample_repo):
        with pytest.raises(ValueError):
            create_extractor("rust", sample_repo)


class TestPackageExtractor:
    def test_workspace_dependency(self, sample_repo):
        """Two npm packages, one internal edge from core to schema."""
        result = PackageExtractor(sample_repo).extract()
        packages = _by_name(result, NodeType.PACKAGE)

        assert {"@scope/core", "@scope/schema"} <= set(packages)
        depends = _relationships(result, RelationType.DEPENDS_ON)
        assert len(depends) == 1
        assert depends[0].source == packages["@scope/core"].id
        assert depends[0].target == packages["@scope/schema"].id
        assert depends[0].properties["version_spec"] == "workspace:*"
        assert depends[0].properties["dependency_type"] == "runtime"

    def test_nameless_root_manifest_is_skipped(self, sample_repo):
        result = PackageExtractor(sample_repo).extract()
        assert all(n.path for n in result.nodes if n.type is NodeType.PACKAGE)

    def test_package_properties(self, sample_repo):
        packages = _by_name(PackageExtractor(sample_repo).extract(), NodeType.PACKAGE)

        core = packages["@scope/core"]
        assert core.path == "packages/core"
        assert core.properties["version"] == "1.0.0"
        assert core.properties["ecosystem"] == "npm"
        assert core.properties["dependencies"] == ["@scope/schema", "zod"]
        assert core.properties["dev_dependencies"] == ["vitest"]
        assert core.properties["build_order"] > packages["@scope/schema"].properties["build_order"]

        api = packages["api-service"]
        assert api.properties["ecosystem"] == "python"
        assert api.properties["dependencies"] == ["pydantic"]

    def test_key_files_are_contained(self, sample_repo):
        result = PackageExtractor(sample_repo).extract()
        core = _by_name(result, NodeType.PACKAGE)["@scope/core"]
        contained = {r.target for r in _relationships(result, RelationType.CONTAINS) if r.source == core.id}

        assert file_node_id("packages/core/README.md") in contained
        assert file_node_id("packages/core/src/index.ts") in contained

    def test_malformed_manifest_is_recorded(self, sample_repo):
        (sample_repo / "packages" / "broken").mkdir()
        (sample_repo / "packages" / "broken" / "package.json").write_text("{not json", encoding="utf-8")

        result = PackageExtractor(sample_repo).extract()

        assert [e.path for e in result.errors] == ["packages/broken/package.json"]
        assert "@scope/core" in _by_name(result, NodeType.PACKAGE)

    def test_build_order_puts_dependencies_first(self):
        order = calculate_build_order({"app": {"lib"}, "lib": {"base"}, "base": set()})
        assert order == {"base": 0, "lib": 1, "app": 2}

    def test_build_order_appends_cycles(self):
        order = calculate_build_order({"a": {"b"}, "b": {"a"}, "c": set()})
        assert order == {"c": 0, "a": 1, "b": 2}


class TestSchemaExtractor:
    def test_json_schema_with_definitions(self, sample_repo):
        result = SchemaExtractor(sample_repo).extract()
        json_schemas = {
            n.name: n for n in result.nodes if n.properties.get("schema_kind") == "json-schema"
        }

        assert set(json_schemas) == {"User", "Address"}
        user = json_schemas["User"]
        assert user.properties["fields"] == ["id", "address"]
        assert user.properties["field_types"] == ["string", "Address"]
        assert user.properties["required_fields"] == ["id"]
        assert json_schemas["Address"].properties["pointer"] == "#/definitions/Address"

    def test_pydantic_models(self, sample_repo):
        result = SchemaExtractor(sample_repo).extract()
        models = {n.name: n for n in result.nodes if n.properties.get("schema_kind") == "pydantic"}

        assert set(models) == {"Address", "Customer"}
        assert models["Address"].properties["fields"] == ["street", "city"]
        assert "street" in models["Address"].properties["required_fields"]
        assert models["Customer"].path == "services/api/app/models.py"

    def test_zod_object(self, sample_repo):
        result = SchemaExtractor(sample_repo).extract()
        zod = {n.name: n for n in result.nodes if n.properties.get("schema_kind") == "zod"}

        user = zod["UserSchema"]
        assert user.properties["zod_type"] == "object"
        assert user.properties["fields"] == ["id", "email", "nickname"]
        assert user.properties["required_fields"] == ["id", "email"]

    def test_invalid_json_schema_is_recorded(self, sample_repo):
        (sample_repo / "broken.schema.json").write_text("[1, 2", encoding="utf-8")

        result = SchemaExtractor(sample_repo).extract()

        assert [e.path for e in result.errors] == ["broken.schema.json"]
        assert result.nodes


class TestFunctionExtractor:
    def test_typescript_definitions(self, sample_repo):
        result = FunctionExtractor(sample_repo).extract()

        functions = _by_name(result, NodeType.FUNCTION)
        assert functions["createLogger"].path == "packages/core/src/index.ts"
        assert functions["createLogger"].properties["parameters"] == ["name"]
        assert "formatMessage" in functions["createLogger"].properties["calls"]
        assert _by_name(result, NodeType.INTERFACE)["Logger"].properties["fields"] == ["info", "level"]
        assert _by_name(result, NodeType.CLASS)["ConsoleLogger"].properties["implements"] == ["Logger"]

    def test_file_contains_definitions(self, sample_repo):
        result = FunctionExtractor(sample_repo).extract()
        create_logger = _by_name(result, NodeType.FUNCTION)["createLogger"]

        contains = _relationships(result, RelationType.CONTAINS)
        assert any(r.source == file_node_id("packages/core/src/index.ts") and r.target == create_logger.id for r in contains)

    def test_same_file_calls(self, sample_repo):
        result = FunctionExtractor(sample_repo).extract()
        functions = _by_name(result, NodeType.FUNCTION)

        calls = [(r.source, r.target) for r in _relationships(result, RelationType.CALLS)]
        assert (functions["load_customer"].id, functions["build_customer"].id) in calls
        # formatMessage lives in another file; left to correlation.
        assert (functions["createLogger"].id, functions["formatMessage"].id) not in calls

    def test_ignores_blacklisted_directories(self, sample_repo):
        result = FunctionExtractor(sample_repo).extract()
        assert not any((n.path or "").startswith("node_modules") for n in result.nodes)

    def test_python_definition_keeps_qualified_name(self, tmp_path):
        (tmp_path / "mod.py").write_text("def create_logger(name):\n    return name\n")

        result = FunctionExtractor(tmp_path).extract()

        assert result.errors == []
        node = _by_name(result, NodeType.FUNCTION)["create_logger"]
        assert node.properties["qualified_name"] == "create_logger"
        assert node.path == "mod.py"

    def test_emit_failure_is_recorded_per_file(self, tmp_path, monkeypatch):
        (tmp_path / "bad.py").write_text("def broken():\n    pass\n")
        (tmp_path / "good.py").write_text("def working():\n    pass\n")
        emit = FunctionExtractor._emit_module

        def failing_emit(self, module, path, result):
            if path.name == "bad.py":
                raise RuntimeError("emit failed")
            emit(self, module, path, result)

        monkeypatch.setattr(FunctionExtractor, "_emit_module", failing_emit)
        result = FunctionExtractor(tmp_path).extract()

        assert "working" in _by_name(result, NodeType.FUNCTION)
        assert [(e.path, e.extractor) for e in result.errors] == [("bad.py", "function")]
        assert "emit failed" in result.errors[0].message


class TestMakeNode:
    def test_qualified_name_property_does_not_clash(self):
        node = make_node(NodeType.FUNCTION, "Logger.info", "src/log.ts", name="info", qualified_name="Logger.info")

        assert node.name == "info"
        assert node.properties["qualified_name"] == "Logger.info"

    def test_name_defaults_to_last_segment(self):
        assert make_node(NodeType.CLASS, "pkg.Logger", "pkg/log.py").name == "Logger"


class TestImportExtractor:
    def test_relative_imports_resolve_to_files(self, sample_repo):
        result = ImportExtractor(sample_repo).extract()
        imports = {(r.source, r.target): r for r in _relationships(result, RelationType.IMPORTS)}

        ts = (file_node_id("packages/core/src/index.ts"), file_node_id("packages/core/src/format.ts"))
        py = (file_node_id("services/api/app/service.py"), file_node_id("services/api/app/models.py"))
        assert ts in imports
        assert py in imports
        assert imports[py].properties["imported_names"] == ["Customer"]

    def test_bare_specifiers_are_external(self, sample_repo):
        result = ImportExtractor(sample_repo).extract()
        files = {n.path: n for n in result.nodes}

        assert files["packages/core/src/index.ts"].properties["external_imports"] == ["@scope/schema"]
        assert files["packages/schema/src/user.ts"].properties["external_imports"] == ["zod"]
        assert files["services/api/app/models.py"].properties["external_imports"] == ["pydantic"]

    @pytest.mark.parametrize(
        "specifier, expected",
        [("@scope/core/utils", "@scope/core"), ("react-dom/client", "react-dom"), ("node:fs", "node:fs")],
    )
    def test_package_name_of(self, specifier, expected):
        assert package_name_of(specifier) == expected


class TestDocumentExtractor:
    def test_front_matter_and_structure(self, sample_repo):
        result = DocumentExtractor(sample_repo).extract()
        docs = {n.path: n for n in result.nodes}

        readme = docs["packages/core/README.md"]
        assert readme.type is NodeType.DOCUMENT
        assert readme.name == "Core Package"
        assert readme.properties["tags"] == ["logging", "core"]
        assert readme.properties["headings"] == ["Core"]
        assert readme.properties["links"] == ["../../docs/guide.md"]
        assert readme.properties["summary"] == "Structured logging helpers shared by every service."

    def test_title_falls_back_to_heading(self, sample_repo):
        docs = {n.path: n for n in DocumentExtractor(sample_repo).extract().nodes}
        assert docs["docs/guide.md"].name == "Developer Guide"

    def test_rst_sections(self, sample_repo):
        (sample_repo / "docs" / "setup.rst").write_text(
            "Setup\n=====\n\nRun the installer.\n\nUsage\n-----\n", encoding="utf-8"
        )
        docs = {n.path: n for n in DocumentExtractor(sample_repo).extract().nodes}

        setup = docs["docs/setup.rst"]
        assert setup.properties["format"] == "rst"
        assert setup.properties["headings"] == ["Setup", "Usage"]
        assert setup.name == "Setup"


def test_extractor_outputs_are_json_serialisable(sample_repo):
    result = PackageExtractor(sample_repo).extract()
    json.dumps([n.model_dump(mode="json") for n in result.nodes])
