from __future__ import annotations

import json
import logging

import pytest

from wharf.entrypoints import (
    EntrypointBundle,
    EntrypointGraphBuilder,
    dump_entrypoints,
    join_url,
    parse_entrypoints,
    read_entrypoints,
    write_entrypoints,
)
from wharf.errors import EntrypointNotFoundError, ManifestFormatError, MissingManifestError
from wharf.manifest import Manifest


def _manifest(document: dict) -> Manifest:
    return Manifest.from_json(json.dumps(document))


def _entry(file: str, *, imports=(), css=(), dynamic=(), is_entry=False) -> dict:
    return {
        "file": file,
        "isEntry": is_entry,
        "imports": list(imports),
        "dynamicImports": list(dynamic),
        "css": list(css),
    }


# --- concrete scenario ---


def test_app_entry_closure(manifest_document, caplog):
    builder = EntrypointGraphBuilder({"app": "resources/js/app.ts"})

    with caplog.at_level(logging.WARNING, logger="wharf.entrypoints"):
        bundles = builder.build(_manifest(manifest_document))

    assert bundles["app"].scripts == ("app.3657b05e.js",)
    assert bundles["app"].styles == ("app.d90c71c1.css",)
    assert "_ace.a1f217ec.js" in caplog.text


def test_unmapped_entries_are_named_by_source(manifest_document):
    bundles = EntrypointGraphBuilder({"app": "resources/js/app.ts"}).build(_manifest(manifest_document))

    assert set(bundles) == {"app", "resources/css/app.css"}
    assert bundles["resources/css/app.css"] == EntrypointBundle(scripts=(), styles=("app.2b8046fe.css",))


def test_non_entries_get_no_bundle():
    manifest = _manifest({"main.ts": _entry("main.js", is_entry=True), "_chunk.js": _entry("chunk.js")})

    assert set(EntrypointGraphBuilder().build(manifest)) == {"main.ts"}


# --- traversal order ---


def test_scripts_follow_depth_first_pre_order():
    manifest = _manifest(
        {
            "main.ts": _entry("main.js", imports=["a.ts", "b.ts"], css=["main.css"], is_entry=True),
            "a.ts": _entry("a.js", imports=["c.ts"], css=["a.css"]),
            "b.ts": _entry("b.js", css=["b.css"]),
            "c.ts": _entry("c.js", css=["c.css"]),
        },
    )

    bundle = EntrypointGraphBuilder({"main": "main.ts"}).build(manifest)["main"]

    assert bundle.scripts == ("main.js", "a.js", "c.js", "b.js")
    assert bundle.styles == ("main.css", "a.css", "c.css", "b.css")


def test_shared_chunk_keeps_earliest_position():
    manifest = _manifest(
        {
            "main.ts": _entry("main.js", imports=["a.ts", "b.ts"], is_entry=True),
            "a.ts": _entry("a.js", imports=["shared.ts"], css=["shared.css"]),
            "b.ts": _entry("b.js", imports=["shared.ts"], css=["shared.css"]),
            "shared.ts": _entry("shared.js", css=["shared.css"]),
        },
    )

    bundle = EntrypointGraphBuilder({"main": "main.ts"}).build(manifest)["main"]

    assert bundle.scripts == ("main.js", "a.js", "shared.js", "b.js")
    assert bundle.styles == ("shared.css",)


def test_outputs_shared_by_different_keys_are_deduplicated():
    manifest = _manifest(
        {
            "main.ts": _entry("main.js", imports=["a.ts", "b.ts"], css=["common.css"], is_entry=True),
            "a.ts": _entry("vendor.js", css=["common.css"]),
            "b.ts": _entry("vendor.js"),
        },
    )

    bundle = EntrypointGraphBuilder({"main": "main.ts"}).build(manifest)["main"]

    assert bundle.scripts == ("main.js", "vendor.js")
    assert bundle.styles == ("common.css",)


def test_cycles_terminate():
    manifest = _manifest(
        {
            "a.ts": _entry("a.js", imports=["b.ts"], css=["a.css"], is_entry=True),
            "b.ts": _entry("b.js", imports=["c.ts"], css=["b.css"], is_entry=True),
            "c.ts": _entry("c.js", imports=["a.ts", "b.ts"]),
        },
    )

    bundles = EntrypointGraphBuilder().build(manifest)

    assert bundles["a.ts"].scripts == ("a.js", "b.js", "c.js")
    assert bundles["b.ts"].scripts == ("b.js", "c.js", "a.js")
    assert bundles["b.ts"].styles == ("b.css", "a.css")


def test_self_import_terminates():
    manifest = _manifest({"a.ts": _entry("a.js", imports=["a.ts"], is_entry=True)})

    assert EntrypointGraphBuilder().build(manifest)["a.ts"].scripts == ("a.js",)


def test_dynamic_imports_are_not_inlined():
    manifest = _manifest(
        {
            "main.ts": _entry("main.js", imports=["eager.ts"], dynamic=["lazy.ts"], is_entry=True),
            "eager.ts": _entry("eager.js"),
            "lazy.ts": _entry("lazy.js", css=["lazy.css"]),
        },
    )

    bundle = EntrypointGraphBuilder({"main": "main.ts"}).build(manifest)["main"]

    assert bundle.scripts == ("main.js", "eager.js")
    assert bundle.styles == ()


def test_asset_reachable_statically_and_dynamically_is_included_once():
    manifest = _manifest(
        {
            "main.ts": _entry("main.js", imports=["shared.ts"], dynamic=["shared.ts"], is_entry=True),
            "shared.ts": _entry("shared.js"),
        },
    )

    assert EntrypointGraphBuilder().build(manifest)["main.ts"].scripts == ("main.js", "shared.js")


def test_deep_chain_does_not_recurse():
    depth = 5000
    document = {f"m{i}.ts": _entry(f"m{i}.js", imports=[f"m{i + 1}.ts"]) for i in range(depth)}
    document["m0.ts"]["isEntry"] = True
    document[f"m{depth}.ts"] = _entry(f"m{depth}.js")

    bundle = EntrypointGraphBuilder().build(_manifest(document))["m0.ts"]

    assert len(bundle.scripts) == depth + 1
    assert bundle.scripts[-1] == f"m{depth}.js"


# --- naming, urls and caching ---


def test_mapped_name_must_exist():
    manifest = _manifest({"main.ts": _entry("main.js", is_entry=True)})

    with pytest.raises(EntrypointNotFoundError, match="admin") as excinfo:
        EntrypointGraphBuilder({"admin": "admin.ts"}).build(manifest)

    assert excinfo.value.key == "admin"


def test_mapped_name_must_be_an_entry():
    manifest = _manifest({"_chunk.ts": _entry("chunk.js")})

    with pytest.raises(EntrypointNotFoundError, match="chunk"):
        EntrypointGraphBuilder({"chunk": "_chunk.ts"}).build(manifest)


def test_source_mapped_under_several_names_is_published_under_each(manifest_document):
    builder = EntrypointGraphBuilder({"app": "resources/js/app.ts", "main": "resources/js/app.ts"})

    bundles = builder.build(_manifest(manifest_document))

    assert set(bundles) == {"app", "main", "resources/css/app.css"}
    assert bundles["app"] == bundles["main"]
    assert bundles["app"].scripts == ("app.3657b05e.js",)


@pytest.mark.parametrize(
    ("base_url", "path", "expected"),
    [
        pytest.param("", "assets/app.js", "assets/app.js", id="empty"),
        pytest.param("/build", "assets/app.js", "/build/assets/app.js", id="no-trailing-slash"),
        pytest.param("/build/", "/assets/app.js", "/build/assets/app.js", id="both-slashes"),
        pytest.param("https://cdn.example.com/", "app.js", "https://cdn.example.com/app.js", id="absolute"),
    ],
)
def test_join_url(base_url, path, expected):
    assert join_url(base_url, path) == expected


def test_base_url_prefixes_every_output(manifest_document):
    builder = EntrypointGraphBuilder({"app": "resources/js/app.ts"}, base_url="/build/")

    bundle = builder.build(_manifest(manifest_document))["app"]

    assert bundle.scripts == ("/build/app.3657b05e.js",)
    assert bundle.styles == ("/build/app.d90c71c1.css",)


def test_build_is_cached_per_manifest_generation(manifest_document):
    builder = EntrypointGraphBuilder({"app": "resources/js/app.ts"})
    raw = json.dumps(manifest_document)

    first = builder.build(Manifest.from_json(raw))

    assert builder.build(Manifest.from_json(raw)) is first

    manifest_document["resources/js/app.ts"]["file"] = "app.ffffffff.js"
    rebuilt = builder.build(_manifest(manifest_document))
    assert rebuilt is not first
    assert rebuilt["app"].scripts == ("app.ffffffff.js",)


def test_bundles_are_read_only(manifest_document):
    bundles = EntrypointGraphBuilder().build(_manifest(manifest_document))

    with pytest.raises(TypeError):
        bundles["other"] = EntrypointBundle()  # ty: ignore[invalid-assignment]


# --- entry points index document ---


def test_dump_entrypoints(manifest_document):
    bundles = EntrypointGraphBuilder({"app": "resources/js/app.ts"}).build(_manifest(manifest_document))

    assert dump_entrypoints(bundles) == {
        "app": {"scripts": ["app.3657b05e.js"], "styles": ["app.d90c71c1.css"]},
        "resources/css/app.css": {"scripts": [], "styles": ["app.2b8046fe.css"]},
    }


@pytest.mark.asyncio
async def test_written_index_reads_back(tmp_path, manifest_document):
    bundles = EntrypointGraphBuilder({"app": "resources/js/app.ts"}).build(_manifest(manifest_document))
    path = tmp_path / "public" / "build" / "entrypoints.json"

    await write_entrypoints(path, bundles)

    assert path.read_text(encoding="utf-8").endswith("}\n")
    assert dict(await read_entrypoints(path)) == dict(bundles)


@pytest.mark.asyncio
async def test_read_missing_index(tmp_path):
    with pytest.raises(MissingManifestError):
        await read_entrypoints(tmp_path / "entrypoints.json")


@pytest.mark.asyncio
async def test_read_invalid_index(tmp_path):
    path = tmp_path / "entrypoints.json"
    path.write_text("{", encoding="utf-8")

    with pytest.raises(ManifestFormatError, match="not valid JSON"):
        await read_entrypoints(path)


@pytest.mark.parametrize(
    "document",
    [
        pytest.param([], id="not-an-object"),
        pytest.param({"app": ["app.js"]}, id="bundle-not-an-object"),
        pytest.param({"app": {"scripts": "app.js"}}, id="scripts-not-a-list"),
        pytest.param({"app": {"styles": [1]}}, id="styles-not-strings"),
    ],
)
def test_parse_rejects_malformed_index(document):
    with pytest.raises(ManifestFormatError):
        parse_entrypoints(document)
