# tests/storage/test_json_storage.py
"""
Tests for JsonFileStorage.

Covers index persistence (atomic replace, corrupt files), session listing
with encoded keys, and offload file handling including path checks.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from llmcontext.exceptions import ConfigError, OffloadError
from llmcontext.models import ContextNode, LayeredIndex, OffloadRecord
from llmcontext.storage import JsonFileStorage, LayeredContextStorage, safe_name
from llmcontext.storage.json_storage import INDEX_FILE_NAME


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = JsonFileStorage(str(tmp_path / "store"))
    await store.initialize()
    yield store
    await store.close()


def sample_index(session_key: str = "telegram:42") -> LayeredIndex:
    node = ContextNode(
        id="node_0_abc",
        session_key=session_key,
        abstract="Deploy fix.",
        overview="- deploy.ts patched",
        transcript="USER: deploy broke\n\nASSISTANT: patched",
        keywords=("deploy", "patched"),
        recency_rank=0,
        message_ids=("m1", "m2"),
    )
    return LayeredIndex(
        session_key=session_key,
        nodes=[node],
        next_rank=1,
        indexed_message_count=2,
        offloads=[OffloadRecord(original_id="t1", file_path="/x/offload/t1.txt", size_bytes=10)],
    )


class TestSafeName:
    @pytest.mark.parametrize(
        "key,expected",
        [("telegram:42", "telegram%3A42"), ("a/b", "a%2Fb"), ("..", "%2E."), (".hidden", "%2Ehidden"), ("plain", "plain")],
    )
    def test_encoding(self, key, expected):
        assert safe_name(key) == expected

    def test_empty_key(self):
        with pytest.raises(ValueError):
            safe_name("")


class TestIndexPersistence:
    def test_empty_path_rejected(self):
        with pytest.raises(ConfigError):
            JsonFileStorage("")

    def test_is_storage_backend(self, tmp_path):
        assert isinstance(JsonFileStorage(str(tmp_path)), LayeredContextStorage)

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage):
        index = sample_index()
        await storage.save_index(index)
        assert await storage.load_index("telegram:42") == index

    @pytest.mark.asyncio
    async def test_layout_on_disk(self, storage):
        await storage.save_index(sample_index())
        index_path = storage.root / "telegram%3A42" / INDEX_FILE_NAME
        assert index_path.exists()
        assert not list(index_path.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_missing_index(self, storage):
        assert await storage.load_index("nobody") is None

    @pytest.mark.asyncio
    async def test_corrupt_index_is_ignored(self, storage):
        session_dir = storage.root / safe_name("s:1")
        session_dir.mkdir(parents=True)
        (session_dir / INDEX_FILE_NAME).write_text("{not valid json", encoding="utf-8")
        assert await storage.load_index("s:1") is None

    @pytest.mark.asyncio
    async def test_invalid_index_is_ignored(self, storage):
        session_dir = storage.root / safe_name("s:1")
        session_dir.mkdir(parents=True)
        (session_dir / INDEX_FILE_NAME).write_text('{"session_key": "s:1", "next_rank": -5}', encoding="utf-8")
        assert await storage.load_index("s:1") is None

    @pytest.mark.asyncio
    async def test_overwrite(self, storage):
        index = sample_index()
        await storage.save_index(index)
        updated = index.model_copy(update={"indexed_message_count": 10})
        await storage.save_index(updated)
        assert (await storage.load_index("telegram:42")).indexed_message_count == 10

    @pytest.mark.asyncio
    async def test_delete_index(self, storage):
        await storage.save_index(sample_index())
        assert await storage.delete_index("telegram:42") is True
        assert await storage.load_index("telegram:42") is None
        assert not (storage.root / "telegram%3A42").exists()
        assert await storage.delete_index("telegram:42") is False

    @pytest.mark.asyncio
    async def test_list_sessions_decodes_keys(self, storage):
        await storage.save_index(sample_index("telegram:42"))
        await storage.save_index(sample_index("cli/local"))
        assert await storage.list_sessions() == ["cli/local", "telegram:42"]

    @pytest.mark.asyncio
    async def test_list_sessions_without_root(self, tmp_path):
        assert await JsonFileStorage(str(tmp_path / "never")).list_sessions() == []


class TestOffloadFiles:
    @pytest.mark.asyncio
    async def test_write_read_round_trip(self, storage):
        payload = "résultat\n".encode("utf-8") * 100
        path = await storage.write_offload("telegram:42", "toolu_01", payload)

        assert path.endswith("toolu_01.txt")
        assert Path(path).parent.name == "offload"
        assert await storage.read_offload(path) == payload

    @pytest.mark.asyncio
    async def test_binary_extension(self, storage):
        path = await storage.write_offload("s", "img", b"\x89PNG", extension=".png")
        assert path.endswith("img.png")
        assert await storage.read_offload(path) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_unsafe_id_is_encoded(self, storage):
        path = await storage.write_offload("s", "../../etc/passwd", b"x")
        assert Path(path).parent == storage.root / "s" / "offload"

    @pytest.mark.asyncio
    async def test_read_outside_root_rejected(self, storage, tmp_path):
        outside = tmp_path / "offload" / "secret.txt"
        outside.parent.mkdir()
        outside.write_bytes(b"secret")
        with pytest.raises(OffloadError):
            await storage.read_offload(str(outside))

    @pytest.mark.asyncio
    async def test_read_index_file_rejected(self, storage):
        await storage.save_index(sample_index())
        with pytest.raises(OffloadError):
            await storage.read_offload(str(storage.root / "telegram%3A42" / INDEX_FILE_NAME))

    @pytest.mark.asyncio
    async def test_read_missing_file(self, storage):
        with pytest.raises(OffloadError):
            await storage.read_offload(str(storage.root / "s" / "offload" / "gone.txt"))

    @pytest.mark.asyncio
    async def test_list_and_delete(self, storage):
        first = await storage.write_offload("s", "a", b"12345")
        await storage.write_offload("s", "b", b"1")

        files = await storage.list_offloads("s")
        assert [f.path for f in files] == [first, str(storage.root / "s" / "offload" / "b.txt")]
        assert files[0].size_bytes == 5
        assert files[0].session_key == "s"
        assert files[0].modified_at <= datetime.now(timezone.utc)

        assert await storage.delete_offload(first) is True
        assert await storage.delete_offload(first) is False
        assert len(await storage.list_offloads("s")) == 1

    @pytest.mark.asyncio
    async def test_list_offloads_for_unknown_session(self, storage):
        assert await storage.list_offloads("nobody") == []

    @pytest.mark.asyncio
    async def test_offload_only_session_is_listed(self, storage):
        await storage.write_offload("orphan:1", "a", b"x")
        assert await storage.list_sessions() == ["orphan:1"]
