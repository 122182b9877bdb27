"""Tests for the project/section repositories and the project sync service."""

from datetime import UTC, datetime

import pytest
from conftest import make_project, make_section
from sqlalchemy import select

from gdd_manager.db.exceptions import PermissionDeniedError
from gdd_manager.db.models import ProjectRow, SectionRow
from gdd_manager.db.repositories import project_repo, section_repo
from gdd_manager.services import project_sync

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


async def _section_ids(db, project_id):
    result = await db.execute(select(SectionRow.id).where(SectionRow.project_id == project_id))
    return sorted(result.scalars().all())


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

async def test_upsert_project_inserts_then_overwrites(db):
    await project_repo.upsert_project(db, "owner", "p1", "First", "", {}, NOW, NOW)
    await project_repo.upsert_project(db, "owner", "p1", "Second", "desc", {"zoom": 2}, NOW, NOW)
    await db.commit()

    rows = await project_repo.get_projects_by_owner(db, "owner")
    assert len(rows) == 1
    assert rows[0].title == "Second"
    assert rows[0].mindmap_settings == {"zoom": 2}


async def test_upsert_project_rejects_foreign_owner(db):
    await project_repo.upsert_project(db, "alice", "p1", "Alice's", "", {}, NOW, NOW)

    with pytest.raises(PermissionDeniedError):
        await project_repo.upsert_project(db, "bob", "p1", "Bob's", "", {}, NOW, NOW)


async def test_get_projects_by_owner_is_scoped(db):
    await project_repo.upsert_project(db, "alice", "a", "Alice's", "", {}, NOW, NOW)
    await project_repo.upsert_project(db, "bob", "b", "Bob's", "", {}, NOW, NOW)

    rows = await project_repo.get_projects_by_owner(db, "alice")
    assert [r.id for r in rows] == ["a"]


async def test_delete_sections_not_in_with_empty_keep_list_deletes_all(db):
    await project_repo.upsert_project(db, "owner", "p1", "Game", "", {}, NOW, NOW)
    await section_repo.upsert_sections(db, "p1", [
        {"id": "s1", "title": "A", "created_at": NOW},
        {"id": "s2", "title": "B", "created_at": NOW},
    ])

    removed = await section_repo.delete_sections_not_in(db, "p1", [])

    assert removed == 2
    assert await _section_ids(db, "p1") == []


async def test_upsert_sections_rejects_id_from_other_project(db):
    await project_repo.upsert_project(db, "owner", "p1", "One", "", {}, NOW, NOW)
    await project_repo.upsert_project(db, "owner", "p2", "Two", "", {}, NOW, NOW)
    await section_repo.upsert_sections(db, "p1", [{"id": "s1", "title": "A", "created_at": NOW}])

    with pytest.raises(PermissionDeniedError):
        await section_repo.upsert_sections(db, "p2", [{"id": "s1", "title": "A", "created_at": NOW}])


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

async def test_apply_project_sync_writes_project_and_sections(db):
    project = make_project(
        "p1",
        sections=[make_section("s1", "Story"), make_section("s2", "Act I", parent_id="s1")],
    )

    await project_sync.apply_project_sync(db, "owner", project)
    await db.commit()

    row = await project_repo.get_project(db, "p1")
    assert row.owner_id == "owner"
    assert row.mindmap_settings == {}
    assert await _section_ids(db, "p1") == ["s1", "s2"]


async def test_apply_project_sync_tombstones_missing_sections(db):
    sections = [make_section("s1", "Story"), make_section("s2", "Combat", order=1)]
    await project_sync.apply_project_sync(db, "owner", make_project("p1", sections=sections))
    await project_sync.apply_project_sync(db, "owner", make_project("p1", sections=sections[:1]))
    await db.commit()

    assert await _section_ids(db, "p1") == ["s1"]


async def test_apply_project_sync_without_sections_clears_remote_sections(db):
    await project_sync.apply_project_sync(db, "owner", make_project("p1", sections=[make_section("s1", "Story")]))
    await project_sync.apply_project_sync(db, "owner", make_project("p1", sections=[]))
    await db.commit()

    assert await _section_ids(db, "p1") == []


async def test_apply_project_sync_is_idempotent(db):
    project = make_project("p1", sections=[make_section("s1", "Story")])

    await project_sync.apply_project_sync(db, "owner", project)
    await db.commit()
    first = [p.to_dict() for p in await project_sync.load_projects_for_owner(db, "owner")]

    await project_sync.apply_project_sync(db, "owner", project)
    await db.commit()
    second = [p.to_dict() for p in await project_sync.load_projects_for_owner(db, "owner")]

    assert first == second


async def test_load_projects_maps_rows_back_to_projects(db):
    project = make_project(
        "p1",
        title="Roguelike",
        sections=[make_section("s1", "Story"), make_section("s2", "Act I", parent_id="s1", order=3)],
    )
    project = project.model_copy(update={"mind_map_settings": {"layout": "tree"}})
    await project_sync.apply_project_sync(db, "owner", project)
    await db.commit()

    [loaded] = await project_sync.load_projects_for_owner(db, "owner")

    assert loaded.title == "Roguelike"
    assert loaded.updated_at == project.updated_at
    assert loaded.created_at == project.created_at
    assert loaded.mind_map_settings == {"layout": "tree"}
    by_id = {s.id: s for s in loaded.sections}
    assert by_id["s2"].parent_id == "s1"
    assert by_id["s2"].order == 3
    assert by_id["s1"].parent_id is None


async def test_delete_project_for_owner_removes_sections(db):
    await project_sync.apply_project_sync(db, "owner", make_project("p1", sections=[make_section("s1", "Story")]))
    await db.commit()

    assert await project_sync.delete_project_for_owner(db, "owner", "p1")
    await db.commit()

    assert await project_repo.get_project(db, "p1") is None
    assert await _section_ids(db, "p1") == []


async def test_delete_project_for_other_owner_is_ignored(db):
    await project_sync.apply_project_sync(db, "alice", make_project("p1"))
    await db.commit()

    assert not await project_sync.delete_project_for_owner(db, "bob", "p1")
    assert await project_repo.get_project(db, "p1") is not None


async def test_projects_table_row_count(db):
    await project_sync.apply_project_sync(db, "owner", make_project("p1"))
    await project_sync.apply_project_sync(db, "owner", make_project("p2"))
    await db.commit()

    result = await db.execute(select(ProjectRow))
    assert len(result.scalars().all()) == 2
