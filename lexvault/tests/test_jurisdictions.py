from uuid import uuid4

import pytest

from lexvault.errors import ErrorKind, ServiceError
from lexvault.models import Jurisdiction, JurisdictionLevel, LegalSystem
from lexvault.services.jurisdictions import TREE_CACHE_KEY, build_tree

# =============================================================================
# build_tree (pure)
# =============================================================================


def _row(code: str, level: JurisdictionLevel, parent: Jurisdiction | None = None) -> Jurisdiction:
    return Jurisdiction(
        id=uuid4(),
        code=code,
        name=code.title(),
        level=level,
        legal_system=LegalSystem.COMMON_LAW,
        parent_id=parent.id if parent is not None else None,
    )


class TestBuildTree:
    def test_links_children_to_parents(self) -> None:
        canada = _row("CA", JurisdictionLevel.FEDERAL)
        yukon = _row("YT", JurisdictionLevel.TERRITORIAL, canada)
        whitehorse = _row("YT-WHITEHORSE", JurisdictionLevel.MUNICIPAL, yukon)

        tree = build_tree([whitehorse, yukon, canada])

        assert tree.root_ids == [canada.id]
        assert [n.code for n in tree.children_of(canada.id)] == ["YT"]
        assert [n.code for n in tree.children_of(yukon.id)] == ["YT-WHITEHORSE"]
        assert tree.get(whitehorse.id).parent_id == yukon.id

    def test_orphan_raises_data_integrity(self) -> None:
        canada = _row("CA", JurisdictionLevel.FEDERAL)
        orphan = Jurisdiction(
            id=uuid4(),
            code="XX-NOWHERE",
            name="Nowhere",
            level=JurisdictionLevel.MUNICIPAL,
            legal_system=LegalSystem.COMMON_LAW,
            parent_id=uuid4(),
        )
        with pytest.raises(ServiceError) as exc_info:
            build_tree([canada, orphan])
        assert exc_info.value.kind is ErrorKind.DATA_INTEGRITY

    def test_municipality_directly_under_federal_is_rejected(self) -> None:
        canada = _row("CA", JurisdictionLevel.FEDERAL)
        skipped = _row("CA-OTTAWA", JurisdictionLevel.MUNICIPAL, canada)
        with pytest.raises(ServiceError) as exc_info:
            build_tree([canada, skipped])
        assert exc_info.value.kind is ErrorKind.DATA_INTEGRITY

    def test_parentless_province_is_rejected(self) -> None:
        with pytest.raises(ServiceError) as exc_info:
            build_tree([_row("BC", JurisdictionLevel.PROVINCIAL)])
        assert exc_info.value.kind is ErrorKind.DATA_INTEGRITY

    def test_nested_view_mirrors_arena(self) -> None:
        canada = _row("CA", JurisdictionLevel.FEDERAL)
        ontario = _row("ON", JurisdictionLevel.PROVINCIAL, canada)
        nested = build_tree([canada, ontario]).to_nested()
        assert len(nested) == 1
        assert nested[0].code == "CA"
        assert [c.code for c in nested[0].children] == ["ON"]


# =============================================================================
# JurisdictionService
# =============================================================================


@pytest.mark.asyncio
async def test_get_tree_builds_and_caches(services, cache, jurisdiction_ids) -> None:
    tree = await services.jurisdictions.get_tree()

    assert tree.root_ids == [jurisdiction_ids["CA"]]
    children = [n.code for n in tree.children_of(jurisdiction_ids["CA"])]
    assert children == ["BC", "ON"]
    assert TREE_CACHE_KEY in cache.data


@pytest.mark.asyncio
async def test_get_tree_serves_cached_copy(services, cache, jurisdiction_ids) -> None:
    first = await services.jurisdictions.get_tree()
    cached = cache.data[TREE_CACHE_KEY]

    second = await services.jurisdictions.get_tree()

    assert second == first
    assert cache.data[TREE_CACHE_KEY] == cached


@pytest.mark.asyncio
async def test_cache_outage_still_serves_tree(services, cache, jurisdiction_ids) -> None:
    cache.available = False

    tree = await services.jurisdictions.get_tree()

    assert len(tree.nodes) == 4
    assert tree.get(jurisdiction_ids["BC-VANCOUVER"]).parent_id == jurisdiction_ids["BC"]


@pytest.mark.asyncio
async def test_invalidate_drops_cached_tree(services, cache, jurisdiction_ids) -> None:
    await services.jurisdictions.get_tree()
    await services.jurisdictions.invalidate()
    assert TREE_CACHE_KEY not in cache.data


@pytest.mark.asyncio
async def test_orphan_in_database_fails_tree_load(services, session_factory, jurisdiction_ids) -> None:
    async with session_factory() as session:
        session.add(
            Jurisdiction(
                id=uuid4(),
                code="ZZ-GHOST",
                name="Ghost Town",
                level=JurisdictionLevel.MUNICIPAL,
                legal_system=LegalSystem.COMMON_LAW,
                parent_id=uuid4(),
            )
        )
        await session.commit()

    with pytest.raises(ServiceError) as exc_info:
        await services.jurisdictions.get_tree()
    assert exc_info.value.kind is ErrorKind.DATA_INTEGRITY


@pytest.mark.asyncio
async def test_get_by_id_includes_parent_and_children(services, jurisdiction_ids) -> None:
    detail = await services.jurisdictions.get_by_id(jurisdiction_ids["BC"])

    assert detail.code == "BC"
    assert detail.parent.code == "CA"
    assert [c.code for c in detail.children] == ["BC-VANCOUVER"]


@pytest.mark.asyncio
async def test_get_by_id_unknown_is_not_found(services, jurisdiction_ids) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await services.jurisdictions.get_by_id(uuid4())
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_resolve_many_dedupes_and_preserves_order(services, jurisdiction_ids) -> None:
    ids = [jurisdiction_ids["ON"], jurisdiction_ids["BC"], jurisdiction_ids["ON"]]

    resolved = await services.jurisdictions.resolve_many(ids)

    assert [j.code for j in resolved] == ["ON", "BC"]


@pytest.mark.asyncio
async def test_resolve_many_names_every_missing_id(services, jurisdiction_ids) -> None:
    missing_a, missing_b = uuid4(), uuid4()

    with pytest.raises(ServiceError) as exc_info:
        await services.jurisdictions.resolve_many(
            [jurisdiction_ids["BC"], missing_a, missing_b]
        )

    error = exc_info.value
    assert error.kind is ErrorKind.INVALID_JURISDICTION_REFERENCE
    assert error.context["missing_ids"] == [str(missing_a), str(missing_b)]
    assert str(jurisdiction_ids["BC"]) not in error.message
