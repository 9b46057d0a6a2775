import asyncio

import pytest

from chatsync.domain.chat.models import OutgoingMessage
from chatsync.domain.errors import InvalidArgument, NotFound
from chatsync.domain.groups.service import GroupService, UNKNOWN_MEMBER


@pytest.fixture
def groups(memory_store):
    return GroupService(memory_store)


@pytest.mark.asyncio
async def test_create_group_prepends_creator(groups, memory_store):
    group = await groups.create_group("amy", "  Weekend   climbing ", ["bob", "amy", "cat", "bob"])
    assert group.name == "Weekend climbing"
    assert group.member_ids == ("amy", "bob", "cat")
    assert group.creator_id == "amy"
    assert group.created_at is not None
    raw = await memory_store.read(f"groups/{group.id}")
    assert raw["groupCreator"] == "amy"
    assert raw["members"] == {"amy": 0, "bob": 1, "cat": 2}


@pytest.mark.parametrize(
    "name,members,code",
    [
        ("", ["bob"], "group_name_required"),
        ("Solo", [], "group_members_required"),
        ("Solo", ["amy"], "group_members_required"),
    ],
)
@pytest.mark.asyncio
async def test_create_group_validation(groups, name, members, code):
    with pytest.raises(InvalidArgument) as excinfo:
        await groups.create_group("amy", name, members)
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_add_members_is_append_only(groups):
    group = await groups.create_group("amy", "Crew", ["bob"])
    updated = await groups.add_members(group.id, ["bob", "dan", "eve"])
    assert updated.member_ids == ("amy", "bob", "dan", "eve")
    reloaded = await groups.get_group(group.id)
    assert reloaded.member_ids == ("amy", "bob", "dan", "eve")


@pytest.mark.asyncio
async def test_add_members_to_missing_group(groups):
    with pytest.raises(NotFound):
        await groups.add_members("nope", ["bob"])


@pytest.mark.asyncio
async def test_groups_for_filters_and_sorts(groups, adapter):
    zeta = await groups.create_group("amy", "zeta", ["bob"])
    await groups.create_group("bob", "Alpha", ["amy"])
    await groups.create_group("cat", "Beta", ["dan"])
    await adapter.append_message(groups.conversation_for(zeta), OutgoingMessage(sender_id="amy", text="hi"))

    names = [group.name for group in await groups.groups_for("amy")]
    assert names == ["Alpha", "zeta"]
    assert await groups.groups_for("nobody") == []


@pytest.mark.asyncio
async def test_member_names_fall_back_to_unknown(groups, memory_store):
    await memory_store.write("users/amy", {"fullname": "Amy Pond", "pseudo": "amy"})
    await memory_store.write("users/bob", {"pseudo": "bobby"})
    group = await groups.create_group("amy", "Crew", ["bob", "ghost"])
    names = await groups.member_names(group)
    assert names == {"amy": "Amy Pond", "bob": "bobby", "ghost": UNKNOWN_MEMBER}


class YieldingStore:
    """Store wrapper whose reads hand control back to the loop, like a network round trip."""

    def __init__(self, inner):
        self._inner = inner

    async def read(self, path):
        await asyncio.sleep(0)
        value = await self._inner.read(path)
        await asyncio.sleep(0)
        return value

    def __getattr__(self, item):
        return getattr(self._inner, item)


@pytest.mark.asyncio
async def test_concurrent_add_members_keep_every_addition(memory_store):
    groups = GroupService(YieldingStore(memory_store))
    group = await groups.create_group("amy", "Crew", ["bob"])

    await asyncio.gather(groups.add_members(group.id, ["dan"]), groups.add_members(group.id, ["eve"]))

    reloaded = await groups.get_group(group.id)
    assert reloaded.member_ids[:2] == ("amy", "bob")
    assert set(reloaded.member_ids) == {"amy", "bob", "dan", "eve"}


@pytest.mark.asyncio
async def test_later_additions_sort_after_earlier_ones(groups, clock):
    group = await groups.create_group("amy", "Crew", ["bob"])
    await groups.add_members(group.id, ["zed"])
    clock.advance(5)
    updated = await groups.add_members(group.id, ["abe"])
    assert updated.member_ids == ("amy", "bob", "zed", "abe")


@pytest.mark.asyncio
async def test_add_members_converts_list_shaped_groups(groups, memory_store):
    await memory_store.write(
        "groups/legacy",
        {"name": "Old crew", "members": ["amy", "bob"], "groupCreator": "amy", "createdAt": 1},
    )
    updated = await groups.add_members("legacy", ["cat"])
    assert updated.member_ids == ("amy", "bob", "cat")
    raw = await memory_store.read("groups/legacy/members")
    assert raw["amy"] == 0 and raw["bob"] == 1
    assert isinstance(raw["cat"], int)


@pytest.mark.asyncio
async def test_member_ids_cannot_contain_path_separators(groups):
    with pytest.raises(InvalidArgument) as excinfo:
        await groups.create_group("amy", "Crew", ["bob/../cat"])
    assert excinfo.value.code == "invalid_member_id"
