"""Group conversations: creation, append-only membership and listing."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from chatsync.domain.chat.keys import group_conversation, group_key
from chatsync.domain.chat.models import ConversationKey, Group
from chatsync.domain.chat.schemas import GroupRecord
from chatsync.domain.errors import InvalidArgument, NotFound
from chatsync.domain.identity.schemas import UserRecord
from chatsync.infra.store import SERVER_TIMESTAMP, HierarchicalStore

log = logging.getLogger(__name__)

GROUPS_ROOT = "groups"
USERS_ROOT = "users"
UNKNOWN_MEMBER = "Unknown"
GROUP_NAME_MAX_LEN = 80


def _clean_ids(member_ids: Iterable[str]) -> List[str]:
	seen: set[str] = set()
	result: List[str] = []
	for raw in member_ids:
		member_id = str(raw or "").strip()
		if "/" in member_id or member_id in (".", ".."):
			raise InvalidArgument("invalid_member_id")
		if member_id and member_id not in seen:
			seen.add(member_id)
			result.append(member_id)
	return result


class GroupService:
	def __init__(self, store: HierarchicalStore) -> None:
		self._store = store

	def _parse(self, group_id: str, raw: object) -> Optional[Group]:
		try:
			return GroupRecord.model_validate(raw).to_model(group_id)
		except ValidationError:
			log.warning("skipping malformed group record", extra={"group_id": group_id})
			return None

	async def create_group(self, creator_id: str, name: str, member_ids: Iterable[str]) -> Group:
		"""Create a group whose first member is always the creator."""
		if not creator_id:
			raise InvalidArgument("creator_required")
		title = " ".join(str(name or "").split())
		if not title:
			raise InvalidArgument("group_name_required")
		if len(title) > GROUP_NAME_MAX_LEN:
			raise InvalidArgument("group_name_too_long")
		others = [member for member in _clean_ids(member_ids) if member != creator_id]
		if not others:
			raise InvalidArgument("group_members_required")
		group_id = group_key(self._store)
		members = [creator_id, *others]
		await self._store.write(
			f"{GROUPS_ROOT}/{group_id}",
			{
				"name": title,
				"members": {member: rank for rank, member in enumerate(members)},
				"groupCreator": creator_id,
				"createdAt": SERVER_TIMESTAMP,
			},
		)
		log.info("group created", extra={"group_id": group_id, "member_count": len(members)})
		group = await self.get_group(group_id)
		if group is None:
			raise NotFound("group_not_found")
		return group

	async def get_group(self, group_id: str) -> Optional[Group]:
		raw = await self._store.read(f"{GROUPS_ROOT}/{group_id}")
		if not isinstance(raw, dict):
			return None
		return self._parse(group_id, raw)

	async def add_members(self, group_id: str, member_ids: Iterable[str]) -> Group:
		group = await self.get_group(group_id)
		if group is None:
			raise NotFound("group_not_found")
		additions = [member for member in _clean_ids(member_ids) if not group.has_member(member)]
		if not additions:
			return group
		members_path = f"{GROUPS_ROOT}/{group_id}/members"
		stored = await self._store.read(members_path)
		if isinstance(stored, list):
			# Older groups keep members as one list; convert before adding keys beside it.
			await self._store.write(members_path, {member: rank for rank, member in enumerate(group.member_ids)})
		# One key per member, so concurrent adds never overwrite each other.
		for member_id in additions:
			await self._store.write(f"{members_path}/{member_id}", SERVER_TIMESTAMP)
		log.info("group members added", extra={"group_id": group_id, "added": len(additions)})
		updated = await self.get_group(group_id)
		if updated is None:
			raise NotFound("group_not_found")
		return updated

	async def groups_for(self, user_id: str) -> List[Group]:
		raw = await self._store.read(GROUPS_ROOT)
		if not isinstance(raw, dict):
			return []
		groups = [
			group
			for group_id, value in raw.items()
			if (group := self._parse(group_id, value)) is not None and group.has_member(user_id)
		]
		groups.sort(key=lambda group: (group.name.lower(), group.id))
		return groups

	async def member_names(self, group: Group) -> Dict[str, str]:
		names: Dict[str, str] = {}
		for member_id in group.member_ids:
			raw = await self._store.read(f"{USERS_ROOT}/{member_id}")
			if not isinstance(raw, dict):
				names[member_id] = UNKNOWN_MEMBER
				continue
			try:
				user = UserRecord.model_validate(raw).to_model(member_id)
			except ValidationError:
				names[member_id] = UNKNOWN_MEMBER
				continue
			names[member_id] = user.display_name()
		return names

	def conversation_for(self, group: Group) -> ConversationKey:
		return group_conversation(group.id)
