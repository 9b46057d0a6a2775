"""Chat domain exports."""

from .attachments import AttachmentResolver, UploadResult
from .feed import FeedAggregator, FeedState
from .keys import direct_conversation, direct_key, group_conversation, group_key
from .lifecycle import ConversationScope
from .roster import RosterBuilder, build_roster, filter_by_pseudo
from .service import ChatService, location_url
from .store import MessageStoreAdapter

__all__ = [
	"AttachmentResolver",
	"ChatService",
	"ConversationScope",
	"FeedAggregator",
	"FeedState",
	"MessageStoreAdapter",
	"RosterBuilder",
	"UploadResult",
	"build_roster",
	"direct_conversation",
	"direct_key",
	"filter_by_pseudo",
	"group_conversation",
	"group_key",
	"location_url",
]
