"""Conversation directory: stable conversation ids for unordered user pairs.

resolve() is find-or-create. The store holds a UNIQUE canonical pair key, so two
first-contact calls racing from both directions cannot both insert; the loser
sees DuplicateConversation, re-reads, and returns the winner's id.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from pairchat.utils.canonical import pair_key

from .errors import DuplicateConversation, StorageFailure, ValidationError, require
from .models import Conversation, utcnow
from .store import ChatStore

log = logging.getLogger("pairchat.directory")

IdFactory = Callable[[], str]


def new_conversation_id() -> str:
    return str(uuid.uuid4())


class ConversationDirectory:
    def __init__(self, store: ChatStore, id_factory: IdFactory = new_conversation_id) -> None:
        self.store = store
        self.id_factory = id_factory

    async def resolve(self, sender_id: str, receiver_id: str) -> str:
        """Return the conversation id for {sender_id, receiver_id}, creating it on first contact.

        Argument order does not matter. Raises ValidationError for missing or
        identical participants and StorageFailure if the store fails.
        """
        require("senderUsername and receiverUsername are required", senderUsername=sender_id, receiverUsername=receiver_id)
        if sender_id == receiver_id:
            raise ValidationError("a conversation needs two distinct participants", participant=sender_id)

        key = pair_key(sender_id, receiver_id)
        existing = await self.store.find_conversation_by_pair(key)
        if existing is not None:
            return existing.conversation_id

        conversation = Conversation(
            conversation_id=self.id_factory(),
            participants=(sender_id, receiver_id),
            created_at=utcnow(),
        )
        try:
            await self.store.insert_conversation(conversation, key)
        except DuplicateConversation:
            winner = await self.store.find_conversation_by_pair(key)
            if winner is None:
                raise StorageFailure("conversation conflict but no row found", pair_key=key)
            log.debug("Lost first-contact race for %s; using %s", key, winner.conversation_id)
            return winner.conversation_id

        log.info("Created conversation %s between %s and %s", conversation.conversation_id, sender_id, receiver_id)
        return conversation.conversation_id
