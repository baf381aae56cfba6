"""Message and notification stores used by the gateway."""

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from gateway_common.errors import PersistenceError
from gateway_common.models import (
    Message,
    Notification,
    NotificationType,
    Pagination,
    utc_now,
)
from gateway_server.config import Settings, get_settings

logger = logging.getLogger(__name__)


def history_cursor(message: Message) -> str:
    """Return the pagination cursor that sorts the message within its room."""
    return f"{message.created_at.isoformat()}#{message.id}"


class MessageStore(Protocol):
    """Durable message storage owned outside the gateway."""

    async def persist(self, message: Message) -> Message:
        """Store a message and return the confirmed copy, or raise PersistenceError."""
        ...

    async def history(self, room_key: str, pagination: Pagination) -> list[Message]:
        """Return a page of a room's messages, oldest first."""
        ...


class NotificationStore(Protocol):
    """Durable notification storage owned outside the gateway."""

    async def record_if_requested(self, notification: Notification) -> None:
        """Store a durable copy of the notification."""
        ...


class InMemoryMessageStore:
    """Process-local message store for development and tests."""

    def __init__(self) -> None:
        self._rooms: dict[str, list[Message]] = {}

    async def persist(self, message: Message) -> Message:
        messages = self._rooms.setdefault(message.room_key, [])
        created_at = utc_now()
        # Keep cursors strictly increasing within a room
        if messages and created_at <= messages[-1].created_at:
            created_at = messages[-1].created_at + timedelta(microseconds=1)

        confirmed = message.confirm(uuid4().hex, created_at)
        messages.append(confirmed)
        return confirmed

    async def history(self, room_key: str, pagination: Pagination) -> list[Message]:
        messages = self._rooms.get(room_key, [])
        if pagination.before:
            messages = [m for m in messages if history_cursor(m) < pagination.before]
        return list(messages[-pagination.limit:]) if pagination.limit > 0 else []


class InMemoryNotificationStore:
    """Process-local notification store for development and tests."""

    def __init__(self) -> None:
        self._by_user: dict[str, list[Notification]] = {}

    async def record_if_requested(self, notification: Notification) -> None:
        self._by_user.setdefault(notification.target_user_id, []).append(notification)

    async def recent(self, user_id: str, limit: int = 30) -> list[Notification]:
        """Return the user's most recent notifications, newest first."""
        return list(reversed(self._by_user.get(user_id, [])))[:limit]


class _DynamoDBTable:
    """Shared DynamoDB client setup and table management."""

    def __init__(
        self,
        table_name: str,
        partition_key: str,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.table_name = table_name
        self.partition_key = partition_key
        self._client = self._create_client()

    def _create_client(self):
        """Create DynamoDB client with appropriate configuration."""
        client_kwargs = {
            "service_name": "dynamodb",
            "region_name": self.settings.aws_region,
        }

        # Use LocalStack endpoint if configured
        if self.settings.dynamodb_endpoint_url:
            client_kwargs["endpoint_url"] = self.settings.dynamodb_endpoint_url

        # Use explicit credentials if provided
        if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key

        return boto3.client(**client_kwargs)

    def create_table_if_not_exists(self) -> None:
        """Create the DynamoDB table if it doesn't exist (for local dev)."""
        try:
            self._client.describe_table(TableName=self.table_name)
            logger.info(f"Table {self.table_name} already exists")
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                logger.info(f"Creating table {self.table_name}")
                self._client.create_table(
                    TableName=self.table_name,
                    KeySchema=[
                        {"AttributeName": self.partition_key, "KeyType": "HASH"},
                        {"AttributeName": "sort_key", "KeyType": "RANGE"},
                    ],
                    AttributeDefinitions=[
                        {"AttributeName": self.partition_key, "AttributeType": "S"},
                        {"AttributeName": "sort_key", "AttributeType": "S"},
                    ],
                    BillingMode="PAY_PER_REQUEST",
                )
                # Wait for table to be active
                waiter = self._client.get_waiter("table_exists")
                waiter.wait(TableName=self.table_name)
                logger.info(f"Table {self.table_name} created")
            else:
                raise


class DynamoDBMessageStore(_DynamoDBTable):
    """Message store backed by a DynamoDB table keyed by room and time."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        super().__init__(settings.dynamodb_messages_table, "room_key", settings)

    def _put(self, message: Message) -> None:
        self._client.put_item(TableName=self.table_name, Item=message.to_dynamodb_item())

    def _query(self, room_key: str, pagination: Pagination) -> list[Message]:
        query = {
            "TableName": self.table_name,
            "KeyConditionExpression": "room_key = :room_key",
            "ExpressionAttributeValues": {":room_key": {"S": room_key}},
            "ScanIndexForward": False,
            "Limit": pagination.limit,
        }
        if pagination.before:
            query["KeyConditionExpression"] += " AND sort_key < :before"
            query["ExpressionAttributeValues"][":before"] = {"S": pagination.before}

        response = self._client.query(**query)
        messages = [Message.from_dynamodb_item(item) for item in response.get("Items", [])]
        messages.reverse()
        return messages

    async def persist(self, message: Message) -> Message:
        """
        Write a message and return its confirmed copy.

        Raises:
            PersistenceError: If DynamoDB rejects the write or is unreachable.
        """
        confirmed = message.confirm(uuid4().hex, utc_now())
        try:
            await asyncio.to_thread(self._put, confirmed)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error persisting message in room {message.room_key}: {e}")
            raise PersistenceError(f"Message store unavailable: {e}") from e

        logger.debug(f"Persisted message {confirmed.id} in room {confirmed.room_key}")
        return confirmed

    async def history(self, room_key: str, pagination: Pagination) -> list[Message]:
        """
        Fetch a page of messages, oldest first.

        Raises:
            PersistenceError: If the query fails.
        """
        if pagination.limit <= 0:
            return []
        try:
            return await asyncio.to_thread(self._query, room_key, pagination)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading history for room {room_key}: {e}")
            raise PersistenceError(f"Message store unavailable: {e}") from e


class DynamoDBNotificationStore(_DynamoDBTable):
    """Notification store backed by a DynamoDB table keyed by user and time."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        super().__init__(settings.dynamodb_notifications_table, "user_id", settings)

    def _put(self, notification: Notification) -> None:
        self._client.put_item(
            TableName=self.table_name,
            Item={
                "user_id": {"S": notification.target_user_id},
                "sort_key": {"S": f"{notification.created_at.isoformat()}#{notification.id}"},
                "notification_id": {"S": notification.id},
                "type": {"S": notification.type.value},
                "payload": {"S": json.dumps(notification.payload)},
                "created_at": {"S": notification.created_at.isoformat()},
                "is_read": {"BOOL": notification.is_read},
            },
        )

    async def record_if_requested(self, notification: Notification) -> None:
        """
        Store a durable copy of a notification.

        Raises:
            PersistenceError: If the write fails.
        """
        try:
            await asyncio.to_thread(self._put, notification)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error recording notification {notification.id}: {e}")
            raise PersistenceError(f"Notification store unavailable: {e}") from e

    def _query(self, user_id: str, limit: int) -> list[Notification]:
        response = self._client.query(
            TableName=self.table_name,
            KeyConditionExpression="user_id = :user_id",
            ExpressionAttributeValues={":user_id": {"S": user_id}},
            ScanIndexForward=False,
            Limit=limit,
        )
        return [
            Notification(
                id=item["notification_id"]["S"],
                type=NotificationType(item["type"]["S"]),
                target_user_id=item["user_id"]["S"],
                payload=json.loads(item.get("payload", {}).get("S", "{}")),
                created_at=datetime.fromisoformat(item["created_at"]["S"]),
                is_read=item.get("is_read", {}).get("BOOL", False),
            )
            for item in response.get("Items", [])
        ]

    async def recent(self, user_id: str, limit: int = 30) -> list[Notification]:
        """Return the user's most recent notifications, newest first."""
        try:
            return await asyncio.to_thread(self._query, user_id, limit)
        except (ClientError, BotoCoreError) as e:
            raise PersistenceError(f"Notification store unavailable: {e}") from e


def create_stores(settings: Optional[Settings] = None) -> tuple[MessageStore, NotificationStore]:
    """
    Build the message and notification stores for the configured backend.

    Args:
        settings: Gateway settings. Defaults to get_settings().

    Returns:
        Tuple of (message_store, notification_store).
    """
    settings = settings or get_settings()

    if settings.store_backend == "dynamodb":
        message_store = DynamoDBMessageStore(settings)
        notification_store = DynamoDBNotificationStore(settings)
        if settings.is_local_dev:
            logger.info("Creating DynamoDB tables if not exist...")
            message_store.create_table_if_not_exists()
            notification_store.create_table_if_not_exists()
        return message_store, notification_store

    if settings.store_backend != "memory":
        raise ValueError(f"Unknown store backend '{settings.store_backend}'")

    logger.info("Using in-memory message and notification stores")
    return InMemoryMessageStore(), InMemoryNotificationStore()
