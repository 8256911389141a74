from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import NotificationChannel, NotificationFrequency, NotificationType
from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.notification_settings import (
    DEFAULT_QUIET_END,
    DEFAULT_QUIET_START,
    NotificationPreference,
    NotificationSetting,
    NotificationSettingCreate,
    NotificationSettingsStats,
    QuietHours,
)
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

SETTING_KINDS = {
    "id": K.IDENTIFIER,
    "user_id": K.IDENTIFIER,
    "notification_type": K.INT32,
    "enable_in_app": K.BOOLEAN,
    "enable_email": K.BOOLEAN,
    "enable_push": K.BOOLEAN,
    "enable_desktop": K.BOOLEAN,
    "enable_sound": K.BOOLEAN,
    "frequency": K.INT32,
    "quiet_hours_start": K.DURATION,
    "quiet_hours_end": K.DURATION,
    "enable_quiet_hours": K.BOOLEAN,
    "email_frequency": K.INT32,
    "batch_interval_minutes": K.INT32,
    "enable_batching": K.BOOLEAN,
    "language": K.TEXT,
    "time_zone": K.TEXT,
    "created_at": K.TIMESTAMP,
    "updated_at": K.TIMESTAMP,
    "last_used_at": K.TIMESTAMP,
    "is_default": K.BOOLEAN,
    "name": K.TEXT,
    "description": K.TEXT,
    "is_active": K.BOOLEAN,
}

PREFERENCE_KINDS = {name: SETTING_KINDS[name] for name in NotificationPreference.model_fields}

SETTING_SHAPE = EntityShape(NotificationSetting, SETTING_KINDS)

# channels with a per-setting switch
CHANNEL_COLUMNS = {
    NotificationChannel.IN_APP: "enable_in_app",
    NotificationChannel.EMAIL: "enable_email",
    NotificationChannel.PUSH: "enable_push",
    NotificationChannel.DESKTOP: "enable_desktop",
}

SETTINGS_ORDER = "ns.is_default DESC, COALESCE(ns.notification_type, -1) ASC, ns.created_at ASC, ns.id ASC"


def _time_of_day(value: datetime) -> timedelta:
    return timedelta(hours=value.hour, minutes=value.minute, seconds=value.second, microseconds=value.microsecond)


def in_quiet_window(offset: timedelta, start: timedelta, end: timedelta) -> bool:
    """``start`` inclusive, ``end`` exclusive; a window with start after end wraps midnight."""
    if start == end:
        return False
    if start < end:
        return start <= offset < end
    return offset >= start or offset < end


class NotificationSettingsRepository(BaseRepository):
    entity_name = "notification_setting"
    table = "notification_settings"
    alias = "ns"
    shape = SETTING_SHAPE

    def _column(self, channel: NotificationChannel) -> str:
        try:
            return CHANNEL_COLUMNS[NotificationChannel(channel)]
        except KeyError:
            raise ValueError(f"channel {NotificationChannel(channel).name} has no setting switch") from None

    async def _select(self, conn: AsyncConnection, operation: str, where: str, params: dict) -> list[NotificationSetting]:
        rows = await self.fetch_all(
            conn,
            operation,
            f"SELECT {self.columns()} FROM notification_settings ns WHERE {where} ORDER BY {SETTINGS_ORDER}",
            params,
        )
        return self.mapper.map_many(rows, SETTING_SHAPE)

    def _type_clause(self, notification_type: NotificationType | None, params: dict) -> str:
        if notification_type is None:
            return "ns.notification_type IS NULL"
        params["notification_type"] = self.bind(notification_type, K.INT32)
        return "ns.notification_type = :notification_type"

    async def _find(self, conn: AsyncConnection, user_id: uuid.UUID, notification_type: NotificationType | None) -> NotificationSetting | None:
        params = {"user_id": self.bind_id(user_id)}
        where = f"ns.user_id = :user_id AND {self._type_clause(notification_type, params)}"
        found = await self._select(conn, "get_by_user_and_type", where, params)
        return found[0] if found else None

    # CRUD

    async def get_by_id(self, setting_id: uuid.UUID) -> NotificationSetting | None:
        return await self._get_by_id(setting_id)

    async def get_by_user_id(self, user_id: uuid.UUID) -> list[NotificationSetting]:
        async with self.connections.connect() as conn:
            return await self._select(conn, "get_by_user_id", "ns.user_id = :user_id", {"user_id": self.bind_id(user_id)})

    async def get_by_user_and_type(self, user_id: uuid.UUID, notification_type: NotificationType | None) -> NotificationSetting | None:
        async with self.connections.connect() as conn:
            return await self._find(conn, user_id, notification_type)

    def _new(self, payload: NotificationSettingCreate) -> NotificationSetting:
        now = self.now()
        return NotificationSetting(id=uuid.uuid4(), created_at=now, updated_at=now, **payload.model_dump())

    async def create(self, payload: NotificationSettingCreate) -> NotificationSetting:
        setting = self._new(payload)
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(setting), operation="create")
        logger.info("notification_setting_created id=%s user_id=%s", setting.id, setting.user_id)
        return setting

    async def update(self, setting: NotificationSetting) -> NotificationSetting:
        updated = setting.model_copy(update={"updated_at": self.now()})
        values = self.entity_values(updated)
        for name in ("id", "user_id", "created_at"):
            values.pop(name)
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, setting.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, setting.id)
        await self._invalidate(setting.id)
        return updated

    async def delete(self, setting_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [setting_id])
        await self._invalidate(setting_id)
        return affected > 0

    # defaults

    async def get_default_by_user_id(self, user_id: uuid.UUID) -> NotificationSetting | None:
        async with self.connections.connect() as conn:
            found = await self._select(
                conn,
                "get_default",
                "ns.user_id = :user_id AND ns.is_default = :yes",
                {"user_id": self.bind_id(user_id), "yes": self.bind_bool(True)},
            )
        return found[0] if found else None

    async def set_default(self, user_id: uuid.UUID, setting_id: uuid.UUID) -> bool:
        """Make ``setting_id`` the user's only default; unknown ids leave the current default in place."""
        async with self.connections.transaction() as conn:
            await self.write(
                conn,
                "clear_default",
                "UPDATE notification_settings SET is_default = :no WHERE user_id = :user_id",
                {"no": self.bind_bool(False), "user_id": self.bind_id(user_id)},
            )
            affected = await self.update_row(
                conn,
                setting_id,
                {"is_default": self.bind_bool(True), "updated_at": self.bind_time(self.now())},
                operation="set_default",
                extra_where="user_id = :user_id",
                where_params={"user_id": self.bind_id(user_id)},
            )
            if affected == 0:
                raise EntityNotFound(self.entity_name, setting_id)
        logger.info("notification_setting_default user_id=%s id=%s", user_id, setting_id)
        return True

    # quiet hours

    async def get_quiet_hours(self, user_id: uuid.UUID) -> QuietHours:
        setting = await self.get_default_by_user_id(user_id)
        if setting is None:
            return QuietHours()
        return QuietHours(start=setting.quiet_hours_start, end=setting.quiet_hours_end, enabled=setting.enable_quiet_hours)

    async def update_quiet_hours(
        self,
        user_id: uuid.UUID,
        start: timedelta | None,
        end: timedelta | None,
        enabled: bool,
    ) -> bool:
        setting = await self.get_default_by_user_id(user_id)
        if setting is None:
            return False
        changed = NotificationSetting.model_validate(
            {
                **setting.model_dump(),
                "quiet_hours_start": start if start is not None else DEFAULT_QUIET_START,
                "quiet_hours_end": end if end is not None else DEFAULT_QUIET_END,
                "enable_quiet_hours": enabled,
            }
        )
        await self.update(changed)
        return True

    async def is_in_quiet_hours(self, user_id: uuid.UUID, at: datetime | None = None) -> bool:
        setting = await self.get_default_by_user_id(user_id)
        if setting is None or not setting.enable_quiet_hours:
            return False
        if setting.quiet_hours_start is None or setting.quiet_hours_end is None:
            return False
        try:
            zone = ZoneInfo(setting.time_zone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("notification_setting_bad_time_zone id=%s time_zone=%s", setting.id, setting.time_zone)
            zone = ZoneInfo("UTC")
        local = (at or self.now()).astimezone(zone)
        return in_quiet_window(_time_of_day(local), setting.quiet_hours_start, setting.quiet_hours_end)

    # channels

    async def get_enabled_channels(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType | None = None,
    ) -> list[NotificationChannel]:
        if notification_type is not None:
            setting = await self.get_by_user_and_type(user_id, notification_type)
            settings = [setting] if setting is not None else []
        else:
            settings = [item for item in await self.get_by_user_id(user_id) if item.is_active]
        return [
            channel
            for channel, column in CHANNEL_COLUMNS.items()
            if any(getattr(setting, column) for setting in settings)
        ]

    async def _switch_channel(
        self,
        operation: str,
        user_id: uuid.UUID,
        channel: NotificationChannel,
        enabled: bool,
        notification_type: NotificationType | None,
    ) -> bool:
        column = self._column(channel)
        params = {
            "on": self.bind_bool(enabled),
            "now": self.bind_time(self.now()),
            "user_id": self.bind_id(user_id),
        }
        sql = f"UPDATE notification_settings SET {column} = :on, updated_at = :now WHERE user_id = :user_id"
        if notification_type is not None:
            sql = f"{sql} AND notification_type = :notification_type"
            params["notification_type"] = self.bind(notification_type, K.INT32)
        async with self.connections.transaction() as conn:
            affected = await self.write(conn, operation, sql, params)
        return affected > 0

    async def enable_channel(self, user_id: uuid.UUID, channel: NotificationChannel, notification_type: NotificationType | None = None) -> bool:
        return await self._switch_channel("enable_channel", user_id, channel, True, notification_type)

    async def disable_channel(self, user_id: uuid.UUID, channel: NotificationChannel, notification_type: NotificationType | None = None) -> bool:
        return await self._switch_channel("disable_channel", user_id, channel, False, notification_type)

    # bulk preference management

    async def update_user_preferences(
        self,
        user_id: uuid.UUID,
        preferences: Mapping[NotificationType | None, NotificationPreference],
    ) -> int:
        """Upsert one setting per notification type in a single transaction."""
        now = self.now()
        async with self.connections.transaction() as conn:
            for notification_type, preference in preferences.items():
                values = self.encode(preference.model_dump(), PREFERENCE_KINDS)
                existing = await self._find(conn, user_id, notification_type)
                if existing is not None:
                    values["updated_at"] = self.bind_time(now)
                    await self.update_row(conn, existing.id, values, operation="update_preference")
                    await self._invalidate(existing.id)
                    continue
                setting = self._new(
                    NotificationSettingCreate(
                        user_id=user_id,
                        notification_type=notification_type,
                        **preference.model_dump(),
                    )
                )
                await self.insert_row(conn, self.entity_values(setting), operation="create_preference")
        logger.info("notification_preferences_updated user_id=%s count=%s", user_id, len(preferences))
        return len(preferences)

    async def initialize_default_settings(self, user_id: uuid.UUID) -> list[NotificationSetting]:
        """Create the user's default setting plus one per notification type."""
        settings = [
            self._new(NotificationSettingCreate(user_id=user_id, is_default=True, name="Default")),
            *(
                self._new(NotificationSettingCreate(user_id=user_id, notification_type=notification_type))
                for notification_type in NotificationType
            ),
        ]
        async with self.connections.transaction() as conn:
            for setting in settings:
                await self.insert_row(conn, self.entity_values(setting), operation="initialize_defaults")
        logger.info("notification_settings_initialized user_id=%s count=%s", user_id, len(settings))
        return settings

    async def has_initialized_settings(self, user_id: uuid.UUID) -> bool:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "has_initialized",
                "SELECT COUNT(*) FROM notification_settings WHERE user_id = :user_id",
                {"user_id": self.bind_id(user_id)},
            )
        return self.read_int(count) > 0

    async def get_settings_stats(self, user_id: uuid.UUID) -> NotificationSettingsStats:
        channel_sums = ", ".join(
            f"SUM(CASE WHEN {column} THEN 1 ELSE 0 END) AS {column}" for column in CHANNEL_COLUMNS.values()
        )
        params = {"user_id": self.bind_id(user_id)}
        async with self.connections.connect() as conn:
            row = await self.fetch_one(
                conn,
                "settings_stats",
                "SELECT COUNT(*) AS total_settings, "
                "SUM(CASE WHEN is_active THEN 1 ELSE 0 END) AS active_settings, "
                "SUM(CASE WHEN is_default THEN 1 ELSE 0 END) AS default_settings, "
                "SUM(CASE WHEN enable_quiet_hours THEN 1 ELSE 0 END) AS quiet_hours_enabled, "
                "SUM(CASE WHEN enable_batching THEN 1 ELSE 0 END) AS batching_enabled, "
                f"{channel_sums}, MAX(updated_at) AS last_updated_at "
                "FROM notification_settings WHERE user_id = :user_id",
                params,
            )
            by_type = await self.fetch_all(
                conn,
                "settings_by_type",
                "SELECT notification_type, COUNT(*) AS total FROM notification_settings "
                "WHERE user_id = :user_id GROUP BY notification_type",
                params,
            )
            by_frequency = await self.fetch_all(
                conn,
                "settings_by_frequency",
                "SELECT frequency, COUNT(*) AS total FROM notification_settings "
                "WHERE user_id = :user_id GROUP BY frequency",
                params,
            )

        type_counts = {}
        for item in by_type:
            raw_type = self.read(item["notification_type"], K.INT32, field="notification_type")
            type_counts[NotificationType(raw_type) if raw_type is not None else None] = self.read_int(item["total"])
        return NotificationSettingsStats(
            total_settings=self.read_int(row["total_settings"]),
            active_settings=self.read_int(row["active_settings"]),
            default_settings=self.read_int(row["default_settings"]),
            quiet_hours_enabled=self.read_int(row["quiet_hours_enabled"]),
            batching_enabled=self.read_int(row["batching_enabled"]),
            type_counts=type_counts,
            channel_counts={channel: self.read_int(row[column]) for channel, column in CHANNEL_COLUMNS.items()},
            frequency_counts={
                NotificationFrequency(self.read_int(item["frequency"])): self.read_int(item["total"]) for item in by_frequency
            },
            last_updated_at=self.read(row["last_updated_at"], K.TIMESTAMP, field="last_updated_at"),
        )
