from enum import IntEnum


class ReportReason(IntEnum):
    SPAM = 0
    INAPPROPRIATE = 1
    HARASSMENT = 2
    HATE_SPEECH = 3
    MISINFORMATION = 4
    COPYRIGHT_VIOLATION = 5
    OTHER = 99


class ReportStatus(IntEnum):
    PENDING = 0
    RESOLVED = 1
    REJECTED = 2
    UNDER_INVESTIGATION = 3


class UserRole(IntEnum):
    VIEWER = 0
    EDITOR = 1
    ADMIN = 2


class MessageType(IntEnum):
    USER = 0
    SYSTEM = 1
    NOTIFICATION = 2
    BROADCAST = 3
    AUTO_REPLY = 4


class MessageStatus(IntEnum):
    DRAFT = 0
    SENT = 1
    DELIVERED = 2
    READ = 3
    REPLIED = 4
    FORWARDED = 5
    DELETED = 6
    FAILED = 7
    EXPIRED = 8


class MessagePriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


class AttachmentType(IntEnum):
    IMAGE = 0
    DOCUMENT = 1
    VIDEO = 2
    AUDIO = 3
    ARCHIVE = 4
    CODE = 5
    OTHER = 99


class AttachmentStatus(IntEnum):
    ACTIVE = 0
    UPLOADING = 1
    UPLOAD_FAILED = 2
    DELETED = 3
    EXPIRED = 4
    VIRUS_SCANNING = 5
    VIRUS_DETECTED = 6


class DraftStatus(IntEnum):
    DRAFT = 0
    SENT = 1
    CANCELLED = 2
    EXPIRED = 3


class NotificationType(IntEnum):
    COMMENT = 0
    REPLY = 1
    MESSAGE = 2
    SYSTEM = 3
    LIKE = 4
    SHARE = 5
    FOLLOW = 6
    MENTION = 7
    TAG = 8
    SECURITY = 9
    ACCOUNT = 10
    UPDATE = 11
    MAINTENANCE = 12
    ANNOUNCEMENT = 13
    CUSTOM = 99


class NotificationPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3
    CRITICAL = 4


class NotificationStatus(IntEnum):
    PENDING = 0
    SENDING = 1
    SENT = 2
    DELIVERED = 3
    READ = 4
    UNREAD = 5
    CONFIRMED = 6
    FAILED = 7
    EXPIRED = 8
    CANCELLED = 9
    ARCHIVED = 10


class RelatedEntityType(IntEnum):
    SNIPPET = 0
    COMMENT = 1
    USER = 2
    MESSAGE = 3
    SHARE = 4
    TAG = 5
    SYSTEM = 6
    OTHER = 99


class NotificationAction(IntEnum):
    CREATED = 0
    UPDATED = 1
    DELETED = 2
    LIKED = 3
    SHARED = 4
    FOLLOWED = 5
    MENTIONED = 6
    COMMENTED = 7
    REPLIED = 8
    REPORTED = 9
    MODERATED = 10
    OTHER = 99


class NotificationChannel(IntEnum):
    IN_APP = 0
    EMAIL = 1
    PUSH = 2
    DESKTOP = 3
    SMS = 4
    WEBHOOK = 5
    SLACK = 6
    WECHAT = 7
    DINGTALK = 8
    WECOM = 9


class NotificationFrequency(IntEnum):
    IMMEDIATE = 0
    HOURLY = 1
    DAILY = 2
    WEEKLY = 3
    MONTHLY = 4
    NEVER = 5


class EmailNotificationFrequency(IntEnum):
    IMMEDIATE = 0
    HOURLY_DIGEST = 1
    DAILY_DIGEST = 2
    WEEKLY_DIGEST = 3
    NEVER = 4


class AccessSource(IntEnum):
    DIRECT = 0
    LINK = 1
    QR_CODE = 2
    EMAIL = 3
    SOCIAL = 4
    SEARCH = 5
    OTHER = 99


class DeviceType(IntEnum):
    DESKTOP = 0
    MOBILE = 1
    TABLET = 2
    SMART_TV = 3
    WEARABLE = 4
    OTHER = 99
