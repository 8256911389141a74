from snippet_data.schemas.users import CommentSummary, UserSummary
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.type_normalizer import ValueKind

# users and comments are only ever read as join targets

USER_KINDS = {
    "id": ValueKind.IDENTIFIER,
    "username": ValueKind.TEXT,
    "email": ValueKind.TEXT,
    "role": ValueKind.INT32,
    "is_active": ValueKind.BOOLEAN,
    "created_at": ValueKind.TIMESTAMP,
}

COMMENT_KINDS = {
    "id": ValueKind.IDENTIFIER,
    "content": ValueKind.TEXT,
    "snippet_id": ValueKind.IDENTIFIER,
    "user_id": ValueKind.IDENTIFIER,
    "created_at": ValueKind.TIMESTAMP,
}

USER_SHAPE = EntityShape(UserSummary, USER_KINDS)
COMMENT_SHAPE = EntityShape(CommentSummary, COMMENT_KINDS)

USERS_BY_ID_SQL = f"SELECT {USER_SHAPE.select('u')} FROM users u WHERE u.id IN :keys"
