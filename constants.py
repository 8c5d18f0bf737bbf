# Global Constants

class Roles:
    ADMIN = "admin"
    MEMBER = "member"


class ProjectRoles:
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"

    MANAGERS = (OWNER, ADMIN)


class TaskRoles:
    RESPONSIBLE = "responsible"
    ACCOUNTABLE = "accountable"
    CONSULTED = "consulted"
    INFORMED = "informed"


class ChatKinds:
    PROJECT = "project"
    TASK = "task"
    PERSONAL = "personal"
    GROUP = "group"

    # Kinds whose membership is owned by a project/task
    OWNED = (PROJECT, TASK)


class InvitationStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class NotificationTypes:
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"
    COMMENT_ADDED = "comment_added"
    DEADLINE_APPROACHING = "deadline_approaching"
    PROJECT_INVITATION = "project_invitation"
    PROJECT_MEMBER_ADDED = "project_member_added"
    DOCUMENT_SHARED = "document_shared"
    BUDGET_THRESHOLD = "budget_threshold"
    CHAT_PING = "chat_ping"
