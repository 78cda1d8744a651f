"""Meeting lifecycle and membership management.

Provides meeting/user/membership schemas, SQLAlchemy models and repository,
the MeetingLifecycleManager (create/end/info state machine), and the
MembershipManager (join admission, ban, exit).
"""
