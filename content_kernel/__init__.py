"""
Content Kernel

Persistence core for campaign content review:
- Append-only version history per content item
- Data-driven multi-stage approval workflows
- Serialized state transitions under concurrent reviewers
- Notify-event outbox for the notification collaborator
"""

__version__ = "0.1.0"
