# SQLModel definitions, imported here to ensure metadata is populated.
from .base import UUIDMixin, CreatedAtMixin  # noqa: F401
from .project import Project  # noqa: F401
from .message import Message  # noqa: F401
