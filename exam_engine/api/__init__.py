"""API route package — imports all routers for main.py."""

from exam_engine.api.health import router as health_router  # noqa: F401
from exam_engine.api.tests import router as tests_router  # noqa: F401
from exam_engine.api.attempts import router as attempts_router  # noqa: F401
from exam_engine.api.admin import router as admin_router  # noqa: F401
