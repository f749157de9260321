from canarywatch.db.base import Base
from canarywatch.db.session import get_engine
from canarywatch import models  # noqa: F401


def init_db() -> None:
    Base.metadata.create_all(bind=get_engine())
