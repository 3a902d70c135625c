from .base import Base
from .session import engine
# db/init_db.py

def init_db():
    # 注册全部模型后再建表
    import app.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
# Export for convenience
__all__ = ["Base", "engine", "init_db"]
